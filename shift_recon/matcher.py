"""
Reconciliation Matcher

Cross-checks an attendant's physical cash count (cash analysis) against the
remittance the ledger recorded for them.

Attendant identity across the two sides is a soft join on the trimmed,
lowercased name within a branch. There is no foreign key, so a typo in either
name produces INDETERMINATE rather than a match.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, List, Optional, Sequence, Union

from .cash import totalize_cash
from .errors import ValidationError
from .models import (
    Attendant,
    BranchAggregateRow,
    CashAnalysisReport,
    Expense,
    LedgerItem,
    MatchStatus,
    Shift,
    ShiftDataRecord,
    ShiftStatus,
    ShiftTime,
)

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = 1.0


def normalize_name(name) -> str:
    return str(name or "").strip().lower()


# =============================================================================
# Soft join: attendant references
# =============================================================================

@dataclass(frozen=True)
class Resolved:
    attendant_id: str
    name: str


@dataclass(frozen=True)
class Unresolved:
    raw_name: str

    @property
    def name(self) -> str:
        return self.raw_name.strip()


AttendantRef = Union[Resolved, Unresolved]


def resolve_attendant(branch_id: str, name: str, attendants: Iterable[Attendant]) -> AttendantRef:
    """Exact case-insensitive name match within the branch, else Unresolved"""
    wanted = normalize_name(name)
    for a in attendants:
        if a.branch_id == branch_id and normalize_name(a.name) == wanted:
            return Resolved(attendant_id=a.id, name=a.name)
    return Unresolved(raw_name=str(name or ""))


def find_cash_report(
    reports: Iterable[CashAnalysisReport],
    branch_id: str,
    attendant_name: str,
    shift_date: date,
    shift_time: ShiftTime,
) -> Optional[CashAnalysisReport]:
    """Latest cash-analysis report for (branch, name, date, time)"""
    wanted = normalize_name(attendant_name)
    hits = [
        r for r in reports
        if r.branch_id == branch_id
        and normalize_name(r.attendant_name) == wanted
        and r.shift_date == shift_date
        and r.shift_time == shift_time
    ]
    if not hits:
        return None
    return max(hits, key=lambda r: r.created_at)


# =============================================================================
# Matching
# =============================================================================

@dataclass(frozen=True)
class MatchResult:
    status: MatchStatus
    difference: Optional[float]

    def to_dict(self):
        return {"status": self.status.value, "difference": self.difference}


def declared_total(
    physical_cash: float,
    expenses_claimed: float = 0.0,
    pos_remitted: float = 0.0,
    strict: bool = False,
) -> float:
    """physical + expenses, plus POS in the strict variant"""
    for label, v in (("physical_cash", physical_cash), ("expenses_claimed", expenses_claimed), ("pos_remitted", pos_remitted)):
        if v is None or v < 0:
            raise ValidationError(f"{label} must be a non-negative number")
    total = float(physical_cash) + float(expenses_claimed)
    if strict:
        total += float(pos_remitted)
    return total


def ledger_remitted(items: Iterable[LedgerItem], attendant_name: str) -> Optional[float]:
    """Sum of cash + POS over the attendant's ledger rows; None when there are none"""
    wanted = normalize_name(attendant_name)
    matching = [i for i in items if normalize_name(i.attendant_name) == wanted]
    if not matching:
        return None
    return sum(i.cash_remitted + i.pos_remitted for i in matching)


def match_reconciliation(
    declared: float,
    remitted: Optional[float],
    tolerance: float = DEFAULT_TOLERANCE,
) -> MatchResult:
    """
    MATCHED when abs(declared - remitted) < tolerance, else MISMATCH.
    No ledger figure (remitted is None) is INDETERMINATE, not a mismatch.
    """
    if remitted is None:
        return MatchResult(status=MatchStatus.INDETERMINATE, difference=None)
    difference = declared - remitted
    if abs(difference) < tolerance:
        return MatchResult(status=MatchStatus.MATCHED, difference=difference)
    return MatchResult(status=MatchStatus.MISMATCH, difference=difference)


@dataclass
class ReconciliationResult:
    branch_id: str
    attendant_name: str
    declared: float
    remitted: Optional[float]
    status: MatchStatus
    difference: Optional[float]

    def to_dict(self):
        return {
            "branch_id": self.branch_id,
            "attendant_name": self.attendant_name,
            "declared": self.declared,
            "remitted": self.remitted,
            "status": self.status.value,
            "difference": self.difference,
        }


def reconcile_cash_report(
    report: CashAnalysisReport,
    rows: Sequence[BranchAggregateRow],
    expenses_claimed: float = 0.0,
    pos_remitted: float = 0.0,
    strict: bool = False,
    tolerance: float = DEFAULT_TOLERANCE,
    same_shift_only: bool = False,
) -> ReconciliationResult:
    """
    Compare a cash-analysis submission with the live branch matrix.

    By default every ledger row of the attendant in the branch counts, as the
    station's cash sheet is checked against the running ledger. With
    `same_shift_only` only rows of the report's date/time slot count.
    """
    row = next((r for r in rows if r.branch.id == report.branch_id), None)
    items: List[LedgerItem] = list(row.items) if row else []
    if same_shift_only:
        items = [i for i in items if i.shift_date == report.shift_date and i.shift_time == report.shift_time]

    declared = declared_total(report.total_cash, expenses_claimed, pos_remitted, strict=strict)
    remitted = ledger_remitted(items, report.attendant_name)
    result = match_reconciliation(declared, remitted, tolerance)
    if result.status == MatchStatus.MISMATCH:
        logger.warning(
            "Cash mismatch for %s @ %s: declared=%.2f remitted=%.2f",
            report.attendant_name, report.branch_id, declared, remitted,
        )
    return ReconciliationResult(
        branch_id=report.branch_id,
        attendant_name=report.attendant_name,
        declared=declared,
        remitted=remitted,
        status=result.status,
        difference=result.difference,
    )


# =============================================================================
# Attendant drill-down
# =============================================================================

@dataclass
class DrillDown:
    cash_report: Optional[CashAnalysisReport]
    expenses: List[Expense] = field(default_factory=list)
    cash_total: float = 0.0
    pos_total: float = 0.0
    expense_total: float = 0.0

    @property
    def grand_total(self) -> float:
        return self.cash_total + self.pos_total + self.expense_total

    def to_dict(self):
        return {
            "cash_report": self.cash_report.to_dict() if self.cash_report else None,
            "expenses": [e.to_dict() for e in self.expenses],
            "cash_total": self.cash_total,
            "pos_total": self.pos_total,
            "expense_total": self.expense_total,
            "grand_total": self.grand_total,
        }


def attendant_drilldown(
    branch_id: str,
    attendant_name: str,
    shift_date: date,
    shift_time: ShiftTime,
    reports: Iterable[CashAnalysisReport],
    shifts: Iterable[Shift],
    attendants: Iterable[Attendant],
    shift_data: Iterable[ShiftDataRecord],
    expenses: Iterable[Expense],
) -> DrillDown:
    """
    Everything known about one attendant in one OPEN shift slot.

    Physical cash comes from the latest cash report's denominations when one
    exists, otherwise from the ledger's cash_remitted.
    """
    report = find_cash_report(reports, branch_id, attendant_name, shift_date, shift_time)

    shift = next(
        (s for s in shifts
         if s.branch_id == branch_id and s.shift_date == shift_date
         and s.shift_time == shift_time and s.status == ShiftStatus.OPEN),
        None,
    )
    ref = resolve_attendant(branch_id, attendant_name, attendants)

    rows: List[ShiftDataRecord] = []
    if shift is not None and isinstance(ref, Resolved):
        rows = [r for r in shift_data if r.shift_id == shift.id and r.attendant_id == ref.attendant_id]
    row_ids = {r.id for r in rows}
    own_expenses = [e for e in expenses if e.shift_data_id in row_ids]

    if report is not None:
        cash_total = float(totalize_cash(report.denominations).total)
    else:
        cash_total = sum(r.cash_remitted for r in rows)

    return DrillDown(
        cash_report=report,
        expenses=own_expenses,
        cash_total=cash_total,
        pos_total=sum(r.pos_remitted for r in rows),
        expense_total=sum(e.amount for e in own_expenses),
    )
