"""
Ledger Store & Operations

The in-memory object model of the station ledger, persisted to one JSON file,
plus the write operations the API and CLI expose:

- manual shift-data entry (with PENDING expenses)
- bulk import apply (phase two, after normalize_import_rows)
- record edits, cash-analysis submissions, expense approval
- open-shift deletion and shift close-out

Single writer assumed. Every operation mutates the store and calls save().
"""
from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, timedelta
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .adapters import CashAnalysisEntry, ImportedShiftRecord, ImportResult
from .cash import normalize_counts, totalize_cash
from .engine import active_shift
from .errors import ImportApplyError, NotFoundError, ReconError, ResolutionError, ValidationError
from .expenses import approve, new_expense, reject
from .matcher import Resolved, normalize_name, resolve_attendant
from .models import (
    Attendant,
    Branch,
    CashAnalysisReport,
    Expense,
    Shift,
    ShiftDataRecord,
    ShiftStatus,
    ShiftTime,
    parse_day,
)
from .variance import build_shift_data_record, compute_variance, recompute_variance, require_amount

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return str(uuid.uuid4())


# =============================================================================
# Store
# =============================================================================

@dataclass
class LedgerStore:
    path: Optional[Path] = None
    branches: List[Branch] = field(default_factory=list)
    attendants: List[Attendant] = field(default_factory=list)
    shifts: List[Shift] = field(default_factory=list)
    shift_data: List[ShiftDataRecord] = field(default_factory=list)
    expenses: List[Expense] = field(default_factory=list)
    cash_reports: List[CashAnalysisReport] = field(default_factory=list)

    @classmethod
    def load(cls, path) -> "LedgerStore":
        """Load the ledger from JSON; a missing file is an empty ledger."""
        path = Path(path)
        if not path.exists():
            return cls(path=path)
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return cls(
            path=path,
            branches=[Branch.from_dict(d) for d in data.get("branches", [])],
            attendants=[Attendant.from_dict(d) for d in data.get("attendants", [])],
            shifts=[Shift.from_dict(d) for d in data.get("shifts", [])],
            shift_data=[ShiftDataRecord.from_dict(d) for d in data.get("shift_data", [])],
            expenses=[Expense.from_dict(d) for d in data.get("expenses", [])],
            cash_reports=[CashAnalysisReport.from_dict(d) for d in data.get("cash_reports", [])],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "branches": [b.to_dict() for b in self.branches],
            "attendants": [a.to_dict() for a in self.attendants],
            "shifts": [s.to_dict() for s in self.shifts],
            "shift_data": [r.to_dict() for r in self.shift_data],
            "expenses": [e.to_dict() for e in self.expenses],
            "cash_reports": [c.to_dict() for c in self.cash_reports],
        }

    def save(self) -> None:
        """Save the ledger to JSON (no-op for a store without a path)."""
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)

    # -- snapshots for the aggregation engine --------------------------------

    def overview_snapshot(self) -> Tuple[list, list, list, list, list]:
        return (list(self.branches), list(self.shifts), list(self.shift_data),
                list(self.expenses), list(self.attendants))

    def trend_snapshot(self) -> Tuple[list, list]:
        return list(self.shift_data), list(self.shifts)

    # -- lookups -------------------------------------------------------------

    def branch(self, branch_id: str) -> Branch:
        for b in self.branches:
            if b.id == branch_id:
                return b
        raise NotFoundError(f"Branch not found: {branch_id}")

    def shift(self, shift_id: str) -> Shift:
        for s in self.shifts:
            if s.id == shift_id:
                return s
        raise NotFoundError(f"Shift not found: {shift_id}")

    def record(self, record_id: str) -> ShiftDataRecord:
        for r in self.shift_data:
            if r.id == record_id:
                return r
        raise NotFoundError(f"Shift data record not found: {record_id}")

    def expense(self, expense_id: str) -> Expense:
        for e in self.expenses:
            if e.id == expense_id:
                return e
        raise NotFoundError(f"Expense not found: {expense_id}")

    # -- creation ------------------------------------------------------------

    def add_branch(self, name: str, location: str = "", branch_id: Optional[str] = None) -> Branch:
        b = Branch(id=branch_id or _new_id(), name=name, location=location)
        self.branches.append(b)
        return b

    def add_attendant(self, branch_id: str, name: str) -> Attendant:
        """Existing attendant with the same (trimmed, case-insensitive) name, else a new one"""
        self.branch(branch_id)
        clean = str(name or "").strip()
        if not clean:
            raise ValidationError("Attendant name is required")
        ref = resolve_attendant(branch_id, clean, self.attendants)
        if isinstance(ref, Resolved):
            return next(a for a in self.attendants if a.id == ref.attendant_id)
        a = Attendant(id=_new_id(), name=clean, branch_id=branch_id)
        self.attendants.append(a)
        logger.info("Created attendant %r in branch %s", clean, branch_id)
        return a

    def ensure_open_shift(self, branch_id: str, shift_date: date, shift_time: ShiftTime) -> Shift:
        """The OPEN shift for (branch, date, time), created when missing; never two per slot"""
        self.branch(branch_id)
        for s in self.shifts:
            if s.key == (branch_id, shift_date, shift_time) and s.status == ShiftStatus.OPEN:
                return s
        s = Shift(id=_new_id(), branch_id=branch_id, shift_date=shift_date, shift_time=shift_time)
        self.shifts.append(s)
        logger.info("Opened shift %s %s for branch %s", shift_date, shift_time.value, branch_id)
        return s


# =============================================================================
# Manual entry
# =============================================================================

def submit_manual_shift_data(
    store: LedgerStore,
    branch_id: str,
    shift_date: Any,
    shift_time: Any,
    product: str,
    pump: Any,
    opening_meter: float,
    closing_meter: float,
    price_per_liter: float,
    cash_remitted: float,
    pos_remitted: float,
    attendant_id: Optional[str] = None,
    attendant_name: Optional[str] = None,
    expenses: Iterable[Mapping[str, Any]] = (),
) -> Tuple[ShiftDataRecord, List[Expense]]:
    """
    Record one attendant/pump entry from meter readings.

    The attendant is given by id, or by name (matched or created; manual
    entry is an explicit user action). Expenses are created PENDING.

    Nothing is added to the store until every input has been validated.
    """
    day = parse_day(shift_date)
    slot_time = ShiftTime.parse(shift_time)
    store.branch(branch_id)

    attendant: Optional[Attendant] = None
    if attendant_id:
        attendant = next((a for a in store.attendants if a.id == attendant_id), None)
        if attendant is None:
            raise NotFoundError(f"Attendant not found: {attendant_id}")
    elif not str(attendant_name or "").strip():
        raise ValidationError("attendant_id or attendant_name is required")

    compute_variance(opening_meter, closing_meter, price_per_liter, cash_remitted, pos_remitted)
    record_id = _new_id()
    created = [
        new_expense(_new_id(), record_id, e.get("description"), e.get("amount"), e.get("receipt_url"))
        for e in expenses
    ]

    shift = store.ensure_open_shift(branch_id, day, slot_time)
    if attendant is None:
        attendant = store.add_attendant(branch_id, attendant_name)

    record = build_shift_data_record(
        shift_id=shift.id,
        attendant_id=attendant.id,
        pump_product=f"{product} - {pump}" if pump not in (None, "") else str(product or "General"),
        cash_remitted=cash_remitted,
        pos_remitted=pos_remitted,
        opening_meter=opening_meter,
        closing_meter=closing_meter,
        price_per_liter=price_per_liter,
        record_id=record_id,
    )
    record.expenses_total = sum(e.amount for e in created)

    store.shift_data.append(record)
    store.expenses.extend(created)
    store.save()
    logger.info("Shift data %s saved: variance=%.2f, %d expense(s)", record.id, record.variance, len(created))
    return record, created


# =============================================================================
# Bulk import apply
# =============================================================================

@dataclass
class ApplyResult:
    inserted: int = 0
    skipped: int = 0
    shifts: List[str] = field(default_factory=list)
    attendants_created: List[str] = field(default_factory=list)
    cash_reports: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "inserted": self.inserted,
            "skipped": self.skipped,
            "shifts": list(self.shifts),
            "attendants_created": list(self.attendants_created),
            "cash_reports": self.cash_reports,
        }


def _group(records: Iterable[ImportedShiftRecord]) -> Dict[Tuple[str, date, ShiftTime], List[ImportedShiftRecord]]:
    groups: Dict[Tuple[str, date, ShiftTime], List[ImportedShiftRecord]] = {}
    for rec in records:
        groups.setdefault(rec.group_key, []).append(rec)
    return groups


def _is_confirmed(branch_id: str, name: str, confirmed: Optional[Mapping[str, Iterable[str]]]) -> bool:
    if confirmed is None:
        return False
    return normalize_name(name) in {normalize_name(n) for n in confirmed.get(branch_id, ())}


def apply_import(
    store: LedgerStore,
    result: ImportResult,
    confirmed_attendants: Optional[Mapping[str, Iterable[str]]] = None,
) -> ApplyResult:
    """
    Write a normalized import into the ledger, one (branch, date, time) group
    at a time.

    Names are re-resolved against the current store. A name that still
    matches nobody is created only when listed in `confirmed_attendants`
    ({branch_id: [names]}); otherwise its rows are skipped.

    A failing group is discarded and processing stops. Groups before it stay
    written (ImportApplyError.inserted says how many rows). Zero rows written
    overall raises ResolutionError.
    """
    out = ApplyResult()

    for (branch_id, shift_date, shift_time), records in _group(result.shift_records).items():
        label = f"{branch_id}_{shift_date.isoformat()}_{shift_time.value}"
        shifts_before = len(store.shifts)
        attendants_before = len(store.attendants)
        staged: List[ShiftDataRecord] = []
        created: List[str] = []
        skipped = 0
        try:
            shift = store.ensure_open_shift(branch_id, shift_date, shift_time)
            for rec in records:
                ref = resolve_attendant(branch_id, rec.attendant_name, store.attendants)
                if isinstance(ref, Resolved):
                    attendant_id = ref.attendant_id
                elif _is_confirmed(branch_id, rec.attendant_name, confirmed_attendants):
                    attendant_id = store.add_attendant(branch_id, rec.attendant_name).id
                    created.append(rec.attendant_name)
                else:
                    logger.warning("Import row %s: attendant %r not confirmed, skipped", rec.source_row, rec.attendant_name)
                    skipped += 1
                    continue
                staged.append(
                    build_shift_data_record(
                        shift_id=shift.id,
                        attendant_id=attendant_id,
                        pump_product=rec.pump_product,
                        cash_remitted=rec.cash_remitted,
                        pos_remitted=rec.pos_remitted,
                        opening_meter=rec.opening_meter,
                        closing_meter=rec.closing_meter,
                        price_per_liter=rec.price_per_liter,
                        expected_amount=rec.expected_amount,
                    )
                )
        except (ReconError, ValueError) as e:
            # discard this group's half-built state; earlier groups are already saved
            del store.shifts[shifts_before:]
            del store.attendants[attendants_before:]
            logger.error("Import group %s failed after %d rows inserted: %s", label, out.inserted, e)
            raise ImportApplyError(f"Import group {label} failed: {e}", inserted=out.inserted, group=label) from e

        if staged:
            store.shift_data.extend(staged)
            out.inserted += len(staged)
            out.shifts.append(shift.id)
        elif len(store.shifts) > shifts_before:
            # every row was skipped; do not leave an empty shift behind
            del store.shifts[shifts_before:]
        out.skipped += skipped
        out.attendants_created.extend(created)
        store.save()

    if out.inserted == 0:
        raise ResolutionError(
            f"No valid rows inserted: {out.skipped} row(s) skipped for unconfirmed attendants. "
            'Ensure columns for "Branch", "Attendant", "Expected", and "Cash" exist.'
        )

    for entry in result.cash_analysis_entries:
        _store_cash_entry(store, entry)
        out.cash_reports += 1
    if out.cash_reports:
        store.save()

    logger.info("Import applied: %d inserted, %d skipped, %d cash report(s)", out.inserted, out.skipped, out.cash_reports)
    return out


def _store_cash_entry(store: LedgerStore, entry: CashAnalysisEntry) -> CashAnalysisReport:
    """Cash-analysis block -> report; its expense rows go PENDING onto the attendant's record in that slot"""
    report = CashAnalysisReport(
        id=_new_id(),
        branch_id=entry.branch_id,
        attendant_name=entry.attendant_name,
        pump_number=entry.pump_number,
        product_type=entry.product_type,
        denominations=normalize_counts(entry.denominations),
        total_cash=entry.total_cash,
        shift_date=entry.shift_date,
        shift_time=entry.shift_time,
    )
    store.cash_reports.append(report)

    if entry.expenses:
        ref = resolve_attendant(entry.branch_id, entry.attendant_name, store.attendants)
        slot = [s.id for s in store.shifts
                if s.key == (entry.branch_id, entry.shift_date, entry.shift_time) and s.status == ShiftStatus.OPEN]
        record = None
        if isinstance(ref, Resolved) and slot:
            record = next((r for r in store.shift_data if r.shift_id in slot and r.attendant_id == ref.attendant_id), None)
        if record is None:
            logger.warning("Cash analysis expenses for %r have no ledger record", entry.attendant_name)
        else:
            for e in entry.expenses:
                exp = new_expense(_new_id(), record.id, e["description"], e["amount"])
                store.expenses.append(exp)
                record.expenses_total += exp.amount
    return report


# =============================================================================
# Edits
# =============================================================================

def update_shift_data_record(
    store: LedgerStore,
    record_id: str,
    expected_amount: Optional[float] = None,
    cash_remitted: Optional[float] = None,
    pos_remitted: Optional[float] = None,
    shift_date: Any = None,
) -> ShiftDataRecord:
    """
    Edit amounts and recompute variance; optionally move the record to another date.

    An overridden expected_amount replaces the meter-derived one, so the
    meter readings are cleared. A new date moves only this record, into the
    OPEN shift of the same branch and time on that date; the old shift is
    dropped when it is OPEN and left empty.
    """
    record = store.record(record_id)
    expected = require_amount("expected_amount", expected_amount) if expected_amount is not None else None
    cash = require_amount("cash_remitted", cash_remitted) if cash_remitted is not None else None
    pos = require_amount("pos_remitted", pos_remitted) if pos_remitted is not None else None
    new_day = parse_day(shift_date) if shift_date is not None else None

    if expected is not None and expected != record.expected_amount:
        if record.opening_meter is not None:
            logger.info("Record %s: expected overridden, meter readings cleared", record.id)
        record.expected_amount = expected
        record.opening_meter = record.closing_meter = record.price_per_liter = None
    if cash is not None:
        record.cash_remitted = cash
    if pos is not None:
        record.pos_remitted = pos
    record.variance = recompute_variance(record)

    if new_day is not None:
        old = store.shift(record.shift_id)
        if new_day != old.shift_date:
            target = store.ensure_open_shift(old.branch_id, new_day, old.shift_time)
            record.shift_id = target.id
            if old.status == ShiftStatus.OPEN and not any(r.shift_id == old.id for r in store.shift_data):
                store.shifts.remove(old)
            logger.info("Record %s moved to shift %s (%s)", record.id, target.id, new_day)

    store.save()
    return record


def submit_cash_analysis(
    store: LedgerStore,
    branch_id: str,
    attendant_name: str,
    denominations: Mapping[Any, Any],
    shift_date: Any,
    shift_time: Any,
    pump_number: int = 0,
    product_type: str = "",
) -> CashAnalysisReport:
    """Store a physical cash count; total_cash comes from the denomination counts"""
    store.branch(branch_id)
    name = str(attendant_name or "").strip()
    if not name:
        raise ValidationError("attendant_name is required")

    total = totalize_cash(denominations)
    report = CashAnalysisReport(
        id=_new_id(),
        branch_id=branch_id,
        attendant_name=name,
        pump_number=int(pump_number or 0),
        product_type=str(product_type or ""),
        denominations={d: sub // d for d, sub in total.subtotals.items()},
        total_cash=float(total.total),
        shift_date=parse_day(shift_date),
        shift_time=ShiftTime.parse(shift_time),
    )
    store.cash_reports.append(report)
    store.save()
    logger.info("Cash analysis for %s @ %s: %.2f", name, branch_id, report.total_cash)
    return report


def set_expense_status(store: LedgerStore, expense_id: str, approved: bool) -> Expense:
    expense = store.expense(expense_id)
    if approved:
        approve(expense)
    else:
        reject(expense)
    store.save()
    return expense


def delete_open_shift(store: LedgerStore, branch_id: str) -> Dict[str, Any]:
    """Delete the branch's active OPEN shift with its records and their expenses"""
    store.branch(branch_id)
    shift = active_shift(store.shifts, branch_id)
    if shift is None:
        raise NotFoundError(f"No open shift for branch {branch_id}")

    record_ids = {r.id for r in store.shift_data if r.shift_id == shift.id}
    n_expenses = sum(1 for e in store.expenses if e.shift_data_id in record_ids)
    store.expenses = [e for e in store.expenses if e.shift_data_id not in record_ids]
    store.shift_data = [r for r in store.shift_data if r.shift_id != shift.id]
    store.shifts = [s for s in store.shifts if s.id != shift.id]
    store.save()

    logger.info("Deleted open shift %s: %d record(s), %d expense(s)", shift.id, len(record_ids), n_expenses)
    return {"shift_id": shift.id, "records": len(record_ids), "expenses": n_expenses}


def close_shift(store: LedgerStore, shift_id: str, gm_signed_off: bool = False) -> Shift:
    shift = store.shift(shift_id)
    if shift.status == ShiftStatus.CLOSED:
        raise ValidationError(f"Shift {shift_id} is already closed")
    shift.status = ShiftStatus.CLOSED
    shift.gm_signed_off = bool(gm_signed_off)
    store.save()
    return shift


# =============================================================================
# Reports
# =============================================================================

def historical_reports(store: LedgerStore, days: int, today: date) -> List[Dict[str, Any]]:
    """Cash-analysis reports dated within the last `days`, newest first"""
    if days < 0:
        raise ValidationError("days cannot be negative")
    cutoff = today - timedelta(days=days)
    names = {b.id: b.name for b in store.branches}

    recent = [r for r in store.cash_reports if r.shift_date >= cutoff]
    recent.sort(key=lambda r: (r.shift_date, r.created_at), reverse=True)

    out = []
    for r in recent:
        row = r.to_dict()
        row["branch_name"] = names.get(r.branch_id, "Unknown")
        row["product"] = f"{r.product_type or 'General'} - Pump {r.pump_number}"
        out.append(row)
    return out
