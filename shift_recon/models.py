"""
Shift Reconciliation Data Models

This module defines the records the reconciliation core works on:
- Persisted rows: Branch, Attendant, Shift, ShiftDataRecord, Expense,
  CashAnalysisReport (the storage layer owns them; the core treats them as
  an in-memory object model once loaded)
- Derived rows: LedgerItem, PendingExpense, BranchAggregateRow, GlobalTotals,
  TrendPoint (recomputed on every read, never persisted)

Key concepts:
- Variance = (cash + POS) - expected; negative variance is a shortage
- CashAnalysisReport is soft-joined to the ledger by
  (branch_id, attendant_name, shift_date, shift_time); there is no foreign key
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import ValidationError


# =============================================================================
# Enums
# =============================================================================

class ShiftTime(str, Enum):
    """Shift slot within a day"""
    MORNING = "Morning"
    EVENING = "Evening"

    @classmethod
    def parse(cls, value: Any) -> "ShiftTime":
        if isinstance(value, cls):
            return value
        t = str(value or "").strip().lower()
        if t.startswith("morn") or t in ("am", "day"):
            return cls.MORNING
        if t.startswith("even") or t in ("pm", "night"):
            return cls.EVENING
        raise ValidationError(f"Unknown shift time: {value!r}")


class ShiftStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class ExpenseStatus(str, Enum):
    """Expense lifecycle; APPROVED and REJECTED are terminal"""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class MatchStatus(str, Enum):
    """Outcome of a physical-count vs ledger cross-check"""
    MATCHED = "MATCHED"
    MISMATCH = "MISMATCH"
    INDETERMINATE = "INDETERMINATE"  # no ledger rows for the attendant


class ExpensePolicy(str, Enum):
    """How approved expenses relate to an attendant's variance"""
    INFORMATIONAL = "informational"      # never affect variance
    OFFSET_SHORTAGE = "offset_shortage"  # count as remitted in effective variance


def parse_day(value: Any) -> date:
    """Coerce an ISO string / datetime / date into a date"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.fromisoformat(str(value).strip()[:10]).date()
    except ValueError:
        raise ValidationError(f"Invalid date: {value!r}")


def _opt_float(value: Any) -> Optional[float]:
    return None if value is None else float(value)


# =============================================================================
# Persisted Rows
# =============================================================================

@dataclass
class Branch:
    id: str
    name: str
    location: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "location": self.location}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Branch":
        return cls(id=str(d["id"]), name=str(d["name"]), location=str(d.get("location") or ""))


@dataclass
class Attendant:
    id: str
    name: str
    branch_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "branch_id": self.branch_id}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Attendant":
        return cls(id=str(d["id"]), name=str(d["name"]), branch_id=str(d["branch_id"]))


@dataclass
class Shift:
    id: str
    branch_id: str
    shift_date: date
    shift_time: ShiftTime = ShiftTime.MORNING
    status: ShiftStatus = ShiftStatus.OPEN
    gm_signed_off: bool = False

    @property
    def key(self) -> tuple:
        """Business key; at most one OPEN shift may exist per key"""
        return (self.branch_id, self.shift_date, self.shift_time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "shift_date": self.shift_date.isoformat(),
            "shift_time": self.shift_time.value,
            "status": self.status.value,
            "gm_signed_off": self.gm_signed_off,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Shift":
        return cls(
            id=str(d["id"]),
            branch_id=str(d["branch_id"]),
            shift_date=parse_day(d["shift_date"]),
            shift_time=ShiftTime.parse(d.get("shift_time", "Morning")),
            status=ShiftStatus(d.get("status", "OPEN")),
            gm_signed_off=bool(d.get("gm_signed_off", False)),
        )


@dataclass
class ShiftDataRecord:
    """
    One attendant's readings and remittance for a pump/product in a shift.

    Meter fields are None on the bulk-import path where expected_amount is
    supplied directly.
    """
    id: str
    shift_id: str
    attendant_id: str
    pump_product: str
    expected_amount: float
    cash_remitted: float
    pos_remitted: float
    variance: float
    opening_meter: Optional[float] = None
    closing_meter: Optional[float] = None
    price_per_liter: Optional[float] = None
    expenses_total: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "shift_id": self.shift_id,
            "attendant_id": self.attendant_id,
            "pump_product": self.pump_product,
            "opening_meter": self.opening_meter,
            "closing_meter": self.closing_meter,
            "price_per_liter": self.price_per_liter,
            "expected_amount": self.expected_amount,
            "cash_remitted": self.cash_remitted,
            "pos_remitted": self.pos_remitted,
            "expenses_total": self.expenses_total,
            "variance": self.variance,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ShiftDataRecord":
        return cls(
            id=str(d["id"]),
            shift_id=str(d["shift_id"]),
            attendant_id=str(d["attendant_id"]),
            pump_product=str(d.get("pump_product") or "General"),
            expected_amount=float(d.get("expected_amount") or 0.0),
            cash_remitted=float(d.get("cash_remitted") or 0.0),
            pos_remitted=float(d.get("pos_remitted") or 0.0),
            variance=float(d.get("variance") or 0.0),
            opening_meter=_opt_float(d.get("opening_meter")),
            closing_meter=_opt_float(d.get("closing_meter")),
            price_per_liter=_opt_float(d.get("price_per_liter")),
            expenses_total=float(d.get("expenses_total") or 0.0),
        )


@dataclass
class Expense:
    id: str
    shift_data_id: str
    description: str
    amount: float
    status: ExpenseStatus = ExpenseStatus.PENDING
    receipt_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "shift_data_id": self.shift_data_id,
            "description": self.description,
            "amount": self.amount,
            "status": self.status.value,
            "receipt_url": self.receipt_url,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Expense":
        return cls(
            id=str(d["id"]),
            shift_data_id=str(d["shift_data_id"]),
            description=str(d.get("description") or ""),
            amount=float(d.get("amount") or 0.0),
            status=ExpenseStatus(d.get("status", "PENDING")),
            receipt_url=d.get("receipt_url"),
        )


@dataclass
class CashAnalysisReport:
    """Physical cash count by denomination; stands alone, no FK to shift_data"""
    id: str
    branch_id: str
    attendant_name: str
    pump_number: int
    product_type: str
    denominations: Dict[int, int]
    total_cash: float
    shift_date: date
    shift_time: ShiftTime
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "attendant_name": self.attendant_name,
            "pump_number": self.pump_number,
            "product_type": self.product_type,
            "denominations": {str(k): v for k, v in self.denominations.items()},
            "total_cash": self.total_cash,
            "shift_date": self.shift_date.isoformat(),
            "shift_time": self.shift_time.value,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "CashAnalysisReport":
        created = d.get("created_at")
        return cls(
            id=str(d["id"]),
            branch_id=str(d["branch_id"]),
            attendant_name=str(d["attendant_name"]),
            pump_number=int(d.get("pump_number") or 0),
            product_type=str(d.get("product_type") or ""),
            denominations={int(k): int(v) for k, v in (d.get("denominations") or {}).items()},
            total_cash=float(d.get("total_cash") or 0.0),
            shift_date=parse_day(d["shift_date"]),
            shift_time=ShiftTime.parse(d.get("shift_time", "Morning")),
            created_at=datetime.fromisoformat(created) if created else datetime.now(),
        )


# =============================================================================
# Derived Rows
# =============================================================================

@dataclass
class LedgerItem:
    """ShiftDataRecord joined with attendant name and parent shift fields"""
    id: str
    shift_id: str
    attendant_id: str
    attendant_name: Optional[str]
    pump_product: str
    expected_amount: float
    cash_remitted: float
    pos_remitted: float
    variance: float
    shift_date: Optional[date] = None
    shift_time: Optional[ShiftTime] = None
    shift_status: ShiftStatus = ShiftStatus.OPEN

    @classmethod
    def from_record(
        cls, record: ShiftDataRecord, attendant_name: Optional[str], shift: Optional[Shift]
    ) -> "LedgerItem":
        return cls(
            id=record.id,
            shift_id=record.shift_id,
            attendant_id=record.attendant_id,
            attendant_name=attendant_name,
            pump_product=record.pump_product,
            expected_amount=record.expected_amount,
            cash_remitted=record.cash_remitted,
            pos_remitted=record.pos_remitted,
            variance=record.variance,
            shift_date=shift.shift_date if shift else None,
            shift_time=shift.shift_time if shift else None,
            shift_status=shift.status if shift else ShiftStatus.OPEN,
        )

    @property
    def remitted(self) -> float:
        return self.cash_remitted + self.pos_remitted

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "shift_id": self.shift_id,
            "attendant_id": self.attendant_id,
            "attendant_name": self.attendant_name,
            "pump_product": self.pump_product,
            "expected_amount": self.expected_amount,
            "cash_remitted": self.cash_remitted,
            "pos_remitted": self.pos_remitted,
            "variance": self.variance,
            "shift_date": self.shift_date.isoformat() if self.shift_date else None,
            "shift_time": self.shift_time.value if self.shift_time else None,
            "shift_status": self.shift_status.value,
        }


@dataclass
class PendingExpense:
    """Expense awaiting manager action, joined with its shift and attendant"""
    id: str
    shift_data_id: str
    description: str
    amount: float
    shift_id: Optional[str]
    attendant_name: Optional[str]
    status: ExpenseStatus = ExpenseStatus.PENDING
    receipt_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "shift_data_id": self.shift_data_id,
            "description": self.description,
            "amount": self.amount,
            "status": self.status.value,
            "receipt_url": self.receipt_url,
            "shift_id": self.shift_id,
            "attendant_name": self.attendant_name,
        }


@dataclass
class BranchAggregateRow:
    """
    One branch's live ledger. Recomputed on every read.

    `shift` is the most recently dated shift, a display convenience only;
    items from every shift of the branch contribute to the totals.
    """
    branch: Branch
    shift: Optional[Shift]
    items: List[LedgerItem] = field(default_factory=list)
    pending_expenses: List[PendingExpense] = field(default_factory=list)
    total_expected: float = 0.0
    total_cash: float = 0.0
    total_pos: float = 0.0
    pending_expense_total: float = 0.0
    total_variance: float = 0.0
    total_effective_variance: float = 0.0

    @property
    def total_remitted(self) -> float:
        return self.total_cash + self.total_pos

    def to_dict(self) -> Dict[str, Any]:
        return {
            "branch": self.branch.to_dict(),
            "shift": self.shift.to_dict() if self.shift else None,
            "items": [i.to_dict() for i in self.items],
            "pending_expenses": [e.to_dict() for e in self.pending_expenses],
            "total_expected": self.total_expected,
            "total_cash": self.total_cash,
            "total_pos": self.total_pos,
            "pending_expense_total": self.pending_expense_total,
            "total_variance": self.total_variance,
            "total_effective_variance": self.total_effective_variance,
        }


@dataclass
class GlobalTotals:
    expected: float = 0.0
    remitted: float = 0.0
    variance: float = 0.0
    expenses: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {
            "expected": self.expected,
            "remitted": self.remitted,
            "variance": self.variance,
            "expenses": self.expenses,
        }


@dataclass
class TrendPoint:
    """
    One day of the variance trend.

    `claimed` is a proxy for claimed POS, max(0, expected - cash) per record,
    not a measured figure. `actual` is the recorded pos_remitted.
    """
    date: date
    name: str
    variance: float = 0.0
    claimed: float = 0.0
    actual: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "name": self.name,
            "variance": self.variance,
            "claimed": self.claimed,
            "actual": self.actual,
        }
