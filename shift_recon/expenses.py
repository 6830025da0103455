"""
Expense Lifecycle

    PENDING -> APPROVED   (terminal)
    PENDING -> REJECTED   (terminal)

Approving or rejecting never rewrites the owning ShiftDataRecord. Whether an
approved expense offsets a shortage is decided by ExpensePolicy and only
shows up in the *effective* variance computed on read.
"""
from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from .errors import ExpenseTransitionError, ValidationError
from .models import (
    Attendant,
    Expense,
    ExpensePolicy,
    ExpenseStatus,
    PendingExpense,
    ShiftDataRecord,
)
from .variance import require_amount

logger = logging.getLogger(__name__)

_ALLOWED = {
    ExpenseStatus.PENDING: {ExpenseStatus.APPROVED, ExpenseStatus.REJECTED},
    ExpenseStatus.APPROVED: set(),
    ExpenseStatus.REJECTED: set(),
}


def parse_policy(value) -> ExpensePolicy:
    if isinstance(value, ExpensePolicy):
        return value
    try:
        return ExpensePolicy(str(value).strip().lower())
    except ValueError:
        raise ValidationError(f"Unknown expense policy: {value!r}")


def transition(expense: Expense, target: ExpenseStatus) -> Expense:
    """Move an expense to `target`, mutating it in place"""
    if target not in _ALLOWED[expense.status]:
        raise ExpenseTransitionError(expense.id, expense.status.value, target.value)
    logger.info("Expense %s: %s -> %s", expense.id, expense.status.value, target.value)
    expense.status = target
    return expense


def approve(expense: Expense) -> Expense:
    return transition(expense, ExpenseStatus.APPROVED)


def reject(expense: Expense) -> Expense:
    return transition(expense, ExpenseStatus.REJECTED)


def new_expense(expense_id: str, shift_data_id: str, description: str, amount, receipt_url: Optional[str] = None) -> Expense:
    """Expenses are always created PENDING"""
    if not shift_data_id:
        raise ValidationError("shift_data_id is required")
    value = require_amount("amount", amount)
    return Expense(
        id=expense_id,
        shift_data_id=shift_data_id,
        description=str(description or "").strip() or "Expense",
        amount=value,
        status=ExpenseStatus.PENDING,
        receipt_url=receipt_url,
    )


def approved_total(record_id: str, expenses: Iterable[Expense]) -> float:
    return sum(e.amount for e in expenses if e.shift_data_id == record_id and e.status == ExpenseStatus.APPROVED)


def effective_variance(record: ShiftDataRecord, expenses: Iterable[Expense], policy: ExpensePolicy) -> float:
    """
    Variance as shown to managers.

    INFORMATIONAL: the stored variance.
    OFFSET_SHORTAGE: stored variance + approved expenses of that record.
    """
    if policy == ExpensePolicy.OFFSET_SHORTAGE:
        return record.variance + approved_total(record.id, expenses)
    return record.variance


def pending_expenses(
    expenses: Iterable[Expense],
    shift_data: Iterable[ShiftDataRecord],
    attendants: Iterable[Attendant],
    record_ids: Optional[set] = None,
) -> List[PendingExpense]:
    """PENDING expenses, optionally limited to `record_ids`, joined with shift id and attendant name"""
    records: Dict[str, ShiftDataRecord] = {r.id: r for r in shift_data}
    names: Dict[str, str] = {a.id: a.name for a in attendants}

    out: List[PendingExpense] = []
    for e in expenses:
        if e.status != ExpenseStatus.PENDING:
            continue
        if record_ids is not None and e.shift_data_id not in record_ids:
            continue
        rec = records.get(e.shift_data_id)
        out.append(
            PendingExpense(
                id=e.id,
                shift_data_id=e.shift_data_id,
                description=e.description,
                amount=e.amount,
                shift_id=rec.shift_id if rec else None,
                attendant_name=names.get(rec.attendant_id) if rec else None,
                status=e.status,
                receipt_url=e.receipt_url,
            )
        )
    return out
