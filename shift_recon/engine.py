from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import pandas as pd

from .errors import AggregationError, ValidationError
from .expenses import effective_variance, pending_expenses
from .models import (
    Attendant,
    Branch,
    BranchAggregateRow,
    Expense,
    ExpensePolicy,
    GlobalTotals,
    LedgerItem,
    Shift,
    ShiftDataRecord,
    ShiftStatus,
    ShiftTime,
    TrendPoint,
)

logger = logging.getLogger(__name__)

_TIME_ORDER = {ShiftTime.MORNING: 0, ShiftTime.EVENING: 1}


# -----------------------------
# Shift helpers
# -----------------------------
def shifts_most_recent_first(shifts: Iterable[Shift]) -> List[Shift]:
    """Sorted by shift_date descending; ties keep their input order"""
    return sorted(shifts, key=lambda s: s.shift_date, reverse=True)


def active_shift(shifts: Iterable[Shift], branch_id: str) -> Optional[Shift]:
    """
    "The" active shift of a branch: its latest OPEN shift by date, Evening
    after Morning. Several OPEN shifts per branch are allowed (one per
    date/time slot); this only picks which one to show.
    """
    open_shifts = [s for s in shifts if s.branch_id == branch_id and s.status == ShiftStatus.OPEN]
    if not open_shifts:
        return None
    return max(open_shifts, key=lambda s: (s.shift_date, _TIME_ORDER[s.shift_time]))


def ledger_items(
    shift_data: Iterable[ShiftDataRecord],
    shifts: Iterable[Shift],
    attendants: Iterable[Attendant],
) -> List[LedgerItem]:
    """Join records with their attendant name and parent shift; orphans are dropped"""
    shift_lookup: Dict[str, Shift] = {s.id: s for s in shifts}
    names: Dict[str, str] = {a.id: a.name for a in attendants}
    out: List[LedgerItem] = []
    for rec in shift_data:
        parent = shift_lookup.get(rec.shift_id)
        if parent is None:
            continue
        out.append(LedgerItem.from_record(rec, names.get(rec.attendant_id), parent))
    return out


# -----------------------------
# Global overview (branch matrix)
# -----------------------------
def compute_global_overview(
    branches: Sequence[Branch],
    shifts: Sequence[Shift],
    shift_data: Sequence[ShiftDataRecord],
    expenses: Sequence[Expense],
    attendants: Sequence[Attendant] = (),
    expense_policy: ExpensePolicy = ExpensePolicy.INFORMATIONAL,
) -> List[BranchAggregateRow]:
    """
    One BranchAggregateRow per branch, in branch order.

    Every shift of the branch (any status) contributes its records to the
    totals; only PENDING expenses are listed. Inputs are never mutated, so
    two calls on the same data return equal rows.
    """
    ordered = shifts_most_recent_first(shifts)
    items = ledger_items(shift_data, ordered, attendants)
    records: Dict[str, ShiftDataRecord] = {r.id: r for r in shift_data}

    matrix: List[BranchAggregateRow] = []
    for branch in branches:
        branch_shifts = [s for s in ordered if s.branch_id == branch.id]
        branch_shift_ids = {s.id for s in branch_shifts}
        shift = branch_shifts[0] if branch_shifts else None

        branch_items = [i for i in items if i.shift_id in branch_shift_ids]
        item_ids = {i.id for i in branch_items}
        pending = pending_expenses(expenses, shift_data, attendants, record_ids=item_ids) if branch_items else []

        matrix.append(
            BranchAggregateRow(
                branch=branch,
                shift=shift,
                items=branch_items,
                pending_expenses=pending,
                total_expected=sum(i.expected_amount for i in branch_items),
                total_cash=sum(i.cash_remitted for i in branch_items),
                total_pos=sum(i.pos_remitted for i in branch_items),
                pending_expense_total=sum(e.amount for e in pending),
                total_variance=sum(i.variance for i in branch_items),
                total_effective_variance=sum(
                    effective_variance(records[i.id], expenses, expense_policy) for i in branch_items
                ),
            )
        )
    return matrix


def compute_global_totals(rows: Iterable[BranchAggregateRow]) -> GlobalTotals:
    totals = GlobalTotals()
    for r in rows:
        totals.expected += r.total_expected
        totals.remitted += r.total_cash + r.total_pos
        totals.variance += r.total_variance
        totals.expenses += r.pending_expense_total
    return totals


def overview_from_source(
    load: Callable[[], Tuple[list, list, list, list, list]],
    expense_policy: ExpensePolicy = ExpensePolicy.INFORMATIONAL,
) -> List[BranchAggregateRow]:
    """
    Read a snapshot via `load()` -> (branches, shifts, shift_data, expenses,
    attendants) and aggregate it. Any failure aborts the whole computation:
    partial totals are never returned.
    """
    try:
        branches, shifts, shift_data, expenses, attendants = load()
        return compute_global_overview(branches, shifts, shift_data, expenses, attendants, expense_policy)
    except Exception as e:
        logger.error("Global overview aborted: %s", e)
        raise AggregationError(f"Could not compute global overview: {e}") from e


# -----------------------------
# Trend series
# -----------------------------
def compute_trend(
    shift_data: Sequence[ShiftDataRecord],
    shifts: Sequence[Shift],
    range_days: int,
    today: date,
) -> List[TrendPoint]:
    """
    Daily roll-up of records whose parent shift is dated on/after
    today - range_days, ascending by date.

    claimed = sum(max(0, expected - cash)) approximates claimed POS;
    actual = sum(pos_remitted).
    """
    if range_days < 0:
        raise ValidationError("range_days cannot be negative")

    cutoff = today - timedelta(days=range_days)
    shift_dates: Dict[str, date] = {s.id: s.shift_date for s in shifts}

    rows = []
    for rec in shift_data:
        d = shift_dates.get(rec.shift_id)
        if d is None or d < cutoff:
            continue
        rows.append({
            "date": d,
            "variance": rec.variance or 0.0,
            "claimed": max(0.0, (rec.expected_amount or 0.0) - (rec.cash_remitted or 0.0)),
            "actual": rec.pos_remitted or 0.0,
        })

    if not rows:
        return []

    df = pd.DataFrame(rows)
    daily = (
        df.groupby("date", as_index=False)[["variance", "claimed", "actual"]]
        .sum()
        .sort_values("date")
    )
    return [
        TrendPoint(
            date=r["date"],
            name=r["date"].strftime("%a"),
            variance=float(r["variance"]),
            claimed=float(r["claimed"]),
            actual=float(r["actual"]),
        )
        for r in daily.to_dict(orient="records")
    ]


def trend_from_source(
    load: Callable[[], Tuple[list, list]],
    range_days: int,
    today: date,
) -> List[TrendPoint]:
    try:
        shift_data, shifts = load()
        return compute_trend(shift_data, shifts, range_days, today)
    except ValidationError:
        raise
    except Exception as e:
        logger.error("Trend aborted: %s", e)
        raise AggregationError(f"Could not compute trend: {e}") from e


# -----------------------------
# Branch ledger filters
# -----------------------------
DATE_PRESETS = ("today", "this_week", "last_week", "this_month", "custom", "all")
PRODUCT_FILTERS = ("all", "PMS", "AGO")


def date_range(
    preset: str,
    today: date,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> Optional[Tuple[date, date]]:
    """Inclusive (from, to) for a preset; None means no filter. Weeks start Monday."""
    if preset not in DATE_PRESETS:
        raise ValidationError(f"Unknown date preset: {preset}")
    start_of_week = today - timedelta(days=today.weekday())
    if preset == "today":
        return today, today
    if preset == "this_week":
        return start_of_week, today
    if preset == "last_week":
        end_of_last = start_of_week - timedelta(days=1)
        return end_of_last - timedelta(days=6), end_of_last
    if preset == "this_month":
        return today.replace(day=1), today
    if preset == "custom":
        return date_from or date(2020, 1, 1), date_to or today
    return None


def filter_items(
    items: Iterable[LedgerItem],
    today: date,
    preset: str = "all",
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    product: str = "all",
) -> List[LedgerItem]:
    rng = date_range(preset, today, date_from, date_to)
    out = list(items)
    if rng:
        lo, hi = rng
        out = [i for i in out if i.shift_date is not None and lo <= i.shift_date <= hi]
    if product and product.lower() != "all":
        token = product.upper()
        out = [i for i in out if token in (i.pump_product or "").upper()]
    return out
