from datetime import date, timedelta

import pytest

from conftest import TODAY, make_record, make_shift
from shift_recon.engine import (
    active_shift,
    compute_global_overview,
    compute_global_totals,
    compute_trend,
    date_range,
    filter_items,
    ledger_items,
    overview_from_source,
    trend_from_source,
)
from shift_recon.errors import AggregationError, ValidationError
from shift_recon.models import (
    Attendant,
    Branch,
    Expense,
    ExpensePolicy,
    ExpenseStatus,
    ShiftStatus,
    ShiftTime,
)

BRANCHES = [Branch(id="x", name="Branch X"), Branch(id="y", name="Branch Y")]
ATTENDANTS = [Attendant(id="a1", name="Musa", branch_id="x"), Attendant(id="a2", name="Ada", branch_id="x")]


def _branch_x():
    shifts = [make_shift("s1", "x", TODAY)]
    records = [
        make_record("r1", "s1", expected=100, cash=90),
        make_record("r2", "s1", expected=200, cash=200, attendant_id="a2"),
    ]
    return shifts, records


def test_branch_totals():
    shifts, records = _branch_x()
    rows = compute_global_overview(BRANCHES, shifts, records, [], ATTENDANTS)

    x, y = rows
    assert x.branch.id == "x"
    assert x.total_expected == 300
    assert x.total_cash == 290
    assert x.total_pos == 0
    assert x.total_variance == -10
    assert [i.attendant_name for i in x.items] == ["Musa", "Ada"]

    assert y.shift is None
    assert y.items == []
    assert y.total_variance == 0


def test_global_totals():
    shifts, records = _branch_x()
    records.append(make_record("r3", "s1", expected=50, cash=0, pos=60))
    expenses = [Expense(id="e1", shift_data_id="r1", description="Generator diesel", amount=10)]
    totals = compute_global_totals(compute_global_overview(BRANCHES, shifts, records, expenses, ATTENDANTS))
    assert totals.expected == 350
    assert totals.remitted == 350
    assert totals.variance == 0
    assert totals.expenses == 10


def test_overview_is_idempotent():
    shifts, records = _branch_x()
    expenses = [Expense(id="e1", shift_data_id="r1", description="Fuel", amount=10)]
    first = compute_global_overview(BRANCHES, shifts, records, expenses, ATTENDANTS)
    second = compute_global_overview(BRANCHES, shifts, records, expenses, ATTENDANTS)
    assert first == second


def test_every_shift_contributes_and_latest_is_shown():
    shifts = [
        make_shift("old", "x", TODAY - timedelta(days=2), status=ShiftStatus.CLOSED),
        make_shift("new", "x", TODAY),
    ]
    records = [make_record("r1", "old", 100, 100), make_record("r2", "new", 100, 80)]
    row = compute_global_overview(BRANCHES, shifts, records, [], ATTENDANTS)[0]
    assert row.shift.id == "new"
    assert row.total_expected == 200
    assert row.total_variance == -20


def test_only_pending_expenses_of_the_branch_are_listed():
    shifts, records = _branch_x()
    shifts.append(make_shift("sy", "y", TODAY))
    records.append(make_record("ry", "sy", 10, 10))
    expenses = [
        Expense(id="e1", shift_data_id="r1", description="Fuel", amount=10),
        Expense(id="e2", shift_data_id="r2", description="Tea", amount=5, status=ExpenseStatus.APPROVED),
        Expense(id="e3", shift_data_id="ry", description="Nylon", amount=3),
    ]
    x, y = compute_global_overview(BRANCHES, shifts, records, expenses, ATTENDANTS)
    assert [e.id for e in x.pending_expenses] == ["e1"]
    assert x.pending_expenses[0].attendant_name == "Musa"
    assert x.pending_expense_total == 10
    assert [e.id for e in y.pending_expenses] == ["e3"]


def test_offset_policy_only_changes_effective_variance():
    shifts, records = _branch_x()
    expenses = [Expense(id="e1", shift_data_id="r1", description="Fuel", amount=10, status=ExpenseStatus.APPROVED)]

    informational = compute_global_overview(BRANCHES, shifts, records, expenses, ATTENDANTS)[0]
    offset = compute_global_overview(BRANCHES, shifts, records, expenses, ATTENDANTS, ExpensePolicy.OFFSET_SHORTAGE)[0]

    assert informational.total_effective_variance == -10
    assert offset.total_variance == -10
    assert offset.total_effective_variance == 0
    assert records[0].variance == -10


def test_orphan_records_are_dropped():
    shifts, records = _branch_x()
    records.append(make_record("orphan", "missing-shift", 999, 0))
    items = ledger_items(records, shifts, ATTENDANTS)
    assert "orphan" not in {i.id for i in items}


def test_failed_read_aborts_overview():
    def load():
        raise IOError("store unavailable")

    with pytest.raises(AggregationError):
        overview_from_source(load)


def test_overview_from_source():
    shifts, records = _branch_x()
    rows = overview_from_source(lambda: (BRANCHES, shifts, records, [], ATTENDANTS))
    assert rows[0].total_variance == -10


# -----------------------------
# active shift
# -----------------------------
def test_active_shift_prefers_latest_open_slot():
    shifts = [
        make_shift("m", "x", TODAY, ShiftTime.MORNING),
        make_shift("e", "x", TODAY, ShiftTime.EVENING),
        make_shift("closed", "x", TODAY + timedelta(days=1), status=ShiftStatus.CLOSED),
        make_shift("other", "y", TODAY + timedelta(days=5)),
    ]
    assert active_shift(shifts, "x").id == "e"
    assert active_shift(shifts, "z") is None


# -----------------------------
# trend
# -----------------------------
def test_same_day_records_roll_up():
    shifts = [make_shift("s1", "x", TODAY), make_shift("s2", "y", TODAY)]
    records = [make_record("r1", "s1", 1000, 500), make_record("r2", "s2", 800, 1000)]
    assert [r.variance for r in records] == [-500, 200]

    points = compute_trend(records, shifts, range_days=7, today=TODAY)
    assert len(points) == 1
    assert points[0].date == TODAY
    assert points[0].name == "Wed"
    assert points[0].variance == -300
    assert points[0].claimed == 500
    assert points[0].actual == 0


def test_trend_window_and_order():
    shifts = [
        make_shift("s_today", "x", TODAY),
        make_shift("s_edge", "x", TODAY - timedelta(days=7)),
        make_shift("s_old", "x", TODAY - timedelta(days=8)),
    ]
    records = [
        make_record("r1", "s_today", 100, 50, pos=20),
        make_record("r2", "s_edge", 100, 100),
        make_record("r3", "s_old", 100, 0),
    ]
    points = compute_trend(records, shifts, range_days=7, today=TODAY)
    assert [p.date for p in points] == [TODAY - timedelta(days=7), TODAY]
    assert points[1].actual == 20


def test_trend_empty_and_invalid_range():
    assert compute_trend([], [], range_days=30, today=TODAY) == []
    with pytest.raises(ValidationError):
        compute_trend([], [], range_days=-1, today=TODAY)


def test_trend_failed_read_aborts():
    def load():
        raise RuntimeError("timeout")

    with pytest.raises(AggregationError):
        trend_from_source(load, 30, TODAY)


# -----------------------------
# ledger filters
# -----------------------------
@pytest.mark.parametrize(
    "preset,expected",
    [
        ("today", (TODAY, TODAY)),
        ("this_week", (date(2025, 12, 22), TODAY)),
        ("last_week", (date(2025, 12, 15), date(2025, 12, 21))),
        ("this_month", (date(2025, 12, 1), TODAY)),
        ("custom", (date(2020, 1, 1), TODAY)),
        ("all", None),
    ],
)
def test_date_presets(preset, expected):
    assert date_range(preset, TODAY) == expected


def test_unknown_preset_rejected():
    with pytest.raises(ValidationError):
        date_range("yesterday", TODAY)


def test_filter_items_by_date_and_product():
    shifts = [make_shift("s1", "x", TODAY), make_shift("s0", "x", date(2025, 12, 10))]
    records = [
        make_record("r1", "s1", 100, 100, product="PMS - Pump 1"),
        make_record("r2", "s1", 100, 100, product="AGO - Pump 3"),
        make_record("r3", "s0", 100, 100, product="PMS - Pump 2"),
    ]
    items = ledger_items(records, shifts, ATTENDANTS)

    assert [i.id for i in filter_items(items, TODAY, preset="this_week")] == ["r1", "r2"]
    assert [i.id for i in filter_items(items, TODAY, product="PMS")] == ["r1", "r3"]
    assert [i.id for i in filter_items(items, TODAY, preset="this_week", product="ago")] == ["r2"]
    custom = filter_items(items, TODAY, preset="custom", date_from=date(2025, 12, 9), date_to=date(2025, 12, 11))
    assert [i.id for i in custom] == ["r3"]
