from datetime import datetime, timedelta

import pytest

from conftest import TODAY, make_record, make_shift
from shift_recon.engine import compute_global_overview
from shift_recon.errors import ValidationError
from shift_recon.matcher import (
    Resolved,
    Unresolved,
    attendant_drilldown,
    declared_total,
    find_cash_report,
    match_reconciliation,
    reconcile_cash_report,
    resolve_attendant,
)
from shift_recon.models import (
    Attendant,
    Branch,
    CashAnalysisReport,
    Expense,
    MatchStatus,
    ShiftTime,
)

ATTENDANTS = [Attendant(id="a1", name="Musa", branch_id="b1"), Attendant(id="a9", name="Musa", branch_id="b2")]


def _report(total_cash, name="Musa", created_at=None, denominations=None, time=ShiftTime.MORNING):
    return CashAnalysisReport(
        id="c1",
        branch_id="b1",
        attendant_name=name,
        pump_number=1,
        product_type="PMS",
        denominations=denominations or {1000: int(total_cash // 1000)},
        total_cash=total_cash,
        shift_date=TODAY,
        shift_time=time,
        created_at=created_at or datetime(2025, 12, 24, 18, 0),
    )


@pytest.mark.parametrize(
    "declared,remitted,status",
    [
        (1000.0, 1000.0, MatchStatus.MATCHED),
        (1000.5, 1000.0, MatchStatus.MATCHED),
        (1001.0, 1000.0, MatchStatus.MISMATCH),
        (900.0, 1000.0, MatchStatus.MISMATCH),
        (900.0, None, MatchStatus.INDETERMINATE),
    ],
)
def test_match_tolerance(declared, remitted, status):
    assert match_reconciliation(declared, remitted, tolerance=1.0).status == status


def test_indeterminate_has_no_difference():
    assert match_reconciliation(10, None).difference is None


def test_declared_total_variants():
    assert declared_total(5000, 200, 700) == 5200
    assert declared_total(5000, 200, 700, strict=True) == 5900
    with pytest.raises(ValidationError):
        declared_total(-1)


def test_resolve_attendant_is_exact_within_branch():
    assert resolve_attendant("b1", "  MUSA ", ATTENDANTS) == Resolved(attendant_id="a1", name="Musa")
    assert resolve_attendant("b2", "musa", ATTENDANTS).attendant_id == "a9"
    unresolved = resolve_attendant("b1", "Musa A.", ATTENDANTS)
    assert isinstance(unresolved, Unresolved)
    assert unresolved.name == "Musa A."


def test_find_cash_report_takes_latest():
    early = _report(1000, created_at=datetime(2025, 12, 24, 9, 0))
    late = _report(2000, name="musa", created_at=datetime(2025, 12, 24, 19, 0))
    evening = _report(3000, time=ShiftTime.EVENING)
    found = find_cash_report([early, late, evening], "b1", "Musa", TODAY, ShiftTime.MORNING)
    assert found is late
    assert find_cash_report([early], "b1", "Ada", TODAY, ShiftTime.MORNING) is None


def _rows():
    branches = [Branch(id="b1", name="Ikeja")]
    shifts = [make_shift("s1", "b1", TODAY), make_shift("s0", "b1", TODAY - timedelta(days=1))]
    records = [
        make_record("r1", "s1", expected=6000, cash=5000, pos=1000),
        make_record("r0", "s0", expected=2000, cash=2000),
    ]
    return compute_global_overview(branches, shifts, records, [], ATTENDANTS)


def test_reconcile_against_whole_branch():
    # ledger: 5000 + 1000 (today) + 2000 (yesterday)
    result = reconcile_cash_report(_report(7000), _rows(), expenses_claimed=1000)
    assert result.status == MatchStatus.MATCHED
    assert result.remitted == 8000


def test_reconcile_same_shift_only():
    result = reconcile_cash_report(_report(5000), _rows(), expenses_claimed=0, same_shift_only=True)
    assert result.remitted == 6000
    assert result.status == MatchStatus.MISMATCH
    assert result.difference == -1000

    strict = reconcile_cash_report(_report(5000), _rows(), pos_remitted=1000, strict=True, same_shift_only=True)
    assert strict.status == MatchStatus.MATCHED


def test_reconcile_unknown_attendant_is_indeterminate():
    result = reconcile_cash_report(_report(5000, name="Chidi"), _rows())
    assert result.status == MatchStatus.INDETERMINATE


def test_drilldown_uses_cash_report_denominations():
    shifts = [make_shift("s1", "b1", TODAY)]
    records = [make_record("r1", "s1", expected=6000, cash=5000, pos=1000)]
    expenses = [Expense(id="e1", shift_data_id="r1", description="Fuel", amount=300)]
    report = _report(4500, denominations={1000: 4, 500: 1})

    d = attendant_drilldown("b1", "musa", TODAY, ShiftTime.MORNING, [report], shifts, ATTENDANTS, records, expenses)
    assert d.cash_report is report
    assert d.cash_total == 4500
    assert d.pos_total == 1000
    assert d.expense_total == 300
    assert d.grand_total == 5800


def test_drilldown_without_report_falls_back_to_ledger_cash():
    shifts = [make_shift("s1", "b1", TODAY)]
    records = [make_record("r1", "s1", expected=6000, cash=5000, pos=1000)]
    d = attendant_drilldown("b1", "Musa", TODAY, ShiftTime.MORNING, [], shifts, ATTENDANTS, records, [])
    assert d.cash_report is None
    assert d.grand_total == 6000
