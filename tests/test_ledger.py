from datetime import date, datetime, timedelta

import pytest

from shift_recon import ledger
from shift_recon.adapters import CashAnalysisEntry, normalize_import_rows
from shift_recon.errors import (
    ExpenseTransitionError,
    ImportApplyError,
    NotFoundError,
    ResolutionError,
    ValidationError,
)
from shift_recon.ledger import (
    LedgerStore,
    apply_import,
    close_shift,
    delete_open_shift,
    historical_reports,
    set_expense_status,
    submit_cash_analysis,
    submit_manual_shift_data,
    update_shift_data_record,
)
from shift_recon.models import ExpenseStatus, ShiftStatus, ShiftTime

DAY = date(2025, 12, 24)


def _manual(store, **overrides):
    payload = dict(
        branch_id="b1",
        shift_date="2025-12-24",
        shift_time="Morning",
        product="PMS",
        pump="Pump 1",
        opening_meter=1000,
        closing_meter=1500,
        price_per_liter=650,
        cash_remitted=310000,
        pos_remitted=10000,
        attendant_id="a1",
    )
    payload.update(overrides)
    return submit_manual_shift_data(store, **payload)


# -----------------------------
# store
# -----------------------------
def test_ensure_open_shift_reuses_the_slot(store):
    first = store.ensure_open_shift("b1", DAY, ShiftTime.MORNING)
    again = store.ensure_open_shift("b1", DAY, ShiftTime.MORNING)
    evening = store.ensure_open_shift("b1", DAY, ShiftTime.EVENING)
    assert first is again
    assert evening is not first
    assert len(store.shifts) == 2


def test_closed_slot_gets_a_new_open_shift(store):
    first = store.ensure_open_shift("b1", DAY, ShiftTime.MORNING)
    first.status = ShiftStatus.CLOSED
    assert store.ensure_open_shift("b1", DAY, ShiftTime.MORNING) is not first


def test_unknown_branch(store):
    with pytest.raises(NotFoundError):
        store.ensure_open_shift("nope", DAY, ShiftTime.MORNING)


def test_add_attendant_matches_existing_name(store):
    assert store.add_attendant("b1", " MUSA ").id == "a1"
    created = store.add_attendant("b1", "Chidi")
    assert created.branch_id == "b1"
    assert len(store.attendants) == 4
    with pytest.raises(ValidationError):
        store.add_attendant("b1", "  ")


def test_save_and_load(tmp_path, store):
    store.path = tmp_path / "data" / "ledger.json"
    record, expenses = _manual(store, expenses=[{"description": "Fuel", "amount": 500}])
    submit_cash_analysis(store, "b1", "Musa", {"1000": 2}, "2025-12-24", "Morning", pump_number=1, product_type="PMS")

    loaded = LedgerStore.load(store.path)
    assert loaded.to_dict() == store.to_dict()
    assert loaded.record(record.id).variance == -5000
    assert loaded.cash_reports[0].denominations[1000] == 2


def test_missing_file_is_an_empty_ledger(tmp_path):
    s = LedgerStore.load(tmp_path / "none.json")
    assert s.branches == [] and s.shift_data == []


# -----------------------------
# manual entry
# -----------------------------
def test_manual_entry(store):
    record, expenses = _manual(store, expenses=[{"description": "Generator diesel", "amount": 2500}])
    assert record.pump_product == "PMS - Pump 1"
    assert record.expected_amount == 325000
    assert record.variance == -5000
    assert record.expenses_total == 2500
    assert expenses[0].status == ExpenseStatus.PENDING
    assert store.expenses == expenses

    _manual(store, pump="Pump 2")
    assert len(store.shifts) == 1
    assert len(store.shift_data) == 2


def test_manual_entry_by_new_name_creates_attendant(store):
    record, _ = _manual(store, attendant_id=None, attendant_name="Chidi")
    assert store.attendants[-1].name == "Chidi"
    assert record.attendant_id == store.attendants[-1].id


def test_manual_entry_rejects_bad_input(store):
    with pytest.raises(ValidationError):
        _manual(store, closing_meter=900)
    with pytest.raises(ValidationError):
        _manual(store, attendant_id=None)
    with pytest.raises(NotFoundError):
        _manual(store, attendant_id="ghost")
    assert store.shift_data == []


def test_rejected_manual_entry_leaves_store_untouched(store):
    attendants = list(store.attendants)
    with pytest.raises(ValidationError):
        _manual(store, attendant_id=None, attendant_name="Typo Name", opening_meter=1500, closing_meter=1000)
    with pytest.raises(ValidationError):
        _manual(store, attendant_id=None, attendant_name="Chidi",
                expenses=[{"description": "Fuel", "amount": float("nan")}])
    assert store.shifts == []
    assert store.attendants == attendants
    assert store.expenses == []


# -----------------------------
# import apply
# -----------------------------
def _import(store, rows):
    return normalize_import_rows(rows, store.branches, store.attendants, default_date=DAY)


def test_apply_import_groups_by_slot(store):
    result = _import(store, [
        {"Branch": "Ikeja", "Attendant": "Musa", "Expected": 1000, "Cash": 900},
        {"Branch": "Ikeja", "Attendant": "Ada", "Expected": 500, "Cash": 500},
        {"Branch": "Ikeja", "Attendant": "Ada", "Expected": 200, "Cash": 200, "Time": "Evening"},
        {"Branch": "Lekki", "Attendant": "Tunde", "Expected": 300, "Cash": 250},
    ])
    applied = apply_import(store, result)
    assert applied.inserted == 4
    assert len(applied.shifts) == 3
    assert len(store.shifts) == 3
    assert sorted(r.variance for r in store.shift_data) == [-100, -50, 0, 0]


def test_apply_import_into_existing_open_shift(store):
    shift = store.ensure_open_shift("b1", DAY, ShiftTime.MORNING)
    apply_import(store, _import(store, [{"Branch": "b1", "Attendant": "Musa", "Expected": 10, "Cash": 10}]))
    assert len(store.shifts) == 1
    assert store.shift_data[0].shift_id == shift.id


def test_unconfirmed_attendants_are_skipped(store):
    result = _import(store, [
        {"Branch": "Ikeja", "Attendant": "Musa", "Expected": 1000, "Cash": 900},
        {"Branch": "Ikeja", "Attendant": "Chidi", "Expected": 500, "Cash": 500},
    ])
    applied = apply_import(store, result)
    assert applied.inserted == 1
    assert applied.skipped == 1
    assert [a.name for a in store.attendants] == ["Musa", "Ada", "Tunde"]


def test_confirmed_attendants_are_created(store):
    result = _import(store, [{"Branch": "Ikeja", "Attendant": "Chidi", "Expected": 500, "Cash": 500}])
    applied = apply_import(store, result, {"b1": ["chidi"]})
    assert applied.attendants_created == ["Chidi"]
    assert store.attendants[-1].name == "Chidi"
    assert store.shift_data[0].attendant_id == store.attendants[-1].id


def test_nothing_applied_raises(store):
    result = _import(store, [{"Branch": "Ikeja", "Attendant": "Chidi", "Expected": 500, "Cash": 500}])
    with pytest.raises(ResolutionError, match="No valid rows inserted"):
        apply_import(store, result)
    assert store.shifts == []


def test_failed_group_keeps_earlier_groups(store, monkeypatch):
    result = _import(store, [
        {"Branch": "Ikeja", "Attendant": "Musa", "Expected": 1000, "Cash": 900},
        {"Branch": "Ikeja", "Attendant": "Ada", "Expected": 500, "Cash": 500},
        {"Branch": "Lekki", "Attendant": "Tunde", "Expected": 300, "Cash": 250},
    ])
    real_build = ledger.build_shift_data_record

    def failing_build(**kw):
        if kw["attendant_id"] == "a3":
            raise ValidationError("write timed out")
        return real_build(**kw)

    monkeypatch.setattr(ledger, "build_shift_data_record", failing_build)

    with pytest.raises(ImportApplyError) as exc:
        apply_import(store, result)
    assert exc.value.inserted == 2
    assert "b2" in exc.value.group
    assert len(store.shift_data) == 2
    assert [s.branch_id for s in store.shifts] == ["b1"]


def test_cash_entries_become_reports_with_pending_expenses(store):
    entry = CashAnalysisEntry(
        attendant_name="Musa",
        product_type="PMS",
        denominations={1000: 300, 500: 20},
        total_cash=310000,
        pos=10000,
        expenses=[{"description": "Fuel for generator", "amount": 2000}],
    )
    result = normalize_import_rows(
        [{"Branch": "Ikeja", "Attendant": "Musa", "Expected": 325000, "Cash": 310000, "POS": 10000}],
        store.branches, store.attendants, default_date=DAY, cash_analysis_entries=[entry],
    )
    applied = apply_import(store, result)

    assert applied.cash_reports == 1
    report = store.cash_reports[0]
    assert report.branch_id == "b1"
    assert report.total_cash == 310000
    assert report.shift_date == DAY
    assert store.expenses[0].status == ExpenseStatus.PENDING
    assert store.expenses[0].shift_data_id == store.shift_data[0].id
    assert store.shift_data[0].expenses_total == 2000


# -----------------------------
# edits
# -----------------------------
def test_update_record_recomputes_variance_and_moves_shift(store):
    record, _ = _manual(store)
    updated = update_shift_data_record(store, record.id, cash_remitted=315000, shift_date="2025-12-23")
    assert updated.variance == 0
    assert store.shift(record.shift_id).shift_date == date(2025, 12, 23)

    with pytest.raises(ValidationError):
        update_shift_data_record(store, record.id, pos_remitted=-1)
    with pytest.raises(NotFoundError):
        update_shift_data_record(store, "missing", cash_remitted=1)


def test_moving_record_joins_the_open_shift_of_that_slot(store):
    first, _ = _manual(store, shift_date="2025-12-23")
    second, _ = _manual(store, attendant_id="a2")
    target = second.shift_id

    update_shift_data_record(store, first.id, shift_date="2025-12-24")

    open_keys = [s.key for s in store.shifts if s.status == ShiftStatus.OPEN]
    assert open_keys == [("b1", DAY, ShiftTime.MORNING)]
    assert first.shift_id == target


def test_moving_one_record_leaves_its_shift_mates_in_place(store):
    first, _ = _manual(store)
    mate, _ = _manual(store, attendant_id="a2")

    update_shift_data_record(store, first.id, shift_date="2025-12-23")

    assert store.shift(mate.shift_id).shift_date == DAY
    assert store.shift(first.shift_id).shift_date == date(2025, 12, 23)
    assert first.shift_id != mate.shift_id
    assert len(store.shifts) == 2


def test_expected_override_clears_meter_readings(store):
    record, _ = _manual(store)
    update_shift_data_record(store, record.id, expected_amount=320000)
    assert record.expected_amount == 320000
    assert (record.opening_meter, record.closing_meter, record.price_per_liter) == (None, None, None)
    assert record.variance == 0

    with pytest.raises(ValidationError):
        update_shift_data_record(store, record.id, expected_amount=float("nan"), cash_remitted=1)
    assert record.cash_remitted == 310000


def test_submit_cash_analysis(store):
    report = submit_cash_analysis(store, "b1", " Musa ", {"1000": 3, "50": 4, "7": 9}, DAY, "evening")
    assert report.total_cash == 3200
    assert report.attendant_name == "Musa"
    assert report.denominations[50] == 4
    assert report.shift_time == ShiftTime.EVENING

    with pytest.raises(ValidationError):
        submit_cash_analysis(store, "b1", "Musa", {"500": -1}, DAY, "Morning")
    with pytest.raises(ValidationError):
        submit_cash_analysis(store, "b1", "", {"500": 1}, DAY, "Morning")


def test_expense_status(store):
    _, expenses = _manual(store, expenses=[{"description": "Fuel", "amount": 500}, {"description": "Tea", "amount": 50}])
    assert set_expense_status(store, expenses[0].id, approved=True).status == ExpenseStatus.APPROVED
    assert set_expense_status(store, expenses[1].id, approved=False).status == ExpenseStatus.REJECTED
    with pytest.raises(ExpenseTransitionError):
        set_expense_status(store, expenses[0].id, approved=False)
    with pytest.raises(NotFoundError):
        set_expense_status(store, "nope", approved=True)


def test_delete_open_shift_cascades(store):
    _manual(store, shift_date="2025-12-23", expenses=[{"description": "Old", "amount": 1}])
    record, _ = _manual(store, shift_date="2025-12-24", expenses=[{"description": "Fuel", "amount": 500}])

    deleted = delete_open_shift(store, "b1")
    assert deleted["shift_id"] == record.shift_id
    assert deleted == {"shift_id": record.shift_id, "records": 1, "expenses": 1}
    assert [s.shift_date for s in store.shifts] == [date(2025, 12, 23)]
    assert len(store.shift_data) == 1
    assert [e.description for e in store.expenses] == ["Old"]

    with pytest.raises(NotFoundError):
        delete_open_shift(store, "b2")


def test_close_shift(store):
    record, _ = _manual(store)
    shift = close_shift(store, record.shift_id, gm_signed_off=True)
    assert shift.status == ShiftStatus.CLOSED
    assert shift.gm_signed_off
    with pytest.raises(ValidationError):
        close_shift(store, record.shift_id)


def test_historical_reports(store):
    old = submit_cash_analysis(store, "b1", "Musa", {"1000": 1}, DAY - timedelta(days=40), "Morning", 1, "PMS")
    a = submit_cash_analysis(store, "b1", "Musa", {"1000": 1}, DAY - timedelta(days=2), "Morning", 2, "PMS")
    b = submit_cash_analysis(store, "b2", "Tunde", {"500": 1}, DAY, "Evening", 4, "AGO")
    a.created_at = datetime(2025, 12, 22, 8)
    b.created_at = datetime(2025, 12, 24, 20)

    reports = historical_reports(store, days=30, today=DAY)
    assert [r["id"] for r in reports] == [b.id, a.id]
    assert old.id not in {r["id"] for r in reports}
    assert reports[0]["branch_name"] == "Lekki"
    assert reports[0]["product"] == "AGO - Pump 4"
