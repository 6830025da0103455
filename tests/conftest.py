from datetime import date

import pytest

from shift_recon.ledger import LedgerStore
from shift_recon.models import Attendant, Shift, ShiftDataRecord, ShiftStatus, ShiftTime


@pytest.fixture
def store() -> LedgerStore:
    """Two branches, three attendants, nothing recorded yet (in memory only)"""
    s = LedgerStore()
    s.add_branch("Ikeja", location="Lagos", branch_id="b1")
    s.add_branch("Lekki", location="Lagos", branch_id="b2")
    s.attendants.extend([
        Attendant(id="a1", name="Musa", branch_id="b1"),
        Attendant(id="a2", name="Ada", branch_id="b1"),
        Attendant(id="a3", name="Tunde", branch_id="b2"),
    ])
    return s


def make_shift(shift_id, branch_id, day, time=ShiftTime.MORNING, status=ShiftStatus.OPEN) -> Shift:
    return Shift(id=shift_id, branch_id=branch_id, shift_date=day, shift_time=time, status=status)


def make_record(record_id, shift_id, expected, cash, pos=0.0, attendant_id="a1", product="PMS - Pump 1") -> ShiftDataRecord:
    return ShiftDataRecord(
        id=record_id,
        shift_id=shift_id,
        attendant_id=attendant_id,
        pump_product=product,
        expected_amount=expected,
        cash_remitted=cash,
        pos_remitted=pos,
        variance=(cash + pos) - expected,
    )


TODAY = date(2025, 12, 24)  # a Wednesday
