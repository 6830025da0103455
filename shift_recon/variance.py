"""
Variance Calculator

Turns a single shift-data entry (meter readings, price, remittance) into
liters sold, expected revenue and variance. Pure; no side effects.
"""
from __future__ import annotations

import math
import uuid
from dataclasses import dataclass
from typing import Any, Optional

from .errors import ValidationError
from .models import ShiftDataRecord


@dataclass(frozen=True)
class VarianceResult:
    liters_sold: float
    expected_amount: float
    variance: float

    def to_dict(self):
        return {
            "liters_sold": self.liters_sold,
            "expected_amount": self.expected_amount,
            "variance": self.variance,
        }


def require_amount(name: str, value: Any) -> float:
    """Coerce to a finite, non-negative float or raise ValidationError"""
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{name} is required")
    try:
        x = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be a number, got {value!r}")
    if math.isnan(x) or math.isinf(x):
        raise ValidationError(f"{name} must be finite")
    if x < 0:
        raise ValidationError(f"{name} cannot be negative ({x})")
    return x


def compute_variance(opening: Any, closing: Any, price: Any, cash: Any, pos: Any) -> VarianceResult:
    """
    liters_sold = max(0, closing - opening)
    expected    = liters_sold * price
    variance    = (cash + pos) - expected

    A closing reading below the opening one is a data-entry reversal and is
    rejected; the max(0, ...) clamp only absorbs floating noise.
    """
    opening = require_amount("opening_meter", opening)
    closing = require_amount("closing_meter", closing)
    price = require_amount("price_per_liter", price)
    cash = require_amount("cash_remitted", cash)
    pos = require_amount("pos_remitted", pos)

    if closing < opening:
        raise ValidationError(
            f"closing_meter ({closing}) is lower than opening_meter ({opening})"
        )
    if price <= 0:
        raise ValidationError("price_per_liter must be greater than zero")

    liters_sold = max(0.0, closing - opening)
    expected_amount = liters_sold * price
    variance = (cash + pos) - expected_amount
    return VarianceResult(liters_sold=liters_sold, expected_amount=expected_amount, variance=variance)


def variance_from_amounts(expected: Any, cash: Any, pos: Any) -> float:
    """Variance when expected revenue is supplied directly (bulk import path)"""
    expected = require_amount("expected_amount", expected)
    cash = require_amount("cash_remitted", cash)
    pos = require_amount("pos_remitted", pos)
    return (cash + pos) - expected


def build_shift_data_record(
    shift_id: str,
    attendant_id: str,
    pump_product: str,
    cash_remitted: float,
    pos_remitted: float,
    opening_meter: Optional[float] = None,
    closing_meter: Optional[float] = None,
    price_per_liter: Optional[float] = None,
    expected_amount: Optional[float] = None,
    record_id: Optional[str] = None,
) -> ShiftDataRecord:
    """
    Build a ShiftDataRecord, deriving expected/variance from meters when all
    three meter fields are given, otherwise from the supplied expected_amount.
    """
    if not shift_id or not attendant_id:
        raise ValidationError("shift_id and attendant_id are required")

    use_meters = opening_meter is not None and closing_meter is not None and price_per_liter is not None
    if use_meters:
        result = compute_variance(opening_meter, closing_meter, price_per_liter, cash_remitted, pos_remitted)
        expected = result.expected_amount
        variance = result.variance
    else:
        if expected_amount is None:
            raise ValidationError("expected_amount is required when meter readings are not given")
        variance = variance_from_amounts(expected_amount, cash_remitted, pos_remitted)
        expected = float(expected_amount)

    return ShiftDataRecord(
        id=record_id or str(uuid.uuid4()),
        shift_id=shift_id,
        attendant_id=attendant_id,
        pump_product=pump_product or "General",
        expected_amount=expected,
        cash_remitted=float(cash_remitted),
        pos_remitted=float(pos_remitted),
        variance=variance,
        opening_meter=float(opening_meter) if use_meters else None,
        closing_meter=float(closing_meter) if use_meters else None,
        price_per_liter=float(price_per_liter) if use_meters else None,
    )


def recompute_variance(record: ShiftDataRecord) -> float:
    return (record.cash_remitted + record.pos_remitted) - record.expected_amount
