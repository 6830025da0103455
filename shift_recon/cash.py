"""
Cash Denomination Totalizer

Sums a {note value: piece count} mapping into a physical cash total.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

import pandas as pd

from .errors import ValidationError

DENOMINATIONS = (1000, 500, 200, 100, 50, 20, 10, 5)


@dataclass(frozen=True)
class CashTotal:
    subtotals: Dict[int, int] = field(default_factory=dict)
    total: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subtotals": {str(k): v for k, v in self.subtotals.items()},
            "total": self.total,
        }


def _denomination(key: Any) -> Optional[int]:
    """Note value for a mapping key, or None when the key is not a known note"""
    try:
        value = int(str(key).strip())
    except (TypeError, ValueError):
        return None
    return value if value in DENOMINATIONS else None


def _count(denomination: int, raw: Any) -> int:
    if raw is None or isinstance(raw, bool):
        raise ValidationError(f"Count for {denomination} must be an integer")
    if isinstance(raw, float):
        if math.isnan(raw) or not raw.is_integer():
            raise ValidationError(f"Count for {denomination} must be an integer, got {raw}")
        raw = int(raw)
    try:
        n = int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"Count for {denomination} must be an integer, got {raw!r}")
    if n < 0:
        raise ValidationError(f"Count for {denomination} cannot be negative ({n})")
    return n


def totalize_cash(counts: Mapping[Any, Any]) -> CashTotal:
    """
    Per-denomination subtotal (value * count) and their sum.

    Unknown denominations are ignored; negative counts are rejected.
    Subtotals are listed in DENOMINATIONS order regardless of input order.
    """
    if counts is None:
        counts = {}
    parsed: Dict[int, int] = {}
    for key, raw in counts.items():
        d = _denomination(key)
        if d is None:
            continue
        parsed[d] = parsed.get(d, 0) + _count(d, raw)

    subtotals = {d: d * parsed.get(d, 0) for d in DENOMINATIONS}
    return CashTotal(subtotals=subtotals, total=sum(subtotals.values()))


def clamp_count(raw: Any) -> int:
    """Display-side clamp: blank, unparseable or negative input shows as 0"""
    if raw is None:
        return 0
    try:
        if pd.isna(raw):
            return 0
    except (TypeError, ValueError):
        pass
    try:
        n = int(float(str(raw).strip().replace(",", "")))
    except (TypeError, ValueError):
        return 0
    return max(0, n)


def normalize_counts(counts: Mapping[Any, Any]) -> Dict[int, int]:
    """Validated {denomination: count} with every known note present"""
    total = totalize_cash(counts)
    return {d: (total.subtotals[d] // d) for d in DENOMINATIONS}
