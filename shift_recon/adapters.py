"""
Bulk Import Adapters

Each adapter converts one spreadsheet layout into canonical rows. The
normalizer then resolves branch/attendant identity and produces
ImportResult, which the ledger applies in a separate step.

Supported layouts:
- Flat rows (CSV or a single sheet): one row per attendant/pump with
  arbitrary header casing and aliases
- Meter readings sheet: a title block, then a header row with attendant,
  product, opening/closing meters, price, cash and POS columns
- Cash analysis sheet: a header cell with date + shift time, product sections
  (PMS / AGO / DPK), and side-by-side 3-column attendant blocks
  [label | count | amount] listing denominations then CASH / POS / TOTAL and
  expense rows

Parsing is heuristic. A sheet whose structure does not fit yields no rows; it
never raises half-way through.
"""
from __future__ import annotations

import io
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any, BinaryIO, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import pandas as pd

from .cash import DENOMINATIONS, clamp_count, totalize_cash
from .errors import ResolutionError, ValidationError
from .matcher import AttendantRef, Resolved, Unresolved, normalize_name, resolve_attendant
from .models import Attendant, Branch, ShiftTime
from .variance import compute_variance, require_amount

logger = logging.getLogger(__name__)


# =============================================================================
# Column aliases (canonical key -> accepted header names, in priority order)
# =============================================================================

ALIASES: Dict[str, List[str]] = {
    "branch": ["branch_id", "branch", "branch_name", "station"],
    "attendant_name": ["attendant_name", "attendant", "name"],
    "pump_product": ["pump_product", "product", "pump"],
    "expected_amount": ["expected_amount", "expected", "expected_sales"],
    "cash_remitted": ["cash_remitted", "cash", "cash_sales"],
    "pos_remitted": ["pos_remitted", "pos", "pos_sales"],
    "shift_date": ["shift_date", "date"],
    "shift_time": ["shift_time", "time"],
    "opening_meter": ["opening_meter", "opening", "opening_reading"],
    "closing_meter": ["closing_meter", "closing", "closing_reading"],
    "price_per_liter": ["price_per_liter", "price", "unit_price", "rate"],
}

PRODUCT_TOKENS = ("PMS", "AGO", "DPK")
_PRODUCT_RE = re.compile(r"^(PMS|AGO|DPK)\b", re.IGNORECASE)
_TIME_RE = re.compile(r"\b(morning|evening)\b", re.IGNORECASE)
_SUMMARY_RE = re.compile(r"^(sub[\s-]?total|grand\s+total|totals?)\b", re.IGNORECASE)
_DATE_PATTERNS = [
    # 2025-12-26
    (re.compile(r"\b\d{4}[._/-]\d{1,2}[._/-]\d{1,2}\b"), False),
    # 26/12/2025 or 26-12-25
    (re.compile(r"\b\d{1,2}[._/-]\d{1,2}[._/-]\d{2,4}\b"), True),
    # 26th December 2025, 26 Dec, 2025
    (re.compile(r"\b\d{1,2}(?:st|nd|rd|th)?\s+[A-Za-z]{3,9},?\s+\d{4}\b"), True),
]
_BLOCK_HEADER_WORDS = {"qty", "quantity", "pcs", "pieces", "count", "amount", "amt",
                       "denomination", "denominations", "note", "notes", "value"}


def _key(header: Any) -> str:
    return re.sub(r"\s+", "_", str(header).strip().lower())


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    try:
        if pd.isna(value):
            return True
    except (TypeError, ValueError):
        return False
    return str(value).strip() == ""


def _text(value: Any) -> str:
    return "" if _is_blank(value) else str(value).strip()


def parse_amount(value: Any) -> Optional[float]:
    """Amount from numbers or strings like '₦1,250.00' / '(300)'; None when blank or unparseable"""
    if _is_blank(value):
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    s = str(value).strip().replace(",", "").replace("₦", "").replace("$", "").replace("NGN", "").strip()
    if s.startswith("(") and s.endswith(")"):
        s = "-" + s[1:-1]
    try:
        return float(s)
    except ValueError:
        return None


def parse_date(value: Any) -> Optional[date]:
    """Dates from Excel cells, ISO strings or day-first strings"""
    if _is_blank(value):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    s = str(value).strip()
    for pat, dayfirst in _DATE_PATTERNS:
        m = pat.search(s)
        if not m:
            continue
        text = re.sub(r"(\d)(?:st|nd|rd|th)\b", r"\1", m.group(0))
        try:
            return pd.to_datetime(text, dayfirst=dayfirst).date()
        except (ValueError, OverflowError):
            continue
    return None


def parse_shift_time(value: Any) -> Optional[ShiftTime]:
    m = _TIME_RE.search(_text(value))
    return ShiftTime.parse(m.group(1)) if m else None


def _at(grid: Sequence[Sequence[Any]], r: int, c: int) -> Any:
    if r < 0 or c < 0 or r >= len(grid) or c >= len(grid[r]):
        return None
    return grid[r][c]


def _grid(df: pd.DataFrame) -> List[List[Any]]:
    """Raw cell grid (header=None frames) with NaN turned into None"""
    if df is None or df.empty:
        return []
    return [[None if _is_blank(v) else v for v in row] for row in df.itertuples(index=False, name=None)]


def find_shift_header(grid: Sequence[Sequence[Any]], scan_rows: int = 6) -> Tuple[Optional[date], Optional[ShiftTime]]:
    """Date and shift time from the title cells at the top of a sheet"""
    found_date: Optional[date] = None
    found_time: Optional[ShiftTime] = None
    for r in range(min(scan_rows, len(grid))):
        for v in grid[r]:
            if _is_blank(v):
                continue
            if found_date is None and (isinstance(v, (datetime, date)) or isinstance(v, str)):
                found_date = parse_date(v)
            if found_time is None:
                found_time = parse_shift_time(v)
        if found_date and found_time:
            break
    return found_date, found_time


# =============================================================================
# Result types
# =============================================================================

@dataclass
class ImportedShiftRecord:
    """One canonical shift_data row awaiting the apply step"""
    branch_id: str
    attendant: AttendantRef
    pump_product: str
    expected_amount: float
    cash_remitted: float
    pos_remitted: float
    shift_date: date
    shift_time: ShiftTime
    opening_meter: Optional[float] = None
    closing_meter: Optional[float] = None
    price_per_liter: Optional[float] = None
    source_row: Optional[int] = None

    @property
    def attendant_name(self) -> str:
        return self.attendant.name

    @property
    def variance(self) -> float:
        return (self.cash_remitted + self.pos_remitted) - self.expected_amount

    @property
    def group_key(self) -> Tuple[str, date, ShiftTime]:
        return (self.branch_id, self.shift_date, self.shift_time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "branch_id": self.branch_id,
            "attendant_name": self.attendant_name,
            "attendant_id": self.attendant.attendant_id if isinstance(self.attendant, Resolved) else None,
            "resolved": isinstance(self.attendant, Resolved),
            "pump_product": self.pump_product,
            "expected_amount": self.expected_amount,
            "cash_remitted": self.cash_remitted,
            "pos_remitted": self.pos_remitted,
            "variance": self.variance,
            "shift_date": self.shift_date.isoformat(),
            "shift_time": self.shift_time.value,
            "source_row": self.source_row,
        }


@dataclass
class CashAnalysisEntry:
    """One attendant block from a cash analysis sheet"""
    attendant_name: str
    product_type: str
    denominations: Dict[int, int]
    total_cash: float
    pos: float = 0.0
    expenses: List[Dict[str, Any]] = field(default_factory=list)
    declared_total: Optional[float] = None
    shift_date: Optional[date] = None
    shift_time: Optional[ShiftTime] = None
    branch_id: Optional[str] = None
    pump_number: int = 0

    @property
    def expense_total(self) -> float:
        return sum(e["amount"] for e in self.expenses)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "branch_id": self.branch_id,
            "attendant_name": self.attendant_name,
            "product_type": self.product_type,
            "pump_number": self.pump_number,
            "denominations": {str(k): v for k, v in self.denominations.items()},
            "total_cash": self.total_cash,
            "pos": self.pos,
            "expenses": list(self.expenses),
            "declared_total": self.declared_total,
            "shift_date": self.shift_date.isoformat() if self.shift_date else None,
            "shift_time": self.shift_time.value if self.shift_time else None,
        }


@dataclass
class SkippedRow:
    row: Optional[int]
    reason: str
    kind: str = "shift_data"

    def to_dict(self) -> Dict[str, Any]:
        return {"row": self.row, "reason": self.reason, "kind": self.kind}


@dataclass
class ImportResult:
    shift_records: List[ImportedShiftRecord] = field(default_factory=list)
    cash_analysis_entries: List[CashAnalysisEntry] = field(default_factory=list)
    skipped: List[SkippedRow] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.shift_records)

    @property
    def skipped_count(self) -> int:
        return sum(1 for s in self.skipped if s.kind == "shift_data")

    @property
    def proposed_attendants(self) -> Dict[str, List[str]]:
        """
        Names that matched no existing attendant, per branch.

        Each would become a NEW attendant on apply; a typo here silently forks
        an attendant, so callers confirm these explicitly.
        """
        out: Dict[str, List[str]] = {}
        seen = set()
        for rec in self.shift_records:
            if isinstance(rec.attendant, Unresolved):
                k = (rec.branch_id, normalize_name(rec.attendant.raw_name))
                if k in seen:
                    continue
                seen.add(k)
                out.setdefault(rec.branch_id, []).append(rec.attendant.name)
        return out

    def to_dict(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "skipped_count": self.skipped_count,
            "shift_records": [r.to_dict() for r in self.shift_records],
            "cash_analysis_entries": [e.to_dict() for e in self.cash_analysis_entries],
            "skipped": [s.to_dict() for s in self.skipped],
            "proposed_attendants": self.proposed_attendants,
        }


# =============================================================================
# Base Adapter
# =============================================================================

class BaseAdapter(ABC):
    """Base class for all sheet adapters"""

    name: str = "base"

    @abstractmethod
    def can_handle(self, sheet_name: str, df: pd.DataFrame) -> bool:
        """Check if this adapter understands the sheet"""
        pass

    @abstractmethod
    def parse(self, df: pd.DataFrame) -> list:
        """Parse a raw (header=None) sheet"""
        pass

    def _find_column(self, headers: Sequence[str], candidates: List[str], taken: Iterable[int] = ()) -> Optional[int]:
        """Index of the first exact header match, else the first partial match"""
        taken = set(taken)
        for cand in candidates:
            for i, h in enumerate(headers):
                if i not in taken and h == cand:
                    return i
        for cand in candidates:
            for i, h in enumerate(headers):
                if i not in taken and h and cand in h:
                    return i
        return None


# =============================================================================
# Meter readings / flat rows
# =============================================================================

class MeterSheetAdapter(BaseAdapter):
    """
    Rows of attendant / product / meters / remittance under a sniffed header.

    The header is the first row (within `scan_rows`) naming an attendant
    column plus at least one amount or meter column. A product section row
    (a lone "PMS" / "AGO" cell) supplies the product for rows without one.
    """

    name = "meter_readings"
    scan_rows = 15

    def can_handle(self, sheet_name: str, df: pd.DataFrame) -> bool:
        n = sheet_name.lower()
        if "meter" in n or "reading" in n:
            return True
        return self._header_row(_grid(df)) is not None

    def _column_map(self, headers: List[str]) -> Dict[str, int]:
        cols: Dict[str, int] = {}
        for canonical, options in ALIASES.items():
            idx = self._find_column(headers, options, taken=cols.values())
            if idx is not None:
                cols[canonical] = idx
        return cols

    def _header_row(self, grid: List[List[Any]]) -> Optional[int]:
        for r in range(min(self.scan_rows, len(grid))):
            headers = [_key(v) if not _is_blank(v) else "" for v in grid[r]]
            cols = self._column_map(headers)
            money = {"expected_amount", "cash_remitted", "pos_remitted", "opening_meter", "closing_meter"}
            if "attendant_name" in cols and money & set(cols):
                return r
        return None

    def parse(self, df: pd.DataFrame) -> List[Dict[str, Any]]:
        grid = _grid(df)
        header_idx = self._header_row(grid)
        if header_idx is None:
            logger.warning("Meter sheet: no header row found")
            return []

        title_date, title_time = find_shift_header(grid[:header_idx]) if header_idx else (None, None)
        headers = [_key(v) if not _is_blank(v) else "" for v in grid[header_idx]]
        cols = self._column_map(headers)

        rows: List[Dict[str, Any]] = []
        section: Optional[str] = None
        for r in range(header_idx + 1, len(grid)):
            cells = grid[r]
            filled = [v for v in cells if not _is_blank(v)]
            if not filled:
                continue
            if len(filled) == 1 and _PRODUCT_RE.match(_text(filled[0])):
                section = _PRODUCT_RE.match(_text(filled[0])).group(1).upper()
                continue

            row: Dict[str, Any] = {k: _at(grid, r, i) for k, i in cols.items()}
            if _SUMMARY_RE.match(_text(row.get("attendant_name"))):
                continue
            if _is_blank(row.get("pump_product")) and section:
                row["pump_product"] = section
            if _is_blank(row.get("shift_date")) and title_date:
                row["shift_date"] = title_date
            if _is_blank(row.get("shift_time")) and title_time:
                row["shift_time"] = title_time.value
            row["_row"] = r + 1
            rows.append(row)
        return rows


# =============================================================================
# Cash analysis blocks
# =============================================================================

class CashAnalysisSheetAdapter(BaseAdapter):
    """
    Per-attendant 3-column blocks [label | count | amount].

    A block is located by a 1000 label directly above a 500 label in the same
    column. The attendant name is the nearest text cell above the block in its
    label or count column. The block ends at the first fully blank row, a
    product section header, or the next block's 1000 label.
    """

    name = "cash_analysis"
    name_lookback = 3

    def can_handle(self, sheet_name: str, df: pd.DataFrame) -> bool:
        n = sheet_name.lower()
        if "cash" in n or "analysis" in n:
            return True
        return bool(self._block_starts(_grid(df)))

    def _block_starts(self, grid: List[List[Any]]) -> List[Tuple[int, int]]:
        starts: List[Tuple[int, int]] = []
        for r in range(len(grid) - 1):
            for c in range(len(grid[r])):
                if parse_amount(_at(grid, r, c)) == DENOMINATIONS[0] and parse_amount(_at(grid, r + 1, c)) == DENOMINATIONS[1]:
                    # amount column of a neighbouring block can also read 1000/500
                    if any(sr == r and c in (sc + 1, sc + 2) for sr, sc in starts):
                        continue
                    starts.append((r, c))
        return starts

    def _block_name(self, grid: List[List[Any]], r: int, c: int) -> Optional[str]:
        for up in range(1, self.name_lookback + 1):
            for col in (c, c + 1):
                t = _text(_at(grid, r - up, col))
                if not t or parse_amount(t) is not None:
                    continue
                if t.lower() in _BLOCK_HEADER_WORDS or _PRODUCT_RE.match(t) or parse_date(t) or _TIME_RE.search(t):
                    continue
                return t
        return None

    def _section_for(self, grid: List[List[Any]], r: int) -> str:
        for up in range(r, -1, -1):
            filled = [v for v in grid[up] if not _is_blank(v)]
            for v in filled:
                m = _PRODUCT_RE.match(_text(v))
                if m and len(filled) <= 2:
                    return m.group(1).upper()
        return ""

    def _read_block(self, grid: List[List[Any]], r: int, c: int) -> Optional[Dict[str, Any]]:
        counts: Dict[int, int] = {}
        cash_row = pos = total = None
        expenses: List[Dict[str, Any]] = []

        k = r
        while k < len(grid):
            label, qty, amt = _at(grid, k, c), _at(grid, k, c + 1), _at(grid, k, c + 2)
            if k > r and parse_amount(label) == DENOMINATIONS[0]:
                break
            if _is_blank(label) and _is_blank(qty) and _is_blank(amt):
                break
            text = _text(label)
            if text and _PRODUCT_RE.match(text):
                break

            number = parse_amount(label)
            if number is not None:
                d = int(number) if float(number).is_integer() else None
                if d not in DENOMINATIONS:
                    break
                n = clamp_count(qty)
                if n == 0 and not _is_blank(amt):
                    a = parse_amount(amt)
                    n = int(a // d) if a and a > 0 and float(a / d).is_integer() else 0
                counts[d] = n
            else:
                upper = text.upper()
                value = parse_amount(amt)
                if value is None:
                    value = parse_amount(qty)
                if upper.startswith("CASH"):
                    cash_row = value
                elif upper.startswith("POS"):
                    pos = value
                elif upper.startswith("TOTAL"):
                    total = value
                elif text and value is not None and value > 0:
                    expenses.append({"description": text, "amount": value})
            k += 1

        if not counts and cash_row is None:
            return None
        return {"counts": counts, "cash": cash_row, "pos": pos, "total": total, "expenses": expenses}

    def parse(self, df: pd.DataFrame) -> List[CashAnalysisEntry]:
        grid = _grid(df)
        if not grid:
            return []
        try:
            sheet_date, sheet_time = find_shift_header(grid)
            entries: List[CashAnalysisEntry] = []
            for r, c in self._block_starts(grid):
                name = self._block_name(grid, r, c)
                if not name:
                    logger.warning("Cash analysis: block at row %d col %d has no attendant name", r + 1, c + 1)
                    continue
                block = self._read_block(grid, r, c)
                if block is None:
                    continue
                total_cash = float(totalize_cash(block["counts"]).total)
                if total_cash == 0 and block["cash"]:
                    total_cash = float(block["cash"])
                entries.append(
                    CashAnalysisEntry(
                        attendant_name=name,
                        product_type=self._section_for(grid, r),
                        denominations={d: block["counts"].get(d, 0) for d in DENOMINATIONS},
                        total_cash=total_cash,
                        pos=float(block["pos"] or 0.0),
                        expenses=block["expenses"],
                        declared_total=block["total"],
                        shift_date=sheet_date,
                        shift_time=sheet_time,
                    )
                )
            return entries
        except (IndexError, KeyError, TypeError, ValueError) as e:
            logger.warning("Cash analysis sheet could not be parsed: %s", e)
            return []


# =============================================================================
# Adapter Registry
# =============================================================================

class AdapterRegistry:
    """Registry of all available sheet adapters"""

    def __init__(self):
        self.cash = CashAnalysisSheetAdapter()
        self.meter = MeterSheetAdapter()

    def parse_workbook(self, sheets: Dict[str, pd.DataFrame]) -> Tuple[List[Dict[str, Any]], List[CashAnalysisEntry]]:
        """
        Meter rows and cash-analysis entries from every sheet. Each entry's
        POS figure is attached to the matching meter row by attendant name.
        """
        rows: List[Dict[str, Any]] = []
        entries: List[CashAnalysisEntry] = []
        for sheet_name, df in sheets.items():
            name = str(sheet_name)
            # name-based claims first; a meter sheet can also contain a lone 1000/500 pair
            if "cash" in name.lower() or "analysis" in name.lower():
                entries.extend(self.cash.parse(df))
            elif self.meter.can_handle(name, df):
                rows.extend(self.meter.parse(df))
            elif self.cash.can_handle(name, df):
                entries.extend(self.cash.parse(df))
            else:
                logger.warning("No adapter found for sheet %r", name)
        attach_pos(rows, entries)
        return rows, entries


def attach_pos(rows: List[Dict[str, Any]], entries: Iterable[CashAnalysisEntry]) -> int:
    """
    Copy each block's POS onto the first meter row of the same attendant that
    has no POS yet, preferring a row whose product matches the block's section.
    Returns how many rows were updated.
    """
    attached = 0
    for e in entries:
        if not e.pos:
            continue
        wanted = normalize_name(e.attendant_name)
        candidates = [
            r for r in rows
            if normalize_name(r.get("attendant_name")) == wanted and not parse_amount(r.get("pos_remitted"))
        ]
        if e.product_type:
            same_product = [r for r in candidates if e.product_type in _text(r.get("pump_product")).upper()]
            candidates = same_product or candidates
        if not candidates:
            logger.warning("Cash analysis POS for %r has no meter row", e.attendant_name)
            continue
        candidates[0]["pos_remitted"] = e.pos
        attached += 1
    return attached


# =============================================================================
# Normalizer
# =============================================================================

def _first(row: Dict[str, Any], options: List[str]) -> Any:
    """First non-blank value among alias keys (keys compared case-insensitively)"""
    lowered = {_key(k): v for k, v in row.items()}
    for o in options:
        v = lowered.get(o)
        if not _is_blank(v):
            return v
    return None


def branch_lookup(branches: Iterable[Branch]) -> Dict[str, str]:
    """token (id or lowercased name) -> branch id"""
    out: Dict[str, str] = {}
    for b in branches:
        out[str(b.id)] = b.id
        out[str(b.id).strip().lower()] = b.id
        if b.name:
            out[str(b.name).strip().lower()] = b.id
    return out


def resolve_branch(token: Any, lookup: Dict[str, str]) -> Optional[str]:
    t = _text(token)
    if not t:
        return None
    return lookup.get(t) or lookup.get(t.lower())


def normalize_import_rows(
    raw_rows: Iterable[Dict[str, Any]],
    known_branches: Iterable[Branch],
    known_attendants: Iterable[Attendant],
    default_date: Optional[date] = None,
    default_time: ShiftTime = ShiftTime.MORNING,
    default_branch: Optional[str] = None,
    cash_analysis_entries: Iterable[CashAnalysisEntry] = (),
) -> ImportResult:
    """
    Canonical shift records from heterogeneous rows.

    Rows whose branch does not resolve, or that lack an attendant or a
    non-zero expected amount, are skipped and counted. If nothing at all
    survives, ResolutionError is raised with the counts.
    """
    lookup = branch_lookup(known_branches)
    attendants = list(known_attendants)
    fallback_date = default_date or date.today()
    result = ImportResult()
    total = 0

    for i, row in enumerate(raw_rows):
        total += 1
        src = row.get("_row", i + 1) if isinstance(row, dict) else i + 1

        branch_token = _first(row, ALIASES["branch"]) or default_branch
        branch_id = resolve_branch(branch_token, lookup)
        if not branch_id:
            result.skipped.append(SkippedRow(src, f"unknown branch {_text(branch_token)!r}"))
            continue

        name = _text(_first(row, ALIASES["attendant_name"]))
        if not name:
            result.skipped.append(SkippedRow(src, "missing attendant"))
            continue

        raw_date = _first(row, ALIASES["shift_date"])
        shift_date = parse_date(raw_date) if raw_date is not None else fallback_date
        if shift_date is None:
            result.skipped.append(SkippedRow(src, f"invalid date {raw_date!r}"))
            continue

        raw_time = _first(row, ALIASES["shift_time"])
        try:
            shift_time = ShiftTime.parse(raw_time) if raw_time is not None else default_time
        except ValidationError as e:
            result.skipped.append(SkippedRow(src, str(e)))
            continue

        cash = parse_amount(_first(row, ALIASES["cash_remitted"])) or 0.0
        pos = parse_amount(_first(row, ALIASES["pos_remitted"])) or 0.0
        opening = parse_amount(_first(row, ALIASES["opening_meter"]))
        closing = parse_amount(_first(row, ALIASES["closing_meter"]))
        price = parse_amount(_first(row, ALIASES["price_per_liter"]))
        try:
            if opening is not None and closing is not None and price is not None:
                expected = compute_variance(opening, closing, price, cash, pos).expected_amount
            else:
                opening = closing = price = None
                expected = parse_amount(_first(row, ALIASES["expected_amount"])) or 0.0
                expected = require_amount("expected_amount", expected)
                require_amount("cash_remitted", cash)
                require_amount("pos_remitted", pos)
        except ValidationError as e:
            result.skipped.append(SkippedRow(src, str(e)))
            continue

        if expected == 0:
            result.skipped.append(SkippedRow(src, "expected amount is zero"))
            continue

        result.shift_records.append(
            ImportedShiftRecord(
                branch_id=branch_id,
                attendant=resolve_attendant(branch_id, name, attendants),
                pump_product=_text(_first(row, ALIASES["pump_product"])) or "General",
                expected_amount=expected,
                cash_remitted=cash,
                pos_remitted=pos,
                shift_date=shift_date,
                shift_time=shift_time,
                opening_meter=opening,
                closing_meter=closing,
                price_per_liter=price,
                source_row=src,
            )
        )

    _place_cash_entries(result, cash_analysis_entries, lookup, default_branch, fallback_date, default_time)

    if result.count == 0:
        raise ResolutionError(
            f"No valid rows inserted: 0 of {total} rows resolved ({result.skipped_count} skipped). "
            'Ensure columns for "Branch", "Attendant", "Expected", and "Cash" exist.'
        )
    logger.info("Import normalized: %d rows, %d skipped", result.count, result.skipped_count)
    return result


def _place_cash_entries(
    result: ImportResult,
    entries: Iterable[CashAnalysisEntry],
    lookup: Dict[str, str],
    default_branch: Optional[str],
    fallback_date: date,
    default_time: ShiftTime,
) -> None:
    """Give each cash entry a branch (from its attendant's rows, else the default) and a date/time"""
    for e in entries:
        wanted = normalize_name(e.attendant_name)
        rec = next((r for r in result.shift_records if normalize_name(r.attendant_name) == wanted), None)
        branch_id = rec.branch_id if rec else resolve_branch(default_branch, lookup)
        if not branch_id:
            result.skipped.append(SkippedRow(None, f"no branch for cash analysis of {e.attendant_name!r}", kind="cash_analysis"))
            continue
        e.branch_id = branch_id
        e.shift_date = e.shift_date or (rec.shift_date if rec else fallback_date)
        e.shift_time = e.shift_time or (rec.shift_time if rec else default_time)
        if not e.product_type and rec:
            m = _PRODUCT_RE.match(rec.pump_product)
            e.product_type = m.group(1).upper() if m else ""
        result.cash_analysis_entries.append(e)


# =============================================================================
# File reading
# =============================================================================

Source = Union[str, Path, bytes, BinaryIO]


def read_workbook(source: Source, filename: Optional[str] = None) -> Dict[str, pd.DataFrame]:
    """All sheets as raw cell grids (header=None). CSV files become one sheet."""
    if isinstance(source, (str, Path)):
        filename = filename or str(source)
    elif isinstance(source, bytes):
        source = io.BytesIO(source)
    ext = Path(filename or "").suffix.lower()

    if ext in (".xlsx", ".xlsm", ".xls"):
        return pd.read_excel(source, sheet_name=None, header=None)
    if ext == ".csv" or not ext:
        raw = source.read() if hasattr(source, "read") else Path(source).read_bytes()
        for encoding in ["utf-8", "latin-1", "cp1252"]:
            try:
                return {Path(filename or "rows").stem: pd.read_csv(io.BytesIO(raw), header=None, encoding=encoding)}
            except UnicodeDecodeError:
                continue
            except pd.errors.EmptyDataError:
                logger.warning("Empty file: %s", filename)
                return {}
    raise ValidationError(f"Unsupported file type: {ext}")


def import_workbook(
    sheets: Dict[str, pd.DataFrame],
    known_branches: Iterable[Branch],
    known_attendants: Iterable[Attendant],
    default_date: Optional[date] = None,
    default_time: ShiftTime = ShiftTime.MORNING,
    default_branch: Optional[str] = None,
    registry: Optional[AdapterRegistry] = None,
) -> ImportResult:
    registry = registry or AdapterRegistry()
    rows, entries = registry.parse_workbook(sheets)
    return normalize_import_rows(
        rows,
        known_branches,
        known_attendants,
        default_date=default_date,
        default_time=default_time,
        default_branch=default_branch,
        cash_analysis_entries=entries,
    )
