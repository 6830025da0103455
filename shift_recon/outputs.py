"""
Output Formatting

Excel export of the station ledger:
- Overview: one row per branch with totals and variance
- Ledger: every attendant/pump line behind the overview
- Pending Expenses: items awaiting manager approval
- Trend: daily variance roll-up
"""
from __future__ import annotations

import io
from pathlib import Path
from typing import Any, Dict, List, Sequence, Union

import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from .models import BranchAggregateRow, GlobalTotals, TrendPoint


# =============================================================================
# Style Constants
# =============================================================================

HEADER_FILL = PatternFill(start_color="366092", end_color="366092", fill_type="solid")
HEADER_FONT = Font(bold=True, color="FFFFFF")

GREEN_FILL = PatternFill(start_color="C6EFCE", end_color="C6EFCE", fill_type="solid")
YELLOW_FILL = PatternFill(start_color="FFEB9C", end_color="FFEB9C", fill_type="solid")
RED_FILL = PatternFill(start_color="FFC7CE", end_color="FFC7CE", fill_type="solid")

THIN_BORDER = Border(
    left=Side(style='thin'),
    right=Side(style='thin'),
    top=Side(style='thin'),
    bottom=Side(style='thin')
)

CURRENCY_FORMAT = '_("₦"* #,##0.00_);_("₦"* (#,##0.00);_("₦"* "-"??_);_(@_)'

LEDGER_COLUMNS = [
    "shift_date", "shift_time", "attendant_name", "pump_product",
    "expected_amount", "cash_remitted", "pos_remitted", "variance", "shift_status",
]
MONEY_COLUMNS = {"expected_amount", "cash_remitted", "pos_remitted", "variance", "amount"}


def variance_fill(variance: float, tolerance: float = 1.0) -> PatternFill:
    """Green when balanced, yellow for an overage, red for a shortage"""
    if abs(variance) < tolerance:
        return GREEN_FILL
    if variance > 0:
        return YELLOW_FILL
    return RED_FILL


# =============================================================================
# Main Output Function
# =============================================================================

def write_overview_xlsx(
    output: Union[io.BytesIO, Path],
    rows: Sequence[BranchAggregateRow],
    totals: GlobalTotals,
    trend: Sequence[TrendPoint],
    meta: Dict[str, Any],
) -> None:
    """Write the branch matrix, its ledger lines, pending expenses and trend to Excel"""
    wb = Workbook()
    wb.remove(wb.active)

    tolerance = float(meta.get("tolerance", 1.0))
    _create_overview_sheet(wb, rows, totals, meta, tolerance)
    _create_ledger_sheet(wb, rows)
    _create_expenses_sheet(wb, rows)
    _create_trend_sheet(wb, trend, meta)

    if isinstance(output, io.BytesIO):
        wb.save(output)
        output.seek(0)
    else:
        wb.save(str(output))


def _header(ws, row: int, headers: List[str]) -> None:
    for col, header in enumerate(headers, 1):
        cell = ws.cell(row=row, column=col, value=header)
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.border = THIN_BORDER


# =============================================================================
# Overview Sheet
# =============================================================================

def _create_overview_sheet(wb: Workbook, rows: Sequence[BranchAggregateRow], totals: GlobalTotals, meta: Dict, tolerance: float):
    ws = wb.create_sheet("Overview")

    ws["A1"] = "Station Reconciliation Overview"
    ws["A1"].font = Font(bold=True, size=14)
    ws["A2"] = f"Generated: {meta.get('generated_at', '')}"
    ws["A3"] = f"Expense policy: {meta.get('expense_policy', 'informational')}"

    row = 5
    for label, value in (
        ("Total Expected:", totals.expected),
        ("Total Remitted:", totals.remitted),
        ("Net Variance:", totals.variance),
        ("Pending Expenses:", totals.expenses),
    ):
        ws[f"A{row}"] = label
        ws[f"B{row}"] = value
        ws[f"B{row}"].number_format = CURRENCY_FORMAT
        row += 1
    ws[f"B{row - 2}"].fill = variance_fill(totals.variance, tolerance)

    row += 1
    headers = ["Branch", "Active Shift", "Lines", "Expected", "Cash", "POS",
               "Pending Expenses", "Variance", "Effective Variance"]
    _header(ws, row, headers)

    row += 1
    for r in rows:
        shift_label = f"{r.shift.shift_date.isoformat()} {r.shift.shift_time.value}" if r.shift else "-"
        values = [r.branch.name, shift_label, len(r.items), r.total_expected, r.total_cash,
                  r.total_pos, r.pending_expense_total, r.total_variance, r.total_effective_variance]
        for col, value in enumerate(values, 1):
            cell = ws.cell(row=row, column=col, value=value)
            cell.border = THIN_BORDER
            if col >= 4:
                cell.number_format = CURRENCY_FORMAT
        ws.cell(row=row, column=8).fill = variance_fill(r.total_variance, tolerance)
        row += 1

    _auto_width(ws)


# =============================================================================
# Ledger Sheet
# =============================================================================

def _create_ledger_sheet(wb: Workbook, rows: Sequence[BranchAggregateRow]):
    ws = wb.create_sheet("Ledger")

    records = []
    for r in rows:
        for item in r.items:
            d = item.to_dict()
            d["branch"] = r.branch.name
            records.append(d)
    df = pd.DataFrame(records, columns=["branch"] + LEDGER_COLUMNS)

    _write_frame(ws, df, start_row=1)
    _auto_width(ws)


# =============================================================================
# Pending Expenses Sheet
# =============================================================================

def _create_expenses_sheet(wb: Workbook, rows: Sequence[BranchAggregateRow]):
    ws = wb.create_sheet("Pending Expenses")

    records = []
    for r in rows:
        for e in r.pending_expenses:
            records.append({
                "branch": r.branch.name,
                "attendant_name": e.attendant_name,
                "description": e.description,
                "amount": e.amount,
                "status": e.status.value,
            })

    if not records:
        ws.cell(row=1, column=1, value="No pending expenses")
        return
    _write_frame(ws, pd.DataFrame(records), start_row=1)
    _auto_width(ws)


# =============================================================================
# Trend Sheet
# =============================================================================

def _create_trend_sheet(wb: Workbook, trend: Sequence[TrendPoint], meta: Dict):
    ws = wb.create_sheet("Trend")
    ws["A1"] = f"Variance trend (last {meta.get('trend_days', '')} days)"
    ws["A1"].font = Font(bold=True, size=14)

    headers = ["Date", "Day", "Variance", "Claimed POS", "Actual POS"]
    _header(ws, 3, headers)
    row = 4
    for p in trend:
        values = [p.date.isoformat(), p.name, p.variance, p.claimed, p.actual]
        for col, value in enumerate(values, 1):
            cell = ws.cell(row=row, column=col, value=value)
            if col >= 3:
                cell.number_format = CURRENCY_FORMAT
        row += 1

    _auto_width(ws)


# =============================================================================
# Helpers
# =============================================================================

def _write_frame(ws, df: pd.DataFrame, start_row: int) -> None:
    headers = list(df.columns)
    _header(ws, start_row, headers)
    row = start_row + 1
    for data_row in df.to_dict(orient="records"):
        for col, header in enumerate(headers, 1):
            value = data_row[header]
            if isinstance(value, float) and pd.isna(value):
                value = None
            cell = ws.cell(row=row, column=col, value=value)
            if header in MONEY_COLUMNS and isinstance(value, (int, float)):
                cell.number_format = CURRENCY_FORMAT
        row += 1


def _auto_width(ws):
    """Auto-adjust column widths"""
    for column in ws.columns:
        max_length = 0
        column_letter = get_column_letter(column[0].column)
        for cell in column:
            if cell.value is not None:
                max_length = max(max_length, len(str(cell.value)))
        ws.column_dimensions[column_letter].width = min(max_length + 2, 50)
