from __future__ import annotations

import io
import logging
import uuid
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from .adapters import ImportResult, import_workbook, read_workbook
from .cash import totalize_cash
from .engine import (
    active_shift,
    compute_global_totals,
    filter_items,
    ledger_items,
    overview_from_source,
    trend_from_source,
)
from .errors import AggregationError, NotFoundError, ReconError, ResolutionError, ValidationError
from .expenses import parse_policy, pending_expenses
from .ledger import (
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
from .matcher import attendant_drilldown, reconcile_cash_report
from .models import CashAnalysisReport, ShiftTime
from .outputs import write_overview_xlsx
from .settings import DEFAULT_SETTINGS, ReconSettings, station_now, station_today

logger = logging.getLogger(__name__)

app = FastAPI(title="Shift Recon API", version="1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_settings: ReconSettings = DEFAULT_SETTINGS

# In-memory token stores; the oldest token is evicted past _MAX_TOKENS
_MAX_TOKENS = 50
_downloads: Dict[str, bytes] = {}
_previews: Dict[str, ImportResult] = {}


def _remember(tokens: Dict[str, Any], value: Any) -> str:
    while len(tokens) >= _MAX_TOKENS:
        tokens.pop(next(iter(tokens)))
    token = uuid.uuid4().hex
    tokens[token] = value
    return token

_STATUS_CODES = [
    (ValidationError, 400),
    (NotFoundError, 404),
    (ResolutionError, 422),
    (AggregationError, 503),
]


@app.exception_handler(ReconError)
async def _recon_error_handler(request, exc: ReconError):
    status_code = next((code for cls, code in _STATUS_CODES if isinstance(exc, cls)), 500)
    body = {"detail": str(exc)}
    inserted = getattr(exc, "inserted", None)
    if inserted is not None:
        body["inserted"] = inserted
    return JSONResponse(status_code=status_code, content=body)


# ============================================================================
# Request Models
# ============================================================================

class BranchIn(BaseModel):
    name: str
    location: str = ""


class ExpenseIn(BaseModel):
    description: str
    amount: float
    receipt_url: Optional[str] = None


class ManualShiftData(BaseModel):
    branch_id: str
    shift_date: str
    shift_time: str = "Morning"
    attendant_id: Optional[str] = None
    attendant_name: Optional[str] = None
    product: str
    pump: Optional[str] = None
    opening_meter: float
    closing_meter: float
    price_per_liter: float
    cash_remitted: float
    pos_remitted: float = 0.0
    expenses: List[ExpenseIn] = []


class ShiftDataUpdate(BaseModel):
    expected_amount: Optional[float] = None
    cash_remitted: Optional[float] = None
    pos_remitted: Optional[float] = None
    shift_date: Optional[str] = None


class CashAnalysisIn(BaseModel):
    branch_id: str
    attendant_name: str
    shift_date: str
    shift_time: str = "Morning"
    pump_number: int = 0
    product_type: str = ""
    denominations: Dict[str, int]


class ReconcileIn(BaseModel):
    report_id: Optional[str] = None
    cash: Optional[CashAnalysisIn] = None
    expenses_claimed: float = 0.0
    pos_remitted: float = 0.0
    strict: Optional[bool] = None
    same_shift_only: bool = False


class ImportApplyIn(BaseModel):
    token: str
    confirmed_attendants: Dict[str, List[str]] = {}


class CloseShiftIn(BaseModel):
    gm_signed_off: bool = False


# ============================================================================
# Helper Functions
# ============================================================================

def _store() -> LedgerStore:
    return LedgerStore.load(_settings.store_path)


def _parse_iso_date(s: str) -> date:
    try:
        return datetime.fromisoformat(s).date()
    except Exception:
        raise HTTPException(status_code=400, detail=f"Invalid date: {s}")


def _policy():
    return parse_policy(_settings.expense_policy)


def _overview(store: LedgerStore):
    return overview_from_source(store.overview_snapshot, _policy())


# ============================================================================
# API Endpoints
# ============================================================================

@app.get("/health")
def health():
    """Simple health check endpoint"""
    return {"ok": True, "status": "running"}


@app.get("/status")
def status():
    store = _store()
    return {
        "settings": {
            "store_path": _settings.store_path,
            "output_dir": _settings.output_dir,
            "timezone": _settings.timezone,
            "amount_tolerance": _settings.amount_tolerance,
            "strict_match": _settings.strict_match,
            "trend_days": _settings.trend_days,
            "expense_policy": _settings.expense_policy,
        },
        "counts": {
            "branches": len(store.branches),
            "attendants": len(store.attendants),
            "shifts": len(store.shifts),
            "shift_data": len(store.shift_data),
            "expenses": len(store.expenses),
            "cash_reports": len(store.cash_reports),
        },
        "station_time": station_now(_settings).isoformat(),
    }


@app.get("/branches")
def list_branches():
    return {"branches": [b.to_dict() for b in _store().branches]}


@app.post("/branches")
def create_branch(body: BranchIn):
    store = _store()
    branch = store.add_branch(body.name.strip(), body.location)
    store.save()
    return branch.to_dict()


# ----------------------------------------------------------------------------
# Overview & trend
# ----------------------------------------------------------------------------

@app.get("/overview")
def overview():
    """Branch matrix plus roll-up totals"""
    rows = _overview(_store())
    return {
        "branches": [r.to_dict() for r in rows],
        "totals": compute_global_totals(rows).to_dict(),
        "expense_policy": _policy().value,
    }


@app.get("/overview/totals")
def overview_totals():
    return compute_global_totals(_overview(_store())).to_dict()


@app.get("/trend")
def trend(days: Optional[int] = None):
    range_days = _settings.trend_days if days is None else days
    points = trend_from_source(_store().trend_snapshot, range_days, station_today(_settings))
    return {"days": range_days, "points": [p.to_dict() for p in points]}


# ----------------------------------------------------------------------------
# Shifts
# ----------------------------------------------------------------------------

@app.get("/shifts/active/{branch_id}")
def branch_ledger(
    branch_id: str,
    preset: str = "all",
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    product: str = "all",
):
    """The branch's active shift plus its ledger lines, filtered for display"""
    store = _store()
    store.branch(branch_id)
    shift = active_shift(store.shifts, branch_id)
    branch_shifts = [s for s in store.shifts if s.branch_id == branch_id]
    items = ledger_items(store.shift_data, branch_shifts, store.attendants)
    items = filter_items(
        items,
        today=station_today(_settings),
        preset=preset,
        date_from=_parse_iso_date(date_from) if date_from else None,
        date_to=_parse_iso_date(date_to) if date_to else None,
        product=product,
    )
    return {
        "shift": shift.to_dict() if shift else None,
        "items": [i.to_dict() for i in items],
        "count": len(items),
    }


@app.delete("/shifts/open/{branch_id}")
def delete_open(branch_id: str):
    return delete_open_shift(_store(), branch_id)


@app.post("/shifts/{shift_id}/close")
def close(shift_id: str, body: CloseShiftIn):
    return close_shift(_store(), shift_id, body.gm_signed_off).to_dict()


# ----------------------------------------------------------------------------
# Expenses
# ----------------------------------------------------------------------------

@app.get("/expenses/pending")
def list_pending(branch_id: Optional[str] = None):
    store = _store()
    record_ids = None
    if branch_id:
        shift_ids = {s.id for s in store.shifts if s.branch_id == branch_id}
        record_ids = {r.id for r in store.shift_data if r.shift_id in shift_ids}
    items = pending_expenses(store.expenses, store.shift_data, store.attendants, record_ids=record_ids)
    return {"expenses": [e.to_dict() for e in items], "count": len(items)}


@app.post("/expenses/{expense_id}/approve")
def approve_expense(expense_id: str):
    return set_expense_status(_store(), expense_id, approved=True).to_dict()


@app.post("/expenses/{expense_id}/reject")
def reject_expense(expense_id: str):
    return set_expense_status(_store(), expense_id, approved=False).to_dict()


# ----------------------------------------------------------------------------
# Shift data & cash analysis
# ----------------------------------------------------------------------------

@app.post("/shift-data")
def create_shift_data(body: ManualShiftData):
    record, expenses = submit_manual_shift_data(
        _store(),
        branch_id=body.branch_id,
        shift_date=_parse_iso_date(body.shift_date),
        shift_time=body.shift_time,
        product=body.product,
        pump=body.pump,
        opening_meter=body.opening_meter,
        closing_meter=body.closing_meter,
        price_per_liter=body.price_per_liter,
        cash_remitted=body.cash_remitted,
        pos_remitted=body.pos_remitted,
        attendant_id=body.attendant_id,
        attendant_name=body.attendant_name,
        expenses=[e.dict() for e in body.expenses],
    )
    return {"record": record.to_dict(), "expenses": [e.to_dict() for e in expenses]}


@app.patch("/shift-data/{record_id}")
def patch_shift_data(record_id: str, body: ShiftDataUpdate):
    record = update_shift_data_record(
        _store(),
        record_id,
        expected_amount=body.expected_amount,
        cash_remitted=body.cash_remitted,
        pos_remitted=body.pos_remitted,
        shift_date=_parse_iso_date(body.shift_date) if body.shift_date else None,
    )
    return record.to_dict()


@app.post("/cash-analysis")
def create_cash_analysis(body: CashAnalysisIn):
    report = submit_cash_analysis(
        _store(),
        branch_id=body.branch_id,
        attendant_name=body.attendant_name,
        denominations=body.denominations,
        shift_date=_parse_iso_date(body.shift_date),
        shift_time=body.shift_time,
        pump_number=body.pump_number,
        product_type=body.product_type,
    )
    return report.to_dict()


@app.post("/cash-analysis/reconcile")
def reconcile(body: ReconcileIn):
    """Check a stored report (report_id) or an unsaved count (cash) against the branch ledger"""
    store = _store()
    if body.report_id:
        report = next((r for r in store.cash_reports if r.id == body.report_id), None)
        if report is None:
            raise NotFoundError(f"Cash analysis report not found: {body.report_id}")
    elif body.cash is not None:
        total = totalize_cash(body.cash.denominations)
        report = CashAnalysisReport(
            id="unsaved",
            branch_id=body.cash.branch_id,
            attendant_name=body.cash.attendant_name,
            pump_number=body.cash.pump_number,
            product_type=body.cash.product_type,
            denominations={d: sub // d for d, sub in total.subtotals.items()},
            total_cash=float(total.total),
            shift_date=_parse_iso_date(body.cash.shift_date),
            shift_time=ShiftTime.parse(body.cash.shift_time),
        )
    else:
        raise ValidationError("report_id or cash is required")

    result = reconcile_cash_report(
        report,
        _overview(store),
        expenses_claimed=body.expenses_claimed,
        pos_remitted=body.pos_remitted,
        strict=_settings.strict_match if body.strict is None else body.strict,
        tolerance=_settings.amount_tolerance,
        same_shift_only=body.same_shift_only,
    )
    return result.to_dict()


@app.get("/attendants/drilldown")
def drilldown(branch_id: str, attendant_name: str, shift_date: str, shift_time: str = "Morning"):
    store = _store()
    result = attendant_drilldown(
        branch_id,
        attendant_name,
        _parse_iso_date(shift_date),
        ShiftTime.parse(shift_time),
        store.cash_reports,
        store.shifts,
        store.attendants,
        store.shift_data,
        store.expenses,
    )
    return result.to_dict()


@app.get("/reports/historical")
def historical(days: int = 30):
    reports = historical_reports(_store(), days, station_today(_settings))
    return {"reports": reports, "count": len(reports)}


# ----------------------------------------------------------------------------
# Bulk import (preview -> confirm -> apply)
# ----------------------------------------------------------------------------

@app.post("/import/preview")
async def import_preview(
    file: UploadFile = File(...),
    branch_id: Optional[str] = Form(None),
    shift_date: Optional[str] = Form(None),
    shift_time: Optional[str] = Form(None),
):
    """Parse and resolve an uploaded sheet without writing anything"""
    store = _store()
    raw = await file.read()
    sheets = read_workbook(raw, file.filename)
    result = import_workbook(
        sheets,
        store.branches,
        store.attendants,
        default_date=_parse_iso_date(shift_date) if shift_date else station_today(_settings),
        default_time=ShiftTime.parse(shift_time or _settings.default_shift_time),
        default_branch=branch_id,
    )
    token = _remember(_previews, result)
    return {"token": token, **result.to_dict()}


@app.post("/import/apply")
def import_apply(body: ImportApplyIn):
    result = _previews.get(body.token)
    if result is None:
        raise HTTPException(status_code=404, detail="Unknown token")
    applied = apply_import(_store(), result, body.confirmed_attendants)
    _previews.pop(body.token, None)
    return applied.to_dict()


# ----------------------------------------------------------------------------
# Export
# ----------------------------------------------------------------------------

@app.post("/export")
def export(save: bool = False):
    """Build the Excel overview; returns a download token"""
    store = _store()
    rows = _overview(store)
    points = trend_from_source(store.trend_snapshot, _settings.trend_days, station_today(_settings))
    now = station_now(_settings)
    meta = {
        "generated_at": now.strftime("%Y-%m-%d %H:%M"),
        "expense_policy": _policy().value,
        "trend_days": _settings.trend_days,
        "tolerance": _settings.amount_tolerance,
    }
    bio = io.BytesIO()
    write_overview_xlsx(bio, rows, compute_global_totals(rows), points, meta)
    data = bio.getvalue()

    fname = f"shift_recon_{now.strftime('%Y%m%d_%H%M')}.xlsx"
    output_file = None
    if save:
        out_dir = Path(_settings.output_dir)
        out_dir.mkdir(parents=True, exist_ok=True)
        output_file = out_dir / fname
        output_file.write_bytes(data)
        logger.info("Saved overview to %s", output_file)

    token = _remember(_downloads, data)
    return {"download_token": token, "filename": fname, "output_file": str(output_file) if output_file else None}


@app.get("/download/{token}")
def download(token: str):
    """Download an exported Excel file by token"""
    if token not in _downloads:
        raise HTTPException(status_code=404, detail="Unknown token")
    bio = io.BytesIO(_downloads[token])
    return StreamingResponse(
        bio,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": 'attachment; filename="shift_recon.xlsx"'},
    )
