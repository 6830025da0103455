from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import date, datetime

import pytz

# NOTE:
# - Paths should be absolute on the station manager's machine.
# - Any value can be overridden with environment variables.
#
# Suggested env overrides:
#   RECON_STORE_PATH          (JSON ledger file)
#   RECON_OUTPUT_DIR          (xlsx exports)
#   RECON_TIMEZONE            (pytz zone name, e.g. Africa/Lagos)
#   RECON_AMOUNT_TOL          (reconciliation tolerance, currency units)
#   RECON_TREND_DAYS          (int)
#   RECON_DEFAULT_SHIFT_TIME  (Morning/Evening)
#   RECON_EXPENSE_POLICY      (informational/offset_shortage)
#   RECON_STRICT_MATCH        (1/0)
#   RECON_PORT                (default 8000)


@dataclass(frozen=True)
class ReconSettings:
    # Ledger store (branches, attendants, shifts, shift_data, expenses, cash reports)
    store_path: str = os.environ.get("RECON_STORE_PATH", os.path.join(os.getcwd(), "ledger.json"))

    # Output folder for exported xlsx reports
    output_dir: str = os.environ.get("RECON_OUTPUT_DIR", os.path.join(os.getcwd(), "_output"))

    # Station-local calendar; "today" for trends and date presets is taken here
    timezone: str = os.environ.get("RECON_TIMEZONE", "Africa/Lagos")

    # Declared vs ledger remittance is MATCHED when abs(diff) < amount_tolerance
    amount_tolerance: float = float(os.environ.get("RECON_AMOUNT_TOL", "1.00"))
    # Stricter variant folds POS into the attendant's declared total
    strict_match: bool = os.environ.get("RECON_STRICT_MATCH", "0") == "1"

    trend_days: int = int(os.environ.get("RECON_TREND_DAYS", "30"))
    default_shift_time: str = os.environ.get("RECON_DEFAULT_SHIFT_TIME", "Morning")

    # informational: approved expenses never touch variance
    # offset_shortage: approved expenses count as remitted in the effective variance
    expense_policy: str = os.environ.get("RECON_EXPENSE_POLICY", "informational")

    port: int = int(os.environ.get("RECON_PORT", "8000"))


DEFAULT_SETTINGS = ReconSettings()


def station_now(settings: ReconSettings = DEFAULT_SETTINGS) -> datetime:
    tz = pytz.timezone(settings.timezone)
    return datetime.now(tz)


def station_today(settings: ReconSettings = DEFAULT_SETTINGS) -> date:
    return station_now(settings).date()
