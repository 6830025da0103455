from __future__ import annotations

import argparse
import io
import logging
import sys
from pathlib import Path

from .adapters import import_workbook, read_workbook
from .engine import compute_global_totals, overview_from_source, trend_from_source
from .errors import ImportApplyError, ReconError
from .expenses import parse_policy
from .ledger import LedgerStore, apply_import
from .models import ShiftTime, parse_day
from .outputs import write_overview_xlsx
from .settings import DEFAULT_SETTINGS, station_now, station_today


def run_import(args) -> int:
    s = DEFAULT_SETTINGS
    store = LedgerStore.load(args.store or s.store_path)

    sheets = read_workbook(Path(args.file))
    result = import_workbook(
        sheets,
        store.branches,
        store.attendants,
        default_date=parse_day(args.date) if args.date else station_today(s),
        default_time=ShiftTime.parse(args.time or s.default_shift_time),
        default_branch=args.branch,
    )
    print(f"[OK] Parsed {result.count} row(s), skipped {result.skipped_count}")
    for skip in result.skipped:
        print(f"[WARN] row {skip.row}: {skip.reason}")

    proposed = result.proposed_attendants
    for branch_id, names in proposed.items():
        print(f"[WARN] New attendants for branch {branch_id}: {', '.join(names)}")

    if args.dry_run:
        return 0

    confirmed = proposed if args.create_attendants else {}
    try:
        applied = apply_import(store, result, confirmed)
    except ImportApplyError as e:
        print(f"[ERROR] {e} ({e.inserted} row(s) were already written)")
        return 1
    print(f"[OK] Inserted {applied.inserted} row(s) into {len(applied.shifts)} shift(s)")
    if applied.skipped:
        print(f"[WARN] {applied.skipped} row(s) skipped for unconfirmed attendants (use --create-attendants)")
    return 0


def run_export(args) -> int:
    s = DEFAULT_SETTINGS
    store = LedgerStore.load(args.store or s.store_path)
    policy = parse_policy(s.expense_policy)

    days = s.trend_days if args.days is None else args.days
    rows = overview_from_source(store.overview_snapshot, policy)
    points = trend_from_source(store.trend_snapshot, days, station_today(s))
    now = station_now(s)
    meta = {
        "generated_at": now.strftime("%Y-%m-%d %H:%M"),
        "expense_policy": policy.value,
        "trend_days": days,
        "tolerance": s.amount_tolerance,
    }

    bio = io.BytesIO()
    write_overview_xlsx(bio, rows, compute_global_totals(rows), points, meta)

    if args.out:
        out_path = Path(args.out)
    else:
        out_path = Path(s.output_dir) / f"shift_recon_{now.strftime('%Y%m%d_%H%M')}.xlsx"
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_bytes(bio.getvalue())
    print(f"Wrote: {out_path}")
    return 0


def main(argv=None) -> int:
    ap = argparse.ArgumentParser(prog="shift_recon")
    ap.add_argument("--store", help="ledger JSON file (default: RECON_STORE_PATH)")
    ap.add_argument("-v", "--verbose", action="store_true")
    sub = ap.add_subparsers(dest="command", required=True)

    imp = sub.add_parser("import", help="import a CSV/XLSX shift sheet into the ledger")
    imp.add_argument("file")
    imp.add_argument("--branch", help="branch id or name for sheets without a branch column")
    imp.add_argument("--date", help="shift date (YYYY-MM-DD) for rows without one")
    imp.add_argument("--time", choices=[t.value for t in ShiftTime])
    imp.add_argument("--create-attendants", action="store_true", help="create attendants that match no one")
    imp.add_argument("--dry-run", action="store_true")
    imp.set_defaults(func=run_import)

    exp = sub.add_parser("export", help="write the overview workbook")
    exp.add_argument("--out")
    exp.add_argument("--days", type=int)
    exp.set_defaults(func=run_export)

    args = ap.parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        return args.func(args)
    except ReconError as e:
        print(f"[ERROR] {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
