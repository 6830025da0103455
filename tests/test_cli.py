from openpyxl import load_workbook

from shift_recon import cli
from shift_recon.ledger import LedgerStore


def _export(tmp_path, *extra):
    store = LedgerStore(path=tmp_path / "ledger.json")
    store.add_branch("Ikeja", branch_id="b1")
    store.save()
    out = tmp_path / "overview.xlsx"
    code = cli.main(["--store", str(store.path), "export", "--out", str(out), *extra])
    return code, load_workbook(out)


def test_export_honours_zero_days(tmp_path):
    code, wb = _export(tmp_path, "--days", "0")
    assert code == 0
    assert wb["Trend"]["A1"].value == "Variance trend (last 0 days)"


def test_export_defaults_to_configured_days(tmp_path):
    code, wb = _export(tmp_path)
    assert code == 0
    assert wb["Trend"]["A1"].value == f"Variance trend (last {cli.DEFAULT_SETTINGS.trend_days} days)"
