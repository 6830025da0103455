"""Shift reconciliation backend package.

The core (variance, cash totals, matching, aggregation, import) is plain
Python over dataclasses and can be imported by other application code. The
API can be run standalone via Uvicorn:

    python -m uvicorn shift_recon.api_app:app --host 127.0.0.1 --port 8000
"""
