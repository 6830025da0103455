"""
Error taxonomy for the reconciliation core.

- ValidationError: malformed input, rejected before any computation
- ResolutionError: a branch/attendant token could not be mapped, or an import
  produced nothing usable
- AggregationError: a read failed while building the overview or trend; no
  partial aggregate is ever returned
"""
from __future__ import annotations


class ReconError(Exception):
    """Base class for all reconciliation errors"""


class ValidationError(ReconError, ValueError):
    """Malformed numeric input or missing required identifiers"""


class ExpenseTransitionError(ValidationError):
    """Expense status change not allowed from its current state"""

    def __init__(self, expense_id: str, current: str, requested: str):
        self.expense_id = expense_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Expense {expense_id} is {current}; cannot transition to {requested}"
        )


class ResolutionError(ReconError):
    """Branch or attendant token could not be resolved"""


class AggregationError(ReconError):
    """Overview / trend computation aborted"""


class NotFoundError(ReconError, KeyError):
    """Referenced record does not exist in the ledger store"""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "Not found"


class ImportApplyError(ReconError):
    """
    A bulk import group failed part-way through.

    Groups applied before the failure are NOT rolled back; `inserted` reports
    how many shift_data rows were already written.
    """

    def __init__(self, message: str, inserted: int, group: str):
        self.inserted = inserted
        self.group = group
        super().__init__(message)
