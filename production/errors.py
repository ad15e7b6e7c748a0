"""Errors raised by the production ledger services."""

from __future__ import annotations

from typing import Dict


class LedgerError(Exception):
    """Base class for daily entry and stock ledger failures."""


class EntryValidationError(LedgerError):
    """Raised when a submission or report request is invalid."""

    def __init__(self, errors: Dict[str, str]):
        super().__init__("Daily entry validation error")
        self.errors = errors

    @property
    def message(self) -> str:
        return next(iter(self.errors.values()), str(self))


class ProductNotFoundError(LedgerError, LookupError):
    def __init__(self, product_id):
        super().__init__(f"Product {product_id} not found")
        self.product_id = product_id


class EntryConflictError(LedgerError):
    """Raised when a concurrent insert claimed the same (product, date) slot."""

    def __init__(self, product_id, entry_date):
        super().__init__(f"Daily entry for product {product_id} on {entry_date} already exists")
        self.product_id = product_id
        self.entry_date = entry_date
