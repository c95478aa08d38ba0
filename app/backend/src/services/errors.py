"""Exceptions raised by the billing services."""

from __future__ import annotations


class BillingError(Exception):
    """Base class for billing failures."""


class BillingPreconditionError(BillingError):
    """Raised before any I/O when a required identifier or range is invalid."""


class VisitNotFoundError(BillingError):
    """Raised when a single-visit run references an unknown visit."""

    def __init__(self, visit_id: int) -> None:
        super().__init__(f"Visit {visit_id} not found")
        self.visit_id = visit_id


class RateRuleError(BillingError):
    """Raised when a stored rate cannot be mapped onto a rate rule."""


class InvoicePersistenceError(BillingError):
    """Raised when invoice records could not be written.

    Any invoice header written before the failure has already been removed.
    """

    def __init__(self, message: str, *, invoice_number: str | None = None) -> None:
        super().__init__(message)
        self.invoice_number = invoice_number


__all__ = [
    "BillingError",
    "BillingPreconditionError",
    "InvoicePersistenceError",
    "RateRuleError",
    "VisitNotFoundError",
]
