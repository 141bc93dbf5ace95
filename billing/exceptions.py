"""Typed exceptions for billing failures.

Each carries the identifiers a caller needs to render a specific message.
"""

from uuid import UUID


class BillingError(Exception):
    """Base class for billing engine errors."""


class MissingRateError(BillingError):
    """An hourly billable has no organization rate and no configured fallback."""

    def __init__(self, billable_kind: str, source_id: UUID):
        self.billable_kind = billable_kind
        self.source_id = source_id
        super().__init__(f"No hourly rate available for {billable_kind} {source_id}")


class InvoiceLockedError(BillingError):
    """Line items can only change while the invoice is a draft."""

    def __init__(self, invoice_id: UUID, status: str):
        self.invoice_id = invoice_id
        self.status = status
        super().__init__(f"Invoice {invoice_id} is {status}; line items are locked")


class IllegalTransitionError(BillingError):
    """Requested status change is not in the transition table or its guard failed."""

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        message = f"Illegal invoice transition {from_status} -> {to_status}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class ConcurrentModificationError(BillingError):
    """The stored status moved between read and write."""

    def __init__(self, invoice_id: UUID, expected: str, actual: str | None = None):
        self.invoice_id = invoice_id
        self.expected = expected
        self.actual = actual
        detail = f"expected {expected}"
        if actual is not None:
            detail = f"{detail}, found {actual}"
        super().__init__(f"Invoice {invoice_id} was modified concurrently ({detail})")


class AlreadyClosedOutError(BillingError):
    """A project already has an outstanding (non-void) closeout invoice."""

    def __init__(self, project_id: UUID, invoice_id: UUID | None = None):
        self.project_id = project_id
        self.invoice_id = invoice_id
        super().__init__(f"Project {project_id} already has an outstanding closeout invoice")


class NoEligibleWorkError(BillingError):
    """Nothing billable was found for the requested invoice."""

    def __init__(self, source_id: UUID, reason: str):
        self.source_id = source_id
        self.reason = reason
        super().__init__(f"No eligible work for {source_id}: {reason}")


class DuplicateInvoiceError(BillingError):
    """The billable already has a live invoice."""

    def __init__(self, source_id: UUID, invoice_id: UUID):
        self.source_id = source_id
        self.invoice_id = invoice_id
        super().__init__(f"{source_id} already has invoice {invoice_id}")
