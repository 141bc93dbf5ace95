"""
Domain events for the billing engine.

Immutable event objects published after a billing change has committed.
The presentation layer and the document pipeline subscribe to them; the
publisher never knows who is listening.

Event Categories:
- InvoiceEvent: invoice lifecycle (create, finalize, pay, void, revert, overdue)
- LateFeeApplied: the billing sweep adjusted an overdue invoice
- CloseoutInvoiceCreated: a project was consolidated into one invoice

Events carry the committed invoice so handlers don't need to re-fetch state.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4

from utils.clock import now_utc


@dataclass(frozen=True, kw_only=True)
class BillingEvent:
    """Base class for all billing domain events."""
    event_id: str = field(default_factory=lambda: str(uuid4()))
    occurred_at: datetime = field(default_factory=now_utc)


# =============================================================================
# INVOICE EVENTS
# =============================================================================


@dataclass(frozen=True)
class InvoiceEvent(BillingEvent):
    """Events related to invoice lifecycle."""
    invoice: Any = None  # Invoice, Any to avoid circular import

    @classmethod
    def create(cls, invoice: Any):
        return cls(invoice=invoice)


@dataclass(frozen=True)
class InvoiceCreated(InvoiceEvent):
    """A draft invoice was created."""


@dataclass(frozen=True)
class InvoiceFinalized(InvoiceEvent):
    """Draft became Pending: numbered and visible to the client."""


@dataclass(frozen=True)
class InvoicePaymentRecorded(InvoiceEvent):
    """A payment was applied without settling the invoice."""
    payment_cents: int = 0

    @classmethod
    def create(cls, invoice: Any, payment_cents: int = 0) -> "InvoicePaymentRecorded":
        return cls(invoice=invoice, payment_cents=payment_cents)


@dataclass(frozen=True)
class InvoicePaid(InvoiceEvent):
    """Invoice was fully paid."""


@dataclass(frozen=True)
class InvoiceVoided(InvoiceEvent):
    """Invoice was voided."""


@dataclass(frozen=True)
class InvoiceRevertedToDraft(InvoiceEvent):
    """A pending invoice was pulled back to draft."""


@dataclass(frozen=True)
class InvoiceMarkedOverdue(InvoiceEvent):
    """A pending invoice passed its due date."""


@dataclass(frozen=True)
class LateFeeApplied(InvoiceEvent):
    """A late fee line was appended to an overdue invoice."""
    fee_cents: int = 0

    @classmethod
    def create(cls, invoice: Any, fee_cents: int = 0) -> "LateFeeApplied":
        return cls(invoice=invoice, fee_cents=fee_cents)


@dataclass(frozen=True)
class CloseoutInvoiceCreated(InvoiceEvent):
    """A project closeout invoice was created."""
    plan: Any = None  # CloseoutPlan

    @classmethod
    def create(cls, invoice: Any, plan: Any = None) -> "CloseoutInvoiceCreated":
        return cls(invoice=invoice, plan=plan)
