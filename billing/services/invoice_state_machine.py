"""
Invoice state machine: the only writer of invoice status.

Every transition reads the invoice, checks the transition table and its guard,
then writes with a compare-and-set on the status it read. If another writer
moved the status in between, the write is refused with
ConcurrentModificationError and nothing changes.

Overdue is an overlay on Pending. A Pending invoice past its due date is
treated exactly like a stored Overdue one when deciding what is legal.
"""

import logging
from datetime import timedelta
from typing import Any
from uuid import UUID

from billing.audit import AuditAction, AuditLogger, compute_changes
from billing.config import BillingConfig
from billing.event_bus import EventBus
from billing.events import (
    InvoiceFinalized, InvoiceMarkedOverdue, InvoicePaid,
    InvoicePaymentRecorded, InvoiceRevertedToDraft, InvoiceVoided,
)
from billing.exceptions import ConcurrentModificationError, IllegalTransitionError
from billing.models import DocumentStatus, Invoice, InvoiceStatus
from billing.money import format_cents
from billing.services.ledger import InvoiceLedger
from billing.services.numbering import NumberingAuthority
from utils.actor_context import require_actor_id
from utils.clock import Clock

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[InvoiceStatus, frozenset[InvoiceStatus]] = {
    InvoiceStatus.DRAFT: frozenset({InvoiceStatus.PENDING}),
    InvoiceStatus.PENDING: frozenset({
        InvoiceStatus.PARTIAL, InvoiceStatus.PAID, InvoiceStatus.VOID,
        InvoiceStatus.DRAFT, InvoiceStatus.OVERDUE,
    }),
    InvoiceStatus.OVERDUE: frozenset({InvoiceStatus.PARTIAL, InvoiceStatus.PAID, InvoiceStatus.VOID}),
    # Partial -> Partial is a further payment that doesn't settle the invoice;
    # the total paid may only grow
    InvoiceStatus.PARTIAL: frozenset({InvoiceStatus.PARTIAL, InvoiceStatus.PAID, InvoiceStatus.VOID}),
    InvoiceStatus.PAID: frozenset(),
    InvoiceStatus.VOID: frozenset(),
}


def is_allowed(from_status: InvoiceStatus, to_status: InvoiceStatus) -> bool:
    return to_status in ALLOWED_TRANSITIONS[from_status]


class InvoiceStateMachine:
    """
    Guards and applies invoice status transitions.

    Every public transition takes the stored status the caller acted on. The
    call fails with ConcurrentModificationError unless the stored status still
    matches, so of two simultaneous requests on the same invoice the one that
    arrives second is refused rather than judged against the winner's result.
    """

    def __init__(
        self,
        store,
        ledger: InvoiceLedger,
        numbering: NumberingAuthority,
        audit: AuditLogger,
        event_bus: EventBus,
        clock: Clock,
        config: BillingConfig,
    ):
        self.store = store
        self.ledger = ledger
        self.numbering = numbering
        self.audit = audit
        self.event_bus = event_bus
        self.clock = clock
        self.config = config

    # =========================================================================
    # HELPERS
    # =========================================================================

    def effective_status(self, invoice: Invoice) -> InvoiceStatus:
        """Stored status with the Overdue overlay applied."""
        if invoice.status == InvoiceStatus.PENDING and invoice.is_past_due(self.clock.today()):
            return InvoiceStatus.OVERDUE
        return invoice.status

    def _load(self, invoice_id: UUID, expected_status: InvoiceStatus) -> Invoice:
        invoice = self.store.get_invoice(invoice_id)
        if invoice is None:
            raise ValueError(f"Invoice {invoice_id} not found")

        if invoice.status != expected_status:
            raise ConcurrentModificationError(invoice_id, expected_status.value, invoice.status.value)

        return invoice

    def _check_allowed(self, invoice: Invoice, to_status: InvoiceStatus) -> InvoiceStatus:
        from_status = self.effective_status(invoice)
        if not is_allowed(from_status, to_status):
            raise IllegalTransitionError(from_status.value, to_status.value)
        return from_status

    def _commit(self, invoice: Invoice, to_status: InvoiceStatus, updates: dict[str, Any]) -> Invoice:
        """Compare-and-set on the status read, then audit."""
        updates = {**updates, "status": to_status, "updated_at": self.clock.now()}

        updated = self.store.compare_and_set_invoice(invoice.id, invoice.status, updates)
        if updated is None:
            current = self.store.get_invoice(invoice.id)
            actual = current.status.value if current is not None else None
            logger.warning(
                f"Invoice {invoice.id} moved from {invoice.status.value} to {actual} "
                f"before {to_status.value} could be applied"
            )
            raise ConcurrentModificationError(invoice.id, invoice.status.value, actual)

        changes = compute_changes(
            invoice.model_dump(mode="json"),
            updated.model_dump(mode="json")
        )
        self.audit.log_change(
            entity_type="invoice",
            entity_id=invoice.id,
            action=AuditAction.UPDATE,
            changes=changes
        )

        return updated

    def _payment_terms_days(self, invoice: Invoice) -> int:
        organization = self.store.get_organization(invoice.organization_id)
        if organization is not None and organization.payment_terms_days is not None:
            return organization.payment_terms_days
        return self.config.payment_terms_days

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    def finalize(self, invoice_id: UUID, expected_status: InvoiceStatus) -> Invoice:
        """
        Draft -> Pending.

        Assigns an invoice number (or keeps the one from an earlier finalize),
        locks the amount to the line item total, stamps the finalize and due
        dates, and requests the client document. Document generation runs in
        the background; its failure never undoes the finalize.

        Args:
            invoice_id: Invoice UUID
            expected_status: Status the caller believes the invoice has

        Returns:
            Pending invoice

        Raises:
            ValueError: If invoice not found
            IllegalTransitionError: If not a draft, no line items, or amount not positive
            ConcurrentModificationError: If the status moved underneath the call
        """
        invoice = self._load(invoice_id, expected_status)
        self._check_allowed(invoice, InvoiceStatus.PENDING)

        line_items = self.ledger.line_items(invoice_id)
        if not line_items:
            raise IllegalTransitionError(
                InvoiceStatus.DRAFT.value, InvoiceStatus.PENDING.value, "invoice has no line items"
            )

        total = sum(item.amount_cents for item in line_items)
        if total <= 0:
            raise IllegalTransitionError(
                InvoiceStatus.DRAFT.value, InvoiceStatus.PENDING.value,
                f"invoice total {format_cents(total)} is not positive"
            )

        today = self.clock.today()
        invoice_number = invoice.invoice_number or self.numbering.next_number(today)
        due_date = invoice.due_date or today + timedelta(days=self._payment_terms_days(invoice))

        updated = self._commit(invoice, InvoiceStatus.PENDING, {
            "invoice_number": invoice_number,
            "amount_cents": total,
            "invoice_date": today,
            "due_date": due_date,
            "finalized_at": self.clock.now(),
            "document_status": DocumentStatus.PENDING,
            "document_error": None,
        })

        logger.info(
            f"Finalized invoice {invoice_number} ({invoice_id}) for {format_cents(total)}, due {due_date}"
        )
        self.event_bus.publish(InvoiceFinalized.create(invoice=updated))

        return updated

    def mark_paid(self, invoice_id: UUID, expected_status: InvoiceStatus) -> Invoice:
        """
        Pending/Partial/Overdue -> Paid.

        Sets amount_paid to the full amount regardless of earlier partial payments.

        Raises:
            ValueError: If invoice not found
            IllegalTransitionError: If the invoice is draft, paid or void
            ConcurrentModificationError: If the status moved underneath the call
        """
        invoice = self._load(invoice_id, expected_status)
        self._check_allowed(invoice, InvoiceStatus.PAID)

        updated = self._commit(invoice, InvoiceStatus.PAID, {
            "amount_paid_cents": invoice.amount_cents,
            "paid_at": self.clock.now(),
        })

        logger.info(f"Invoice {invoice.invoice_number} marked paid ({format_cents(updated.amount_paid_cents)})")
        self.event_bus.publish(InvoicePaid.create(invoice=updated))

        return updated

    def mark_partial(
        self,
        invoice_id: UUID,
        amount_paid_cents: int,
        expected_status: InvoiceStatus,
    ) -> Invoice:
        """
        Pending/Overdue/Partial -> Partial with a new total paid.

        Args:
            invoice_id: Invoice UUID
            amount_paid_cents: Total paid so far (not the increment)
            expected_status: Status the caller believes the invoice has

        Raises:
            ValueError: If invoice not found
            IllegalTransitionError: If the transition is not allowed or
                amount_paid_cents does not exceed the amount already paid
                or reaches the full amount
            ConcurrentModificationError: If the status moved underneath the call
        """
        invoice = self._load(invoice_id, expected_status)
        from_status = self._check_allowed(invoice, InvoiceStatus.PARTIAL)

        if not invoice.amount_paid_cents < amount_paid_cents < invoice.amount_cents:
            raise IllegalTransitionError(
                from_status.value, InvoiceStatus.PARTIAL.value,
                f"amount paid must be above {format_cents(invoice.amount_paid_cents)} "
                f"and below {format_cents(invoice.amount_cents)}, "
                f"got {format_cents(amount_paid_cents)}"
            )

        updated = self._commit(invoice, InvoiceStatus.PARTIAL, {"amount_paid_cents": amount_paid_cents})

        logger.info(
            f"Invoice {invoice.invoice_number} partially paid: "
            f"{format_cents(amount_paid_cents)} of {format_cents(invoice.amount_cents)}"
        )
        self.event_bus.publish(InvoicePaymentRecorded.create(
            invoice=updated, payment_cents=amount_paid_cents - invoice.amount_paid_cents
        ))

        return updated

    def record_payment(
        self,
        invoice_id: UUID,
        payment_cents: int,
        expected_status: InvoiceStatus,
    ) -> Invoice:
        """
        Apply a payment: Partial while short of the amount, Paid once it is reached.

        An over-payment is recorded as-is and leaves a negative balance, which
        is logged as a warning.

        Raises:
            ValueError: If invoice not found or payment not positive
            IllegalTransitionError: If the invoice is draft, paid or void
            ConcurrentModificationError: If the status moved underneath the call
        """
        if payment_cents <= 0:
            raise ValueError("Payment amount must be positive")

        invoice = self._load(invoice_id, expected_status)
        total_paid = invoice.amount_paid_cents + payment_cents

        if total_paid < invoice.amount_cents:
            self._check_allowed(invoice, InvoiceStatus.PARTIAL)
            updated = self._commit(invoice, InvoiceStatus.PARTIAL, {"amount_paid_cents": total_paid})
            logger.info(
                f"Payment of {format_cents(payment_cents)} on invoice {invoice.invoice_number}, "
                f"balance {format_cents(updated.balance_cents)}"
            )
            self.event_bus.publish(InvoicePaymentRecorded.create(invoice=updated, payment_cents=payment_cents))
            return updated

        self._check_allowed(invoice, InvoiceStatus.PAID)
        updated = self._commit(invoice, InvoiceStatus.PAID, {
            "amount_paid_cents": total_paid,
            "paid_at": self.clock.now(),
        })
        logger.info(f"Payment of {format_cents(payment_cents)} settled invoice {invoice.invoice_number}")
        self.ledger.check_consistency(updated)
        self.event_bus.publish(InvoicePaid.create(invoice=updated))

        return updated

    def void(
        self,
        invoice_id: UUID,
        expected_status: InvoiceStatus,
        reason: str | None = None,
    ) -> Invoice:
        """
        Pending/Partial/Overdue -> Void.

        Drafts are discarded rather than voided. Paid and Void are terminal.

        Raises:
            ValueError: If invoice not found
            IllegalTransitionError: If the invoice is draft, paid or void
            ConcurrentModificationError: If the status moved underneath the call
        """
        invoice = self._load(invoice_id, expected_status)
        self._check_allowed(invoice, InvoiceStatus.VOID)

        updates: dict[str, Any] = {"voided_at": self.clock.now()}
        if reason:
            updates["notes"] = reason

        updated = self._commit(invoice, InvoiceStatus.VOID, updates)

        logger.info(f"Invoice {invoice.invoice_number} voided")
        self.event_bus.publish(InvoiceVoided.create(invoice=updated))

        return updated

    def revert_to_draft(self, invoice_id: UUID, expected_status: InvoiceStatus) -> Invoice:
        """
        Pending -> Draft. Staff only.

        Allowed only from Pending that is not yet past due. The invoice number
        is kept and reused on the next finalize; numbers are never reclaimed.

        Raises:
            RuntimeError: If no acting staff member is set
            ValueError: If invoice not found
            IllegalTransitionError: If not Pending (Partial and Overdue included)
            ConcurrentModificationError: If the status moved underneath the call
        """
        actor_id = require_actor_id()

        invoice = self._load(invoice_id, expected_status)
        self._check_allowed(invoice, InvoiceStatus.DRAFT)

        updated = self._commit(invoice, InvoiceStatus.DRAFT, {
            "invoice_date": None,
            "due_date": None,
            "finalized_at": None,
            "document_status": DocumentStatus.NOT_REQUESTED,
            "document_location": None,
            "document_error": None,
        })

        logger.info(f"Invoice {invoice.invoice_number} reverted to draft by {actor_id}")
        self.event_bus.publish(InvoiceRevertedToDraft.create(invoice=updated))

        return updated

    def mark_overdue(self, invoice_id: UUID, expected_status: InvoiceStatus) -> Invoice:
        """
        Persist the Overdue overlay on a Pending invoice past its due date.

        Raises:
            ValueError: If invoice not found
            IllegalTransitionError: If not stored as Pending or not past due
            ConcurrentModificationError: If the status moved underneath the call
        """
        invoice = self._load(invoice_id, expected_status)

        if invoice.status != InvoiceStatus.PENDING:
            raise IllegalTransitionError(invoice.status.value, InvoiceStatus.OVERDUE.value)
        if not invoice.is_past_due(self.clock.today()):
            raise IllegalTransitionError(
                invoice.status.value, InvoiceStatus.OVERDUE.value, f"not past due (due {invoice.due_date})"
            )

        updated = self._commit(invoice, InvoiceStatus.OVERDUE, {})

        logger.info(f"Invoice {invoice.invoice_number} is overdue (due {invoice.due_date})")
        self.event_bus.publish(InvoiceMarkedOverdue.create(invoice=updated))

        return updated
