"""
Invoice ledger: line items and the arithmetic over them.

Line items change only while an invoice is a draft. The one exception is the
late fee, which is appended together with the matching amount increase so the
line items keep summing to the invoice amount.
"""

import logging
from uuid import UUID, uuid4

from billing.audit import AuditAction, AuditLogger
from billing.event_bus import EventBus
from billing.events import LateFeeApplied
from billing.exceptions import ConcurrentModificationError, InvoiceLockedError
from billing.models import (
    Invoice, InvoiceStatus, LineItem, LineItemCreate, LineItemType, OPEN_STATUSES,
    TERMINAL_STATUSES,
)
from billing.money import format_cents
from utils.clock import Clock

logger = logging.getLogger(__name__)


class InvoiceLedger:
    """Owns amount, paid and balance arithmetic for invoices."""

    def __init__(self, store, audit: AuditLogger, event_bus: EventBus, clock: Clock):
        self.store = store
        self.audit = audit
        self.event_bus = event_bus
        self.clock = clock

    def _get_invoice(self, invoice_id: UUID) -> Invoice:
        invoice = self.store.get_invoice(invoice_id)
        if invoice is None:
            raise ValueError(f"Invoice {invoice_id} not found")
        return invoice

    def line_items(self, invoice_id: UUID) -> list[LineItem]:
        """Line items in display order."""
        return self.store.list_line_items(invoice_id)

    def total(self, invoice_id: UUID) -> int:
        """Sum of line item amounts in cents. Credits subtract."""
        return sum(item.amount_cents for item in self.store.list_line_items(invoice_id))

    @staticmethod
    def balance(invoice: Invoice) -> int:
        """amount - amount_paid. Negative means over-payment and is not clamped."""
        return invoice.balance_cents

    def build_line_item(self, invoice_id: UUID, data: LineItemCreate, display_order: int) -> LineItem:
        """Materialize a LineItemCreate for an invoice without storing it."""
        return LineItem(
            id=uuid4(),
            invoice_id=invoice_id,
            line_type=data.line_type,
            description=data.description,
            quantity=data.quantity,
            rate_cents=data.rate_cents,
            amount_cents=data.amount_cents,
            milestone_id=data.milestone_id,
            display_order=display_order,
            created_at=self.clock.now(),
        )

    def add_line_item(self, invoice_id: UUID, data: LineItemCreate) -> LineItem:
        """
        Add a line item to a draft invoice.

        Args:
            invoice_id: Invoice UUID
            data: Line item to add

        Returns:
            Stored line item

        Raises:
            ValueError: If invoice not found
            InvoiceLockedError: If the invoice is not a draft
        """
        invoice = self._get_invoice(invoice_id)
        if invoice.status != InvoiceStatus.DRAFT:
            raise InvoiceLockedError(invoice_id, invoice.status.value)

        existing = self.store.list_line_items(invoice_id)
        next_order = max((item.display_order for item in existing), default=-1) + 1
        line_item = self.build_line_item(invoice_id, data, next_order)
        new_total = sum(item.amount_cents for item in existing) + line_item.amount_cents

        updated = self.store.append_line_item(
            line_item, new_total, InvoiceStatus.DRAFT, {"updated_at": self.clock.now()}
        )
        if updated is None:
            current = self._get_invoice(invoice_id)
            raise InvoiceLockedError(invoice_id, current.status.value)

        self.audit.log_change(
            entity_type="line_item",
            entity_id=line_item.id,
            action=AuditAction.CREATE,
            changes={"created": line_item.model_dump(mode="json")}
        )

        return line_item

    def remove_line_item(self, invoice_id: UUID, line_item_id: UUID) -> Invoice:
        """
        Remove a line item from a draft invoice.

        Returns:
            The invoice with its amount reduced

        Raises:
            ValueError: If invoice or line item not found
            InvoiceLockedError: If the invoice is not a draft
        """
        invoice = self._get_invoice(invoice_id)
        if invoice.status != InvoiceStatus.DRAFT:
            raise InvoiceLockedError(invoice_id, invoice.status.value)

        existing = self.store.list_line_items(invoice_id)
        target = next((item for item in existing if item.id == line_item_id), None)
        if target is None:
            raise ValueError(f"Line item {line_item_id} not found on invoice {invoice_id}")

        new_total = sum(item.amount_cents for item in existing) - target.amount_cents
        updated = self.store.remove_line_item(line_item_id, new_total, InvoiceStatus.DRAFT)
        if updated is None:
            current = self._get_invoice(invoice_id)
            raise InvoiceLockedError(invoice_id, current.status.value)

        self.audit.log_change(
            entity_type="line_item",
            entity_id=line_item_id,
            action=AuditAction.DELETE,
            changes={"deleted": target.model_dump(mode="json")}
        )

        return updated

    def check_consistency(self, invoice: Invoice) -> list[str]:
        """
        Report ledger inconsistencies as warnings. Never raises, never fixes.

        Checks:
        - zero balance on an invoice that is neither paid nor void, drafts included
        - negative balance (over-payment)
        - line items not summing to the amount once the invoice left draft
        """
        warnings = []

        if invoice.status not in TERMINAL_STATUSES and invoice.balance_cents == 0:
            warnings.append(
                f"Invoice {invoice.id} has zero balance but status {invoice.status.value}"
            )

        if invoice.balance_cents < 0:
            warnings.append(
                f"Invoice {invoice.id} is over-paid by {format_cents(-invoice.balance_cents)}"
            )

        if invoice.status != InvoiceStatus.DRAFT:
            line_total = self.total(invoice.id)
            if line_total != invoice.amount_cents:
                warnings.append(
                    f"Invoice {invoice.id} line items sum to {format_cents(line_total)} "
                    f"but amount is {format_cents(invoice.amount_cents)}"
                )

        for warning in warnings:
            logger.warning(warning)

        return warnings

    def apply_late_fee(self, invoice_id: UUID, fee_cents: int, description: str | None = None) -> Invoice:
        """
        Append a late fee to an open invoice and raise its amount to match.

        Args:
            invoice_id: Invoice UUID
            fee_cents: Fee in cents, must be positive
            description: Line item text (defaults to "Late fee")

        Returns:
            Updated invoice

        Raises:
            ValueError: If invoice not found, fee not positive, or a fee was already applied
            InvoiceLockedError: If the invoice is not open (draft, paid or void)
            ConcurrentModificationError: If the status moved while applying
        """
        if fee_cents <= 0:
            raise ValueError("Late fee must be positive")

        invoice = self._get_invoice(invoice_id)
        if invoice.status not in OPEN_STATUSES:
            raise InvoiceLockedError(invoice_id, invoice.status.value)
        if invoice.late_fee_cents > 0:
            raise ValueError(f"Invoice {invoice_id} already has a late fee")

        existing = self.store.list_line_items(invoice_id)
        next_order = max((item.display_order for item in existing), default=-1) + 1
        line_item = self.build_line_item(
            invoice_id,
            LineItemCreate(
                line_type=LineItemType.LATE_FEE,
                description=description or "Late fee",
                amount_cents=fee_cents,
            ),
            next_order,
        )

        updated = self.store.append_line_item(
            line_item,
            invoice.amount_cents + fee_cents,
            invoice.status,
            {"late_fee_cents": fee_cents, "updated_at": self.clock.now()},
        )
        if updated is None:
            current = self._get_invoice(invoice_id)
            raise ConcurrentModificationError(invoice_id, invoice.status.value, current.status.value)

        self.audit.log_change(
            entity_type="invoice",
            entity_id=invoice_id,
            action=AuditAction.UPDATE,
            changes={
                "amount_cents": {"old": invoice.amount_cents, "new": updated.amount_cents},
                "late_fee_cents": {"old": 0, "new": fee_cents},
            }
        )

        logger.info(f"Late fee {format_cents(fee_cents)} applied to invoice {invoice_id}")
        self.event_bus.publish(LateFeeApplied.create(invoice=updated, fee_cents=fee_cents))

        return updated
