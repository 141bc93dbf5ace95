"""
Scheduled billing sweep.

Marks past-due Pending invoices Overdue and applies the one-time late fee to
invoices past the grace period. All status changes go through the state
machine. An invoice that moves underneath the sweep is logged and skipped;
the next run picks it up again.
"""

import logging
from dataclasses import dataclass, field
from uuid import UUID

from billing.config import BillingConfig
from billing.exceptions import (
    ConcurrentModificationError, IllegalTransitionError, InvoiceLockedError,
)
from billing.models import Invoice, InvoiceStatus
from billing.money import apply_bps, format_cents
from billing.services.invoice_state_machine import InvoiceStateMachine
from billing.services.ledger import InvoiceLedger
from utils.clock import Clock

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    marked_overdue: list[UUID] = field(default_factory=list)
    late_fees: dict[UUID, int] = field(default_factory=dict)
    skipped: dict[UUID, str] = field(default_factory=dict)


class BillingSweep:
    """Overdue marking and late fees, run on a schedule."""

    def __init__(
        self,
        store,
        state_machine: InvoiceStateMachine,
        ledger: InvoiceLedger,
        clock: Clock,
        config: BillingConfig,
    ):
        self.store = store
        self.state_machine = state_machine
        self.ledger = ledger
        self.clock = clock
        self.config = config

    def run(self) -> SweepResult:
        """
        Run one sweep.

        Returns:
            SweepResult listing what changed and what was skipped
        """
        result = SweepResult()
        self._mark_overdue(result)
        self._apply_late_fees(result)

        logger.info(
            f"Billing sweep: {len(result.marked_overdue)} marked overdue, "
            f"{len(result.late_fees)} late fees, {len(result.skipped)} skipped"
        )
        return result

    def _mark_overdue(self, result: SweepResult) -> None:
        today = self.clock.today()

        for invoice in self.store.list_invoices_by_status([InvoiceStatus.PENDING]):
            if not invoice.is_past_due(today):
                continue
            try:
                self.state_machine.mark_overdue(invoice.id, expected_status=InvoiceStatus.PENDING)
            except (ConcurrentModificationError, IllegalTransitionError) as e:
                logger.warning(f"Sweep skipped overdue marking for {invoice.id}: {e}")
                result.skipped[invoice.id] = str(e)
                continue
            result.marked_overdue.append(invoice.id)

    def late_fee_bps(self, invoice: Invoice) -> int:
        organization = self.store.get_organization(invoice.organization_id)
        if organization is not None and organization.late_fee_bps is not None:
            return organization.late_fee_bps
        return self.config.late_fee_bps

    def _apply_late_fees(self, result: SweepResult) -> None:
        today = self.clock.today()
        grace_days = self.config.late_fee_grace_days

        candidates = self.store.list_invoices_by_status([InvoiceStatus.OVERDUE, InvoiceStatus.PARTIAL])
        for invoice in candidates:
            if invoice.late_fee_cents > 0 or invoice.due_date is None:
                continue
            if (today - invoice.due_date).days < grace_days:
                continue

            bps = self.late_fee_bps(invoice)
            balance = invoice.balance_cents
            fee = apply_bps(balance, bps)
            if fee <= 0:
                continue

            try:
                self.ledger.apply_late_fee(
                    invoice.id,
                    fee,
                    description=f"Late fee ({bps / 100:g}% of {format_cents(balance)})",
                )
            except (ConcurrentModificationError, InvoiceLockedError, ValueError) as e:
                logger.warning(f"Sweep skipped late fee for {invoice.id}: {e}")
                result.skipped[invoice.id] = str(e)
                continue
            result.late_fees[invoice.id] = fee
