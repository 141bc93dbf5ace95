"""
Billing engine facade.

Wires the record store, numbering authority, clock, audit trail, event bus and
document pipeline into the billing services, and exposes the plain calls the
presentation layer uses.
"""

import logging
from uuid import UUID

from billing.audit import AuditLogger
from billing.config import BillingConfig
from billing.event_bus import EventBus
from billing.handlers import handle_invoice_finalized, handle_late_fee_applied
from billing.models import BillingStatus, Invoice, InvoiceStatus, LineItem, LineItemCreate
from billing.services.amount_resolver import AmountResolution, AmountResolver
from billing.services.billing_status import BillingStatusProjector
from billing.services.billing_sweep import BillingSweep, SweepResult
from billing.services.closeout_aggregator import CloseoutAggregator, CloseoutPlan
from billing.services.document_service import DocumentDispatcher, DocumentGenerator, DocumentService
from billing.services.invoice_generator import InvoiceGenerator
from billing.services.invoice_state_machine import InvoiceStateMachine
from billing.services.ledger import InvoiceLedger
from billing.services.numbering import NumberingAuthority, SequenceNumberingAuthority
from billing.services.overage_calculator import OverageCalculator, OverageResult
from utils.clock import Clock, SystemClock

logger = logging.getLogger(__name__)


class BillingEngine:
    """
    Entry point for billing operations.

    Usage:
        engine = BillingEngine(InMemoryBillingStore(), document_generator=gateway)
        invoice = engine.invoice_from_milestone(milestone_id)
        engine.finalize(invoice.id, InvoiceStatus.DRAFT)
        engine.record_payment(invoice.id, 5000, InvoiceStatus.PENDING)
    """

    def __init__(
        self,
        store,
        document_generator: DocumentGenerator,
        numbering: NumberingAuthority | None = None,
        clock: Clock | None = None,
        config: BillingConfig | None = None,
        event_bus: EventBus | None = None,
    ):
        self.config = config or BillingConfig()
        self.clock = clock or SystemClock()
        self.store = store
        self.numbering = numbering or SequenceNumberingAuthority(self.config.invoice_number_prefix)
        self.event_bus = event_bus or EventBus()
        self.audit = AuditLogger(store, self.clock)

        self.resolver = AmountResolver(store, self.config)
        self.overage = OverageCalculator(store, self.config)
        self.ledger = InvoiceLedger(store, self.audit, self.event_bus, self.clock)
        self.state_machine = InvoiceStateMachine(
            store, self.ledger, self.numbering, self.audit, self.event_bus, self.clock, self.config
        )
        self.aggregator = CloseoutAggregator(store, self.resolver)
        self.projector = BillingStatusProjector(store)
        self.generator = InvoiceGenerator(
            store, self.resolver, self.overage, self.aggregator,
            self.ledger, self.audit, self.event_bus, self.clock,
        )
        self.sweep = BillingSweep(store, self.state_machine, self.ledger, self.clock, self.config)

        self.documents = DocumentService(store, document_generator, self.audit, self.clock)
        self.dispatcher = DocumentDispatcher(self.documents, self.config.document_workers)

        self.event_bus.subscribe("InvoiceFinalized", handle_invoice_finalized(self.dispatcher))
        self.event_bus.subscribe("LateFeeApplied", handle_late_fee_applied(self.dispatcher))

    @classmethod
    def from_vault(cls, config: BillingConfig | None = None, clock: Clock | None = None) -> "BillingEngine":
        """
        Production wiring: PostgreSQL store, Valkey numbering, HTTP document gateway.

        Connection details and credentials come from Vault.
        """
        from billing.services.numbering import ValkeyNumberingAuthority
        from billing.store.postgres import PostgresBillingStore
        from clients.document_client import DocumentGatewayClient
        from clients.postgres_client import PostgresClient
        from clients.valkey_client import ValkeyClient
        from clients.vault_client import get_database_url, get_document_config, get_valkey_url

        config = config or BillingConfig()
        store = PostgresBillingStore(PostgresClient(get_database_url()))
        numbering = ValkeyNumberingAuthority(ValkeyClient(get_valkey_url()), prefix=config.invoice_number_prefix)
        gateway = DocumentGatewayClient(**get_document_config())

        logger.info("Billing engine wired from Vault")
        return cls(store, gateway, numbering=numbering, clock=clock, config=config)

    def close(self) -> None:
        """Wait for queued document jobs and stop the worker pool."""
        self.dispatcher.shutdown(wait=True)

    # =========================================================================
    # AMOUNTS
    # =========================================================================

    def resolve_milestone(self, milestone_id: UUID) -> AmountResolution:
        return self.resolver.resolve_milestone(milestone_id)

    def compute_overage(self, report_id: UUID) -> OverageResult:
        return self.overage.compute_for_report(report_id)

    # =========================================================================
    # LEDGER
    # =========================================================================

    def add_line_item(self, invoice_id: UUID, data: LineItemCreate) -> LineItem:
        return self.ledger.add_line_item(invoice_id, data)

    def remove_line_item(self, invoice_id: UUID, line_item_id: UUID) -> Invoice:
        return self.ledger.remove_line_item(invoice_id, line_item_id)

    def total(self, invoice_id: UUID) -> int:
        return self.ledger.total(invoice_id)

    def balance(self, invoice_id: UUID) -> int:
        invoice = self.store.get_invoice(invoice_id)
        if invoice is None:
            raise ValueError(f"Invoice {invoice_id} not found")
        return self.ledger.balance(invoice)

    def check_consistency(self, invoice_id: UUID) -> list[str]:
        invoice = self.store.get_invoice(invoice_id)
        if invoice is None:
            raise ValueError(f"Invoice {invoice_id} not found")
        return self.ledger.check_consistency(invoice)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def finalize(self, invoice_id: UUID, expected_status: InvoiceStatus) -> Invoice:
        return self.state_machine.finalize(invoice_id, expected_status)

    def mark_paid(self, invoice_id: UUID, expected_status: InvoiceStatus) -> Invoice:
        return self.state_machine.mark_paid(invoice_id, expected_status)

    def mark_partial(
        self, invoice_id: UUID, amount_paid_cents: int, expected_status: InvoiceStatus
    ) -> Invoice:
        return self.state_machine.mark_partial(invoice_id, amount_paid_cents, expected_status)

    def record_payment(
        self, invoice_id: UUID, payment_cents: int, expected_status: InvoiceStatus
    ) -> Invoice:
        return self.state_machine.record_payment(invoice_id, payment_cents, expected_status)

    def void(
        self, invoice_id: UUID, expected_status: InvoiceStatus, reason: str | None = None
    ) -> Invoice:
        return self.state_machine.void(invoice_id, expected_status, reason)

    def revert_to_draft(self, invoice_id: UUID, expected_status: InvoiceStatus) -> Invoice:
        return self.state_machine.revert_to_draft(invoice_id, expected_status)

    def effective_status(self, invoice_id: UUID) -> InvoiceStatus:
        invoice = self.store.get_invoice(invoice_id)
        if invoice is None:
            raise ValueError(f"Invoice {invoice_id} not found")
        return self.state_machine.effective_status(invoice)

    # =========================================================================
    # GENERATION
    # =========================================================================

    def invoice_from_monthly_report(self, report_id: UUID) -> Invoice:
        return self.generator.from_monthly_report(report_id)

    def invoice_from_milestone(self, milestone_id: UUID) -> Invoice:
        return self.generator.from_milestone(milestone_id)

    def build_closeout(self, project_id: UUID) -> CloseoutPlan:
        return self.aggregator.build(project_id)

    def create_closeout(self, project_id: UUID) -> Invoice:
        return self.generator.create_closeout(project_id)

    def discard_draft(self, invoice_id: UUID) -> None:
        self.generator.discard_draft(invoice_id)

    # =========================================================================
    # STATUS, JOBS AND DOCUMENTS
    # =========================================================================

    def milestone_billing_status(self, milestone_id: UUID) -> BillingStatus:
        return self.projector.milestone_status(milestone_id)

    def report_billing_status(self, report_id: UUID) -> BillingStatus:
        return self.projector.report_status(report_id)

    def run_sweep(self) -> SweepResult:
        return self.sweep.run()

    def retry_document(self, invoice_id: UUID) -> Invoice | None:
        return self.documents.retry(invoice_id)

    def retry_failed_documents(self) -> list[Invoice]:
        return self.documents.retry_failed()
