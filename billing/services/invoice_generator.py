"""
Invoice generation from billable sources.

Builds draft invoices for a monthly report, a single milestone, or a whole
project closeout. Drafts stay editable until the state machine finalizes them.
"""

import logging
from uuid import UUID, uuid4

from billing.audit import AuditAction, AuditLogger
from billing.event_bus import EventBus
from billing.events import CloseoutInvoiceCreated, InvoiceCreated
from billing.exceptions import (
    ConcurrentModificationError, DuplicateInvoiceError, InvoiceLockedError,
    MissingRateError, NoEligibleWorkError,
)
from billing.models import (
    BillableKind, Invoice, InvoiceStatus, InvoiceType,
    LineItem, LineItemCreate, LineItemType, Milestone,
)
from billing.money import cents_for_hours, format_cents
from billing.services.amount_resolver import FLAT, AmountResolution, AmountResolver
from billing.services.billing_status import current_invoice
from billing.services.closeout_aggregator import CloseoutAggregator, CloseoutPlan
from billing.services.ledger import InvoiceLedger
from billing.services.overage_calculator import OverageCalculator
from utils.actor_context import require_actor_id
from utils.clock import Clock

logger = logging.getLogger(__name__)


class InvoiceGenerator:
    """Creates draft invoices from monthly reports, milestones and project closeouts."""

    def __init__(
        self,
        store,
        resolver: AmountResolver,
        overage: OverageCalculator,
        aggregator: CloseoutAggregator,
        ledger: InvoiceLedger,
        audit: AuditLogger,
        event_bus: EventBus,
        clock: Clock,
    ):
        self.store = store
        self.resolver = resolver
        self.overage = overage
        self.aggregator = aggregator
        self.ledger = ledger
        self.audit = audit
        self.event_bus = event_bus
        self.clock = clock

    def _new_invoice(self, organization_id: UUID, invoice_type: InvoiceType, **source) -> Invoice:
        now = self.clock.now()
        return Invoice(
            id=uuid4(),
            organization_id=organization_id,
            invoice_type=invoice_type,
            created_at=now,
            updated_at=now,
            **source,
        )

    def _line_items(self, invoice_id: UUID, items: list[LineItemCreate]) -> list[LineItem]:
        return [
            self.ledger.build_line_item(invoice_id, data, order)
            for order, data in enumerate(items)
        ]

    def _log_created(self, invoice: Invoice, line_items: list[LineItem]) -> None:
        self.audit.log_change(
            entity_type="invoice",
            entity_id=invoice.id,
            action=AuditAction.CREATE,
            changes={
                "created": {
                    "invoice_type": invoice.invoice_type.value,
                    "amount_cents": invoice.amount_cents,
                    "line_items": len(line_items),
                }
            }
        )

    # =========================================================================
    # MONTHLY REPORTS
    # =========================================================================

    def from_monthly_report(self, report_id: UUID) -> Invoice:
        """
        Create a draft invoice for a monthly report.

        Lines: hosting fee, one consolidated support line for the period's
        billable hours, a credit for the included free hours, and a zero-amount
        line showing non-billable time.

        Args:
            report_id: Monthly report UUID

        Returns:
            Draft invoice

        Raises:
            ValueError: If report or organization not found
            DuplicateInvoiceError: If the report already has a non-void invoice
            MissingRateError: If there is billable time but no hourly rate
            NoEligibleWorkError: If nothing is chargeable for the period
        """
        report = self.store.get_monthly_report(report_id)
        if report is None:
            raise ValueError(f"Monthly report {report_id} not found")

        existing = current_invoice(self.store.list_invoices_for_report(report_id))
        if existing is not None:
            raise DuplicateInvoiceError(report_id, existing.id)

        organization = self.store.get_organization(report.organization_id)
        if organization is None:
            raise ValueError(f"Organization {report.organization_id} not found")

        overage = self.overage.compute(report)
        if overage.rate_missing and overage.billable_hours > 0:
            raise MissingRateError(BillableKind.MONTHLY_REPORT.value, report_id)

        items: list[LineItemCreate] = []
        label = report.period_label

        if organization.monthly_hosting_fee_cents > 0:
            items.append(LineItemCreate(
                line_type=LineItemType.HOSTING_FEE,
                description=f"Monthly hosting - {label}",
                amount_cents=organization.monthly_hosting_fee_cents,
            ))

        if overage.billable_hours > 0:
            items.append(LineItemCreate(
                line_type=LineItemType.SUPPORT,
                description=f"Technical support - {label}",
                quantity=overage.billable_hours,
                rate_cents=overage.rate_cents,
            ))

            free_used = overage.free_hours_used
            if free_used > 0:
                items.append(LineItemCreate(
                    line_type=LineItemType.FREE_HOURS_CREDIT,
                    description=f"Included support ({organization.monthly_free_hours} hrs/month)",
                    quantity=free_used,
                    rate_cents=-overage.rate_cents,
                    amount_cents=-cents_for_hours(free_used, overage.rate_cents),
                ))

        if overage.non_billable_hours > 0:
            items.append(LineItemCreate(
                line_type=LineItemType.NON_BILLABLE,
                description=f"Non-billable support - {label}",
                quantity=overage.non_billable_hours,
                rate_cents=0,
                amount_cents=0,
            ))

        total = sum(item.amount_cents for item in items)
        if total <= 0:
            raise NoEligibleWorkError(report_id, f"nothing chargeable for {label}")

        invoice = self._new_invoice(
            organization.id,
            InvoiceType.STANDARD,
            monthly_report_id=report_id,
            amount_cents=total,
            notes=f"Generated from {label} monthly report",
        )
        line_items = self._line_items(invoice.id, items)
        invoice = self.store.create_invoice(invoice, line_items)

        self._log_created(invoice, line_items)
        logger.info(f"Created draft invoice {invoice.id} for {label} ({format_cents(total)})")
        self.event_bus.publish(InvoiceCreated.create(invoice=invoice))

        return invoice

    # =========================================================================
    # MILESTONES
    # =========================================================================

    def from_milestone(self, milestone_id: UUID) -> Invoice:
        """
        Create a draft invoice for a single milestone.

        Deposit milestones produce a deposit invoice. Flat milestones get one
        line at the fixed amount; hourly milestones get an hours x rate line
        plus a zero-amount line showing non-billable time.

        Raises:
            ValueError: If milestone or project not found
            NoEligibleWorkError: If the milestone has no project or resolves to zero
            DuplicateInvoiceError: If the milestone already has a non-void invoice
            MissingRateError: If the milestone is hourly and no rate is available
        """
        billable = self.resolver.milestone_billable(milestone_id)
        milestone = self.store.get_milestone(milestone_id)

        existing = current_invoice(self.store.list_invoices_for_milestone(milestone_id))
        if existing is not None:
            raise DuplicateInvoiceError(milestone_id, existing.id)

        resolution = self.resolver.resolve(billable)
        if not resolution.is_billable:
            raise NoEligibleWorkError(milestone_id, "milestone has no billable amount")

        items = self._milestone_items(milestone, resolution)
        invoice_type = InvoiceType.DEPOSIT if milestone.is_deposit else InvoiceType.MILESTONE

        invoice = self._new_invoice(
            billable.organization_id,
            invoice_type,
            milestone_id=milestone_id,
            amount_cents=resolution.amount_cents,
        )
        line_items = self._line_items(invoice.id, items)
        invoice = self.store.create_invoice(invoice, line_items)

        self._log_created(invoice, line_items)
        logger.info(
            f"Created draft {invoice_type.value} invoice {invoice.id} for milestone {milestone_id} "
            f"({format_cents(resolution.amount_cents)})"
        )
        self.event_bus.publish(InvoiceCreated.create(invoice=invoice))

        return invoice

    @staticmethod
    def _milestone_items(milestone: Milestone, resolution: AmountResolution) -> list[LineItemCreate]:
        line_type = LineItemType.PROJECT_DEPOSIT if milestone.is_deposit else LineItemType.PROJECT_MILESTONE

        if resolution.source == FLAT:
            return [LineItemCreate(
                line_type=line_type,
                description=milestone.label,
                amount_cents=resolution.amount_cents,
                milestone_id=milestone.id,
            )]

        items = [LineItemCreate(
            line_type=line_type,
            description=milestone.label,
            quantity=resolution.hours,
            rate_cents=resolution.rate_cents,
            amount_cents=resolution.amount_cents,
            milestone_id=milestone.id,
        )]
        if resolution.non_billable_hours > 0:
            items.append(LineItemCreate(
                line_type=LineItemType.NON_BILLABLE,
                description=f"{milestone.label} (non-billable)",
                quantity=resolution.non_billable_hours,
                rate_cents=0,
                amount_cents=0,
                milestone_id=milestone.id,
            ))
        return items

    # =========================================================================
    # CLOSEOUT
    # =========================================================================

    def create_closeout(self, project_id: UUID) -> Invoice:
        """
        Create a project's closeout invoice from its eligible work.

        The "no outstanding closeout" rule is checked again by the store at
        insert time, so two concurrent closeouts can't both succeed.

        Args:
            project_id: Project UUID

        Returns:
            Draft closeout invoice

        Raises:
            ValueError: If project not found
            AlreadyClosedOutError: If a non-void closeout exists
            NoEligibleWorkError: If nothing under the project is billable
        """
        plan = self.aggregator.build(project_id)
        if plan.is_empty:
            raise NoEligibleWorkError(project_id, "no eligible work to close out")

        items = self._closeout_items(plan)
        invoice = self._new_invoice(
            plan.project.organization_id,
            InvoiceType.CLOSEOUT,
            project_id=project_id,
            amount_cents=plan.amount_cents,
            notes=f"Closeout for {plan.project.label}",
        )
        line_items = self._line_items(invoice.id, items)
        invoice = self.store.create_closeout_invoice(invoice, line_items)

        self._log_created(invoice, line_items)
        for exclusion in plan.excluded:
            logger.info(f"Closeout {invoice.id} excludes {exclusion.milestone.label}: {exclusion.reason}")
        logger.info(
            f"Created closeout invoice {invoice.id} for project {project_id} "
            f"({format_cents(plan.amount_cents)}, {len(plan.eligible)} milestones)"
        )
        self.event_bus.publish(CloseoutInvoiceCreated.create(invoice=invoice, plan=plan))

        return invoice

    @staticmethod
    def _closeout_items(plan: CloseoutPlan) -> list[LineItemCreate]:
        items = []

        if plan.project_work is not None:
            items.append(LineItemCreate(
                line_type=LineItemType.PROJECT_WORK,
                description=f"Project Work - {plan.project.label}",
                quantity=plan.project_work.hours,
                rate_cents=plan.project_work.rate_cents,
                amount_cents=plan.project_work.amount_cents,
            ))

        for line in plan.eligible:
            milestone, resolution = line.milestone, line.resolution
            hourly = resolution.source != FLAT
            items.append(LineItemCreate(
                line_type=LineItemType.PROJECT_DEPOSIT if milestone.is_deposit else LineItemType.PROJECT_MILESTONE,
                description=milestone.label,
                quantity=resolution.hours if hourly else None,
                rate_cents=resolution.rate_cents if hourly else None,
                amount_cents=resolution.amount_cents,
                milestone_id=milestone.id,
            ))

        return items

    # =========================================================================
    # DRAFTS
    # =========================================================================

    def discard_draft(self, invoice_id: UUID) -> None:
        """
        Delete a draft invoice and its line items. Staff only.

        Raises:
            RuntimeError: If no acting staff member is set
            ValueError: If invoice not found
            InvoiceLockedError: If the invoice is no longer a draft
            ConcurrentModificationError: If it was finalized while discarding
        """
        require_actor_id()

        invoice = self.store.get_invoice(invoice_id)
        if invoice is None:
            raise ValueError(f"Invoice {invoice_id} not found")

        if invoice.status != InvoiceStatus.DRAFT:
            raise InvoiceLockedError(invoice_id, invoice.status.value)

        if not self.store.delete_draft_invoice(invoice_id):
            current = self.store.get_invoice(invoice_id)
            raise ConcurrentModificationError(
                invoice_id, InvoiceStatus.DRAFT.value, current.status.value if current else None
            )

        self.audit.log_change(
            entity_type="invoice",
            entity_id=invoice_id,
            action=AuditAction.DELETE,
            changes={"deleted": invoice.model_dump(mode="json")}
        )
        logger.info(f"Discarded draft invoice {invoice_id}")
