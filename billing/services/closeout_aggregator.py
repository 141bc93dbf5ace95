"""
Project closeout classification.

Walks every milestone under a project, plus time logged directly against the
project, and sorts it into what a closeout invoice would bill and what it
would leave out (with the reason). Classification never writes anything;
creating the invoice is a separate step.
"""

import logging
from dataclasses import dataclass, field
from uuid import UUID

from billing.exceptions import AlreadyClosedOutError, MissingRateError
from billing.models import (
    Billable, Invoice, InvoiceStatus, InvoiceType, Milestone, OPEN_STATUSES, Project,
)
from billing.services.amount_resolver import AmountResolution, AmountResolver

logger = logging.getLogger(__name__)

ALREADY_INVOICED = "already invoiced"
DRAFT_EXISTS = "draft exists — unapproved time"
NO_BILLABLE_AMOUNT = "no billable amount"
MISSING_RATE = "no hourly rate"

_BILLED_STATUSES = OPEN_STATUSES | {InvoiceStatus.PAID}


@dataclass(frozen=True)
class CloseoutLine:
    milestone: Milestone
    resolution: AmountResolution


@dataclass(frozen=True)
class CloseoutExclusion:
    milestone: Milestone
    reason: str
    invoice_id: UUID | None = None


@dataclass(frozen=True)
class CloseoutPlan:
    """What a closeout invoice for a project would contain."""
    project: Project
    eligible: list[CloseoutLine] = field(default_factory=list)
    excluded: list[CloseoutExclusion] = field(default_factory=list)
    project_work: AmountResolution | None = None

    @property
    def eligible_milestones(self) -> list[Milestone]:
        return [line.milestone for line in self.eligible]

    @property
    def amount_cents(self) -> int:
        total = sum(line.resolution.amount_cents for line in self.eligible)
        if self.project_work is not None:
            total += self.project_work.amount_cents
        return total

    @property
    def is_empty(self) -> bool:
        return self.amount_cents <= 0


class CloseoutAggregator:
    """Classifies a project's unbilled work for a closeout invoice."""

    def __init__(self, store, resolver: AmountResolver):
        self.store = store
        self.resolver = resolver

    def outstanding_closeout(self, project_id: UUID) -> Invoice | None:
        """The project's non-void closeout invoice, if any."""
        closeouts = self.store.list_invoices_for_project(project_id, InvoiceType.CLOSEOUT)
        return next((inv for inv in closeouts if inv.status != InvoiceStatus.VOID), None)

    def build(self, project_id: UUID) -> CloseoutPlan:
        """
        Classify a project's work for closeout.

        Args:
            project_id: Project UUID

        Returns:
            CloseoutPlan with eligible milestones, exclusions and project-level work

        Raises:
            ValueError: If project not found
            AlreadyClosedOutError: If the project already has a non-void closeout invoice
        """
        project = self.store.get_project(project_id)
        if project is None:
            raise ValueError(f"Project {project_id} not found")

        outstanding = self.outstanding_closeout(project_id)
        if outstanding is not None:
            raise AlreadyClosedOutError(project_id, outstanding.id)

        eligible: list[CloseoutLine] = []
        excluded: list[CloseoutExclusion] = []

        for milestone in self.store.list_milestones_for_project(project_id):
            outcome = self._classify(milestone, project)
            if isinstance(outcome, CloseoutExclusion):
                excluded.append(outcome)
            else:
                eligible.append(outcome)

        project_work = self._project_work(project)

        plan = CloseoutPlan(
            project=project,
            eligible=eligible,
            excluded=excluded,
            project_work=project_work,
        )

        logger.info(
            f"Closeout plan for project {project_id}: {len(eligible)} eligible, "
            f"{len(excluded)} excluded, {plan.amount_cents} cents"
        )

        return plan

    def _classify(self, milestone: Milestone, project: Project) -> CloseoutLine | CloseoutExclusion:
        invoices = [
            inv for inv in self.store.list_invoices_for_milestone(milestone.id)
            if inv.status != InvoiceStatus.VOID
        ]

        billed = next((inv for inv in invoices if inv.status in _BILLED_STATUSES), None)
        if billed is not None:
            return CloseoutExclusion(milestone, ALREADY_INVOICED, billed.id)

        draft = next((inv for inv in invoices if inv.status == InvoiceStatus.DRAFT), None)
        if draft is not None:
            return CloseoutExclusion(milestone, DRAFT_EXISTS, draft.id)

        entries = self.store.list_time_entries_for_milestone(milestone.id)
        try:
            resolution = self.resolver.resolve(Billable.for_milestone(milestone, project, entries))
        except MissingRateError:
            logger.warning(f"Milestone {milestone.id} left out of closeout: no hourly rate")
            return CloseoutExclusion(milestone, MISSING_RATE)

        if not resolution.is_billable:
            return CloseoutExclusion(milestone, NO_BILLABLE_AMOUNT)

        return CloseoutLine(milestone, resolution)

    def _project_work(self, project: Project) -> AmountResolution | None:
        entries = self.store.list_time_entries_for_project(project.id)
        if not entries:
            return None

        try:
            resolution = self.resolver.resolve(Billable.for_project_work(project, entries))
        except MissingRateError:
            logger.warning(f"Project work for {project.id} left out of closeout: no hourly rate")
            return None

        return resolution if resolution.is_billable else None
