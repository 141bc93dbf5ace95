"""Billable: the common shape of anything an amount can be resolved for.

Milestones, monthly reports and a project's own unassigned time all bill the
same way: a fixed amount if one is set, otherwise billable hours times the
organization's rate. Billable is the explicit tagged variant over those sources.
"""

from enum import Enum
from uuid import UUID

from pydantic import BaseModel

from billing.models.monthly_report import MonthlyReport
from billing.models.project import Milestone, Project
from billing.models.time_entry import TimeEntry


class BillableKind(str, Enum):
    MILESTONE = "milestone"
    MONTHLY_REPORT = "monthly_report"
    PROJECT_WORK = "project_work"


class BillingStatus(str, Enum):
    """Display billing status of a milestone or report. Always derived."""

    PENDING = "Pending"
    INVOICED = "Invoiced"
    INVOICED_AS_DEPOSIT = "Invoiced as Deposit"
    PAID = "Paid"


class Billable(BaseModel):
    """A billable unit of work with the time linked to it."""

    kind: BillableKind
    source_id: UUID
    organization_id: UUID
    fixed_amount_cents: int | None = None
    is_deposit: bool = False
    time_entries: list[TimeEntry] = []

    model_config = {"frozen": True}

    @property
    def is_hourly(self) -> bool:
        return not self.fixed_amount_cents or self.fixed_amount_cents <= 0

    @classmethod
    def for_milestone(cls, milestone: Milestone, project: Project, entries: list[TimeEntry]) -> "Billable":
        return cls(
            kind=BillableKind.MILESTONE,
            source_id=milestone.id,
            organization_id=project.organization_id,
            fixed_amount_cents=milestone.fixed_amount_cents,
            is_deposit=milestone.is_deposit,
            time_entries=entries,
        )

    @classmethod
    def for_monthly_report(cls, report: MonthlyReport, entries: list[TimeEntry]) -> "Billable":
        return cls(
            kind=BillableKind.MONTHLY_REPORT,
            source_id=report.id,
            organization_id=report.organization_id,
            time_entries=entries,
        )

    @classmethod
    def for_project_work(cls, project: Project, entries: list[TimeEntry]) -> "Billable":
        """Time logged directly against a project rather than a milestone."""
        return cls(
            kind=BillableKind.PROJECT_WORK,
            source_id=project.id,
            organization_id=project.organization_id,
            time_entries=entries,
        )
