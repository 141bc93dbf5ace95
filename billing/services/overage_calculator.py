"""
Monthly overage: support hours beyond an organization's free allowance.

Always derived from the time entries in the period, never stored on the report,
because entries stay editable until the period is invoiced.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from billing.config import BillingConfig
from billing.models import MonthlyReport, TimeEntry
from billing.money import cents_for_hours, sum_hours

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OverageResult:
    billable_hours: Decimal
    non_billable_hours: Decimal
    free_hours: Decimal
    overage_hours: Decimal
    rate_cents: int | None
    amount_cents: int
    rate_missing: bool = False

    @property
    def total_hours(self) -> Decimal:
        return self.billable_hours + self.non_billable_hours

    @property
    def free_hours_used(self) -> Decimal:
        return min(self.billable_hours, self.free_hours)


class OverageCalculator:
    """Computes a monthly report's overage from its period's support time."""

    def __init__(self, store, config: BillingConfig):
        self.store = store
        self.config = config

    def support_entries(self, report: MonthlyReport) -> list[TimeEntry]:
        """
        Support time for a report: the organization's entries in the period that
        are linked to a service request. Project, milestone and orphan time is
        billed elsewhere or not at all.
        """
        entries = self.store.list_time_entries_for_period(
            report.organization_id, report.period_start, report.period_end
        )
        return [e for e in entries if e.service_request_id is not None]

    def compute(self, report: MonthlyReport) -> OverageResult:
        """
        Compute overage for a report.

        Args:
            report: Monthly report defining organization and period

        Returns:
            OverageResult. When the organization has no hourly rate the amount
            is zero and rate_missing is set, rather than charging a guessed rate.

        Raises:
            ValueError: If the organization doesn't exist
        """
        organization = self.store.get_organization(report.organization_id)
        if organization is None:
            raise ValueError(f"Organization {report.organization_id} not found")

        entries = self.support_entries(report)
        quarter_hour = self.config.round_to_quarter_hour
        billable_hours = sum_hours((e for e in entries if e.billable), quarter_hour)
        non_billable_hours = sum_hours((e for e in entries if not e.billable), quarter_hour)

        free_hours = organization.monthly_free_hours
        overage_hours = max(Decimal("0"), billable_hours - free_hours)

        rate_cents = organization.hourly_rate_cents
        if rate_cents is None:
            if overage_hours > 0:
                logger.warning(
                    f"Organization {organization.id} has {overage_hours}h overage "
                    f"for {report.period_label} but no hourly rate"
                )
            return OverageResult(
                billable_hours=billable_hours,
                non_billable_hours=non_billable_hours,
                free_hours=free_hours,
                overage_hours=overage_hours,
                rate_cents=None,
                amount_cents=0,
                rate_missing=True,
            )

        return OverageResult(
            billable_hours=billable_hours,
            non_billable_hours=non_billable_hours,
            free_hours=free_hours,
            overage_hours=overage_hours,
            rate_cents=rate_cents,
            amount_cents=cents_for_hours(overage_hours, rate_cents),
        )

    def compute_for_report(self, report_id: UUID) -> OverageResult:
        """Compute overage for a stored report by ID."""
        report = self.store.get_monthly_report(report_id)
        if report is None:
            raise ValueError(f"Monthly report {report_id} not found")
        return self.compute(report)
