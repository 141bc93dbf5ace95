"""
Amount resolution for billable work.

A billable with a positive fixed amount bills that amount as-is. Anything else
bills its billable hours at the organization's hourly rate. A missing rate is
an error, never an implicit zero charge.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from billing.config import BillingConfig
from billing.exceptions import MissingRateError, NoEligibleWorkError
from billing.models import Billable
from billing.money import cents_for_hours, sum_hours

logger = logging.getLogger(__name__)

FLAT = "flat"
HOURLY = "hourly"


@dataclass(frozen=True)
class AmountResolution:
    """Resolved amount and how it was reached."""
    amount_cents: int
    source: str  # FLAT or HOURLY
    hours: Decimal = Decimal("0")
    rate_cents: int | None = None
    non_billable_hours: Decimal = Decimal("0")

    @property
    def is_billable(self) -> bool:
        """Zero means "not yet eligible for billing", not "billed for $0"."""
        return self.amount_cents > 0


class AmountResolver:
    """Resolves what a milestone, report or project's own time is worth."""

    def __init__(self, store, config: BillingConfig):
        self.store = store
        self.config = config

    def resolve(self, billable: Billable) -> AmountResolution:
        """
        Resolve the amount for a billable.

        Args:
            billable: Milestone, monthly report or project work with its time entries

        Returns:
            AmountResolution with source "flat" or "hourly"

        Raises:
            MissingRateError: If the billable is hourly and no rate is available
        """
        if not billable.is_hourly:
            return AmountResolution(amount_cents=billable.fixed_amount_cents, source=FLAT)

        quarter_hour = self.config.round_to_quarter_hour
        hours = sum_hours((e for e in billable.time_entries if e.billable), quarter_hour)
        non_billable_hours = sum_hours((e for e in billable.time_entries if not e.billable), quarter_hour)

        rate_cents = self.rate_for(billable)
        amount_cents = cents_for_hours(hours, rate_cents)

        logger.debug(
            f"Resolved {billable.kind.value} {billable.source_id}: "
            f"{hours}h x {rate_cents} = {amount_cents} cents"
        )

        return AmountResolution(
            amount_cents=amount_cents,
            source=HOURLY,
            hours=hours,
            rate_cents=rate_cents,
            non_billable_hours=non_billable_hours,
        )

    def rate_for(self, billable: Billable) -> int:
        """
        Hourly rate in cents for a billable's organization.

        Falls back to the configured default rate. Never falls back to zero.

        Raises:
            MissingRateError: If neither the organization nor the config has a rate
        """
        organization = self.store.get_organization(billable.organization_id)
        if organization is None:
            raise MissingRateError(billable.kind.value, billable.source_id)

        if organization.hourly_rate_cents is not None:
            return organization.hourly_rate_cents

        if self.config.default_hourly_rate_cents is not None:
            return self.config.default_hourly_rate_cents

        raise MissingRateError(billable.kind.value, billable.source_id)

    def milestone_billable(self, milestone_id: UUID) -> Billable:
        """
        Load a milestone and its time entries as a Billable.

        Raises:
            ValueError: If the milestone or its project doesn't exist
            NoEligibleWorkError: If the milestone is not attached to a project
        """
        milestone = self.store.get_milestone(milestone_id)
        if milestone is None:
            raise ValueError(f"Milestone {milestone_id} not found")

        if milestone.project_id is None:
            raise NoEligibleWorkError(milestone_id, "milestone is not linked to a project")

        project = self.store.get_project(milestone.project_id)
        if project is None:
            raise ValueError(f"Project {milestone.project_id} not found")

        entries = self.store.list_time_entries_for_milestone(milestone_id)
        return Billable.for_milestone(milestone, project, entries)

    def resolve_milestone(self, milestone_id: UUID) -> AmountResolution:
        """Resolve a stored milestone by ID."""
        return self.resolve(self.milestone_billable(milestone_id))
