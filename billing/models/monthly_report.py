"""Monthly report domain model.

A report is a recurring billing period. Its overage is always derived from the
time entries in the period, never stored.
"""

import calendar
from datetime import date
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


class MonthlyReport(BaseModel):
    """A recurring billing period for an organization."""

    id: UUID
    organization_id: UUID
    period_label: str = Field(..., min_length=1, max_length=50)
    period_start: date
    period_end: date

    model_config = {"from_attributes": True}

    @model_validator(mode="after")
    def check_period(self) -> "MonthlyReport":
        if self.period_end < self.period_start:
            raise ValueError("period_end must not be before period_start")
        return self

    @classmethod
    def for_month(cls, id: UUID, organization_id: UUID, year: int, month: int) -> "MonthlyReport":
        """Report covering one calendar month, labelled like 'March 2025'."""
        last_day = calendar.monthrange(year, month)[1]
        return cls(
            id=id,
            organization_id=organization_id,
            period_label=f"{calendar.month_name[month]} {year}",
            period_start=date(year, month, 1),
            period_end=date(year, month, last_day),
        )

    def covers(self, day: date) -> bool:
        return self.period_start <= day <= self.period_end
