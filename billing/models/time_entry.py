"""Time entry domain model.

A time entry links to at most one of service request, project or milestone.
An entry with no link is an orphan and is never billed until reassigned.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


class TimeEntry(BaseModel):
    """A unit of logged work."""

    id: UUID
    organization_id: UUID
    entry_date: date
    hours: Decimal = Field(..., ge=0)
    billable: bool = True
    description: str | None = Field(None, max_length=500)
    service_request_id: UUID | None = None
    project_id: UUID | None = None
    milestone_id: UUID | None = None

    model_config = {"from_attributes": True}

    @model_validator(mode="after")
    def check_single_link(self) -> "TimeEntry":
        """Reject entries linked to more than one parent."""
        links = [self.service_request_id, self.project_id, self.milestone_id]
        if sum(link is not None for link in links) > 1:
            raise ValueError(
                "time entry may link to at most one of service_request_id, project_id, milestone_id"
            )
        return self

    @property
    def is_orphan(self) -> bool:
        return self.service_request_id is None and self.project_id is None and self.milestone_id is None
