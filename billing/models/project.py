"""Project and milestone domain models."""

from uuid import UUID

from pydantic import BaseModel, Field


class Project(BaseModel):
    """A body of client work that milestones and time roll up into."""

    id: UUID
    organization_id: UUID
    name: str = Field(..., min_length=1, max_length=200)
    reference: str | None = Field(None, max_length=50)

    model_config = {"from_attributes": True}

    @property
    def label(self) -> str:
        """Reference-prefixed name for line item descriptions."""
        return f"{self.reference} - {self.name}" if self.reference else self.name


class Milestone(BaseModel):
    """
    A billable chunk of a project.

    A milestone with no fixed amount (or a fixed amount of zero) is hourly:
    its amount comes from the time logged against it.
    """

    id: UUID
    project_id: UUID | None = None  # Required before it can be invoiced
    name: str = Field(..., min_length=1, max_length=200)
    reference: str | None = Field(None, max_length=50)
    fixed_amount_cents: int | None = Field(None, ge=0)
    is_deposit: bool = False
    milestone_order: int = 0

    model_config = {"from_attributes": True}

    @property
    def is_hourly(self) -> bool:
        return not self.fixed_amount_cents or self.fixed_amount_cents <= 0

    @property
    def label(self) -> str:
        return f"{self.reference} - {self.name}" if self.reference else self.name
