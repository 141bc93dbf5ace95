"""Line item domain models.

Amounts are signed cents: charges are positive, credits negative.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from billing.money import cents_for_hours


class LineItemType(str, Enum):
    """Type tag for a line item."""

    HOSTING_FEE = "hosting_fee"
    SUPPORT = "support"
    FREE_HOURS_CREDIT = "free_hours_credit"
    NON_BILLABLE = "non_billable"
    PROJECT_MILESTONE = "project_milestone"
    PROJECT_DEPOSIT = "project_deposit"
    PROJECT_WORK = "project_work"
    LATE_FEE = "late_fee"
    CREDIT = "credit"
    ADJUSTMENT = "adjustment"


class LineItemCreate(BaseModel):
    """Data required to add a line item to a draft invoice."""

    line_type: LineItemType
    description: str = Field(..., min_length=1, max_length=500)
    quantity: Decimal | None = Field(None, ge=0)
    rate_cents: int | None = None  # Negative for per-unit credits
    amount_cents: int | None = None
    milestone_id: UUID | None = None

    @model_validator(mode="after")
    def compute_amount_if_missing(self) -> "LineItemCreate":
        """Compute amount_cents from quantity * rate_cents if not provided."""
        if self.amount_cents is None:
            if self.quantity is None or self.rate_cents is None:
                raise ValueError("amount_cents is required unless quantity and rate_cents are given")
            self.amount_cents = cents_for_hours(self.quantity, self.rate_cents)
        return self


class LineItem(BaseModel):
    """Full line item entity as stored."""

    id: UUID
    invoice_id: UUID
    line_type: LineItemType
    description: str
    quantity: Decimal | None
    rate_cents: int | None
    amount_cents: int
    milestone_id: UUID | None = None
    display_order: int = 0
    created_at: datetime

    model_config = {"from_attributes": True}

    @property
    def is_credit(self) -> bool:
        return self.amount_cents < 0
