"""Organization (client account) domain model.

All amounts are stored in cents (integer). Fee rates are basis points
(10000 = 100%).
"""

from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field


class Organization(BaseModel):
    """A client account and its billing terms."""

    id: UUID
    name: str = Field(..., min_length=1, max_length=200)
    monthly_free_hours: Decimal = Field(Decimal("0"), ge=0)
    hourly_rate_cents: int | None = Field(None, ge=0)
    monthly_hosting_fee_cents: int = Field(0, ge=0)
    payment_terms_days: int | None = Field(None, ge=0)  # None = engine default
    late_fee_bps: int | None = Field(None, ge=0, le=10000)

    model_config = {"from_attributes": True}

    @property
    def has_rate(self) -> bool:
        return self.hourly_rate_cents is not None
