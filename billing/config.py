"""Billing engine configuration."""

from pydantic import BaseModel, Field


class BillingConfig(BaseModel):
    """
    Billing engine configuration.

    Money is in cents, fee percentages in basis points (10000 = 100%).
    Organization-level settings override the defaults here where both exist.
    """

    # Rates
    default_hourly_rate_cents: int | None = Field(
        default=None,
        description="Fallback rate for hourly billables; None disables the fallback",
        ge=0,
    )
    round_to_quarter_hour: bool = Field(
        default=True,
        description="Round each time entry up to the next quarter hour before summing",
    )

    # Terms
    payment_terms_days: int = Field(
        default=5,
        description="Days between finalize date and due date",
        ge=0,
        le=120,
    )
    late_fee_grace_days: int = Field(
        default=7,
        description="Days past due before a late fee applies",
        ge=0,
        le=90,
    )
    late_fee_bps: int = Field(
        default=500,  # 5%
        description="Late fee as basis points of the outstanding balance",
        ge=0,
        le=10000,
    )

    # Numbering
    invoice_number_prefix: str = Field(
        default="INV",
        description="Prefix for PREFIX-YYMM-NNN invoice numbers",
        min_length=1,
        max_length=10,
        pattern=r"^[A-Z0-9]+$",
    )

    # Documents
    document_workers: int = Field(
        default=2,
        description="Thread pool size for background document generation",
        ge=1,
        le=16,
    )
