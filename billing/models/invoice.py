"""Invoice domain models.

All amounts are stored in cents (integer) to avoid floating point issues.
$10.00 = 1000 cents.
"""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


class InvoiceStatus(str, Enum):
    """
    Invoice lifecycle status.

    OVERDUE is an overlay on PENDING: a stored OVERDUE and a PENDING invoice
    past its due date are the same state for transition purposes.
    """

    DRAFT = "draft"
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"
    VOID = "void"


TERMINAL_STATUSES = frozenset({InvoiceStatus.PAID, InvoiceStatus.VOID})
OPEN_STATUSES = frozenset({InvoiceStatus.PENDING, InvoiceStatus.PARTIAL, InvoiceStatus.OVERDUE})


class InvoiceType(str, Enum):
    """What produced the invoice."""

    STANDARD = "standard"
    MILESTONE = "milestone"
    CLOSEOUT = "closeout"
    DEPOSIT = "deposit"


class DocumentStatus(str, Enum):
    """State of the client-facing invoice document."""

    NOT_REQUESTED = "not_requested"
    PENDING = "pending"
    GENERATED = "generated"
    FAILED = "failed"


class Invoice(BaseModel):
    """Full invoice entity as stored."""

    id: UUID
    organization_id: UUID
    invoice_number: str | None = None  # Assigned on finalize, never reclaimed
    status: InvoiceStatus = InvoiceStatus.DRAFT
    invoice_type: InvoiceType = InvoiceType.STANDARD
    amount_cents: int = 0
    amount_paid_cents: int = Field(0, ge=0)
    late_fee_cents: int = Field(0, ge=0)
    invoice_date: date | None = None
    due_date: date | None = None
    # Source: at most one
    milestone_id: UUID | None = None
    project_id: UUID | None = None
    monthly_report_id: UUID | None = None
    finalized_at: datetime | None = None
    paid_at: datetime | None = None
    voided_at: datetime | None = None
    document_status: DocumentStatus = DocumentStatus.NOT_REQUESTED
    document_location: str | None = None
    document_error: str | None = None
    document_attempts: int = Field(0, ge=0)
    notes: str | None = Field(None, max_length=2000)
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @model_validator(mode="after")
    def check_single_source(self) -> "Invoice":
        sources = [self.milestone_id, self.project_id, self.monthly_report_id]
        if sum(source is not None for source in sources) > 1:
            raise ValueError(
                "invoice may link to at most one of milestone_id, project_id, monthly_report_id"
            )
        return self

    @property
    def balance_cents(self) -> int:
        """
        Remaining amount to be paid in cents.

        Negative means the client over-paid. It is reported as-is, never clamped.
        """
        return self.amount_cents - self.amount_paid_cents

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_closeout(self) -> bool:
        return self.invoice_type == InvoiceType.CLOSEOUT

    def is_past_due(self, today: date) -> bool:
        """Whether the due date has passed on an unsettled invoice."""
        if self.due_date is None or self.is_terminal or self.status == InvoiceStatus.DRAFT:
            return False
        return self.due_date < today
