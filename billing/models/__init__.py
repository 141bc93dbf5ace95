"""Billing domain models."""

from billing.models.organization import Organization
from billing.models.project import Project, Milestone
from billing.models.time_entry import TimeEntry
from billing.models.monthly_report import MonthlyReport
from billing.models.invoice import (
    Invoice, InvoiceStatus, InvoiceType, DocumentStatus,
    OPEN_STATUSES, TERMINAL_STATUSES,
)
from billing.models.line_item import LineItem, LineItemCreate, LineItemType
from billing.models.billable import Billable, BillableKind, BillingStatus

__all__ = [
    # Organization
    "Organization",
    # Project
    "Project", "Milestone",
    # Time
    "TimeEntry",
    # MonthlyReport
    "MonthlyReport",
    # Invoice
    "Invoice", "InvoiceStatus", "InvoiceType", "DocumentStatus",
    "OPEN_STATUSES", "TERMINAL_STATUSES",
    # LineItem
    "LineItem", "LineItemCreate", "LineItemType",
    # Billable
    "Billable", "BillableKind", "BillingStatus",
]
