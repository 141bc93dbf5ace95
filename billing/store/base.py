"""
Record store interface for the billing engine.

The engine reads and writes records only through this interface. Every write
method is one atomic unit: it either fully commits or changes nothing.
Status writes go through compare_and_set_invoice so that two requests racing
on the same invoice cannot both win.
"""

from datetime import date
from typing import Any, Iterable, Protocol
from uuid import UUID

from billing.models import (
    Invoice, InvoiceStatus, InvoiceType, LineItem,
    Milestone, MonthlyReport, Organization, Project, TimeEntry,
)


class BillingStore(Protocol):
    """Persistence operations the billing engine depends on."""

    # -- reference records -------------------------------------------------

    def get_organization(self, organization_id: UUID) -> Organization | None: ...

    def get_project(self, project_id: UUID) -> Project | None: ...

    def get_milestone(self, milestone_id: UUID) -> Milestone | None: ...

    def get_monthly_report(self, report_id: UUID) -> MonthlyReport | None: ...

    def save_organization(self, organization: Organization) -> Organization: ...

    def save_project(self, project: Project) -> Project: ...

    def save_milestone(self, milestone: Milestone) -> Milestone: ...

    def save_monthly_report(self, report: MonthlyReport) -> MonthlyReport: ...

    def save_time_entry(self, entry: TimeEntry) -> TimeEntry: ...

    def list_milestones_for_project(self, project_id: UUID) -> list[Milestone]:
        """Milestones ordered by milestone_order."""
        ...

    def list_time_entries_for_milestone(self, milestone_id: UUID) -> list[TimeEntry]: ...

    def list_time_entries_for_project(self, project_id: UUID) -> list[TimeEntry]:
        """Entries linked directly to the project (not through a milestone)."""
        ...

    def list_time_entries_for_period(
        self, organization_id: UUID, start: date, end: date
    ) -> list[TimeEntry]:
        """All of an organization's entries dated within [start, end]."""
        ...

    # -- invoices ------------------------------------------------------------

    def get_invoice(self, invoice_id: UUID) -> Invoice | None: ...

    def list_line_items(self, invoice_id: UUID) -> list[LineItem]:
        """Line items ordered by display_order."""
        ...

    def list_invoices_for_milestone(self, milestone_id: UUID) -> list[Invoice]:
        """Invoices sourced from the milestone or carrying a line for it, newest first."""
        ...

    def list_invoices_for_project(
        self, project_id: UUID, invoice_type: InvoiceType | None = None
    ) -> list[Invoice]: ...

    def list_invoices_for_report(self, report_id: UUID) -> list[Invoice]: ...

    def list_invoices_by_status(self, statuses: Iterable[InvoiceStatus]) -> list[Invoice]: ...

    def create_invoice(self, invoice: Invoice, line_items: list[LineItem]) -> Invoice:
        """Insert an invoice together with its line items."""
        ...

    def create_closeout_invoice(self, invoice: Invoice, line_items: list[LineItem]) -> Invoice:
        """
        Insert a closeout invoice together with its line items.

        Raises AlreadyClosedOutError if the project already has a non-void
        closeout, checked inside the same atomic step as the insert.
        """
        ...

    def compare_and_set_invoice(
        self, invoice_id: UUID, expected_status: InvoiceStatus, updates: dict[str, Any]
    ) -> Invoice | None:
        """
        Apply updates only if the stored status equals expected_status.

        Returns the updated invoice, or None if the status had moved (or the
        invoice does not exist).
        """
        ...

    def update_invoice_document(
        self, invoice_id: UUID, updates: dict[str, Any], statuses: Iterable[InvoiceStatus]
    ) -> Invoice | None:
        """
        Update document_* fields only. Never touches status or amounts.

        Returns None without writing unless the invoice status is one of statuses.
        """
        ...

    def append_line_item(
        self,
        line_item: LineItem,
        new_amount_cents: int,
        expected_status: InvoiceStatus,
        invoice_updates: dict[str, Any] | None = None,
    ) -> Invoice | None:
        """
        Insert a line item and set the invoice amount in one step.

        Returns None without writing if the invoice status is no longer
        expected_status.
        """
        ...

    def remove_line_item(
        self, line_item_id: UUID, new_amount_cents: int, expected_status: InvoiceStatus
    ) -> Invoice | None: ...

    def delete_draft_invoice(self, invoice_id: UUID) -> bool:
        """Delete an invoice and its line items, only while it is a draft."""
        ...

    # -- audit ---------------------------------------------------------------

    def append_audit_entry(self, entry: dict[str, Any]) -> None: ...

    def list_audit_entries(self, entity_type: str, entity_id: UUID) -> list[dict[str, Any]]:
        """Audit entries for an entity, newest first."""
        ...
