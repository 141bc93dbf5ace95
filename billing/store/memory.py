"""
In-process record store.

Thread-safe dict storage behind one re-entrant lock. Each public method holds
the lock for its whole body, which makes every write atomic and every
compare-and-set a true compare-and-set across threads. Records are copied on
the way in and out so callers never share mutable state with the store.
"""

import logging
import threading
from datetime import date
from typing import Any, Iterable
from uuid import UUID

from billing.exceptions import AlreadyClosedOutError
from billing.models import (
    Invoice, InvoiceStatus, InvoiceType, LineItem,
    Milestone, MonthlyReport, Organization, Project, TimeEntry,
)

logger = logging.getLogger(__name__)


class InMemoryBillingStore:
    """
    BillingStore kept in process memory.

    Usage:
        store = InMemoryBillingStore()
        store.save_organization(org)
        invoice = store.get_invoice(invoice_id)
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._organizations: dict[UUID, Organization] = {}
        self._projects: dict[UUID, Project] = {}
        self._milestones: dict[UUID, Milestone] = {}
        self._reports: dict[UUID, MonthlyReport] = {}
        self._time_entries: dict[UUID, TimeEntry] = {}
        self._invoices: dict[UUID, Invoice] = {}
        self._line_items: dict[UUID, LineItem] = {}
        self._audit: list[dict[str, Any]] = []
        self._insert_order: dict[UUID, int] = {}

    # =========================================================================
    # REFERENCE RECORDS
    # =========================================================================

    def get_organization(self, organization_id: UUID) -> Organization | None:
        with self._lock:
            return self._copy(self._organizations.get(organization_id))

    def get_project(self, project_id: UUID) -> Project | None:
        with self._lock:
            return self._copy(self._projects.get(project_id))

    def get_milestone(self, milestone_id: UUID) -> Milestone | None:
        with self._lock:
            return self._copy(self._milestones.get(milestone_id))

    def get_monthly_report(self, report_id: UUID) -> MonthlyReport | None:
        with self._lock:
            return self._copy(self._reports.get(report_id))

    def save_organization(self, organization: Organization) -> Organization:
        with self._lock:
            self._organizations[organization.id] = organization.model_copy(deep=True)
            return organization

    def save_project(self, project: Project) -> Project:
        with self._lock:
            self._projects[project.id] = project.model_copy(deep=True)
            return project

    def save_milestone(self, milestone: Milestone) -> Milestone:
        with self._lock:
            self._milestones[milestone.id] = milestone.model_copy(deep=True)
            return milestone

    def save_monthly_report(self, report: MonthlyReport) -> MonthlyReport:
        with self._lock:
            self._reports[report.id] = report.model_copy(deep=True)
            return report

    def save_time_entry(self, entry: TimeEntry) -> TimeEntry:
        with self._lock:
            self._time_entries[entry.id] = entry.model_copy(deep=True)
            return entry

    def list_milestones_for_project(self, project_id: UUID) -> list[Milestone]:
        with self._lock:
            milestones = [m for m in self._milestones.values() if m.project_id == project_id]
            milestones.sort(key=lambda m: m.milestone_order)
            return [m.model_copy(deep=True) for m in milestones]

    def list_time_entries_for_milestone(self, milestone_id: UUID) -> list[TimeEntry]:
        with self._lock:
            return self._entries_where(lambda e: e.milestone_id == milestone_id)

    def list_time_entries_for_project(self, project_id: UUID) -> list[TimeEntry]:
        with self._lock:
            return self._entries_where(lambda e: e.project_id == project_id)

    def list_time_entries_for_period(
        self, organization_id: UUID, start: date, end: date
    ) -> list[TimeEntry]:
        with self._lock:
            return self._entries_where(
                lambda e: e.organization_id == organization_id and start <= e.entry_date <= end
            )

    # =========================================================================
    # INVOICES
    # =========================================================================

    def get_invoice(self, invoice_id: UUID) -> Invoice | None:
        with self._lock:
            return self._copy(self._invoices.get(invoice_id))

    def list_line_items(self, invoice_id: UUID) -> list[LineItem]:
        with self._lock:
            items = [li for li in self._line_items.values() if li.invoice_id == invoice_id]
            items.sort(key=lambda li: li.display_order)
            return [li.model_copy(deep=True) for li in items]

    def list_invoices_for_milestone(self, milestone_id: UUID) -> list[Invoice]:
        with self._lock:
            via_lines = {
                li.invoice_id for li in self._line_items.values() if li.milestone_id == milestone_id
            }
            return self._invoices_where(
                lambda inv: inv.milestone_id == milestone_id or inv.id in via_lines
            )

    def list_invoices_for_project(
        self, project_id: UUID, invoice_type: InvoiceType | None = None
    ) -> list[Invoice]:
        with self._lock:
            return self._invoices_where(
                lambda inv: inv.project_id == project_id
                and (invoice_type is None or inv.invoice_type == invoice_type)
            )

    def list_invoices_for_report(self, report_id: UUID) -> list[Invoice]:
        with self._lock:
            return self._invoices_where(lambda inv: inv.monthly_report_id == report_id)

    def list_invoices_by_status(self, statuses: Iterable[InvoiceStatus]) -> list[Invoice]:
        wanted = set(statuses)
        with self._lock:
            return self._invoices_where(lambda inv: inv.status in wanted)

    def create_invoice(self, invoice: Invoice, line_items: list[LineItem]) -> Invoice:
        with self._lock:
            return self._insert_invoice(invoice, line_items)

    def create_closeout_invoice(self, invoice: Invoice, line_items: list[LineItem]) -> Invoice:
        with self._lock:
            for existing in self._invoices.values():
                if (
                    existing.project_id == invoice.project_id
                    and existing.invoice_type == InvoiceType.CLOSEOUT
                    and existing.status != InvoiceStatus.VOID
                ):
                    raise AlreadyClosedOutError(invoice.project_id, existing.id)
            return self._insert_invoice(invoice, line_items)

    def compare_and_set_invoice(
        self, invoice_id: UUID, expected_status: InvoiceStatus, updates: dict[str, Any]
    ) -> Invoice | None:
        with self._lock:
            current = self._invoices.get(invoice_id)
            if current is None or current.status != expected_status:
                return None
            updated = current.model_copy(update=updates)
            self._invoices[invoice_id] = updated
            return updated.model_copy(deep=True)

    def update_invoice_document(
        self, invoice_id: UUID, updates: dict[str, Any], statuses: Iterable[InvoiceStatus]
    ) -> Invoice | None:
        unknown = [key for key in updates if not key.startswith("document_") and key != "updated_at"]
        if unknown:
            raise ValueError(f"update_invoice_document cannot set {', '.join(sorted(unknown))}")
        wanted = set(statuses)
        with self._lock:
            current = self._invoices.get(invoice_id)
            if current is None or current.status not in wanted:
                return None
            updated = current.model_copy(update=updates)
            self._invoices[invoice_id] = updated
            return updated.model_copy(deep=True)

    def append_line_item(
        self,
        line_item: LineItem,
        new_amount_cents: int,
        expected_status: InvoiceStatus,
        invoice_updates: dict[str, Any] | None = None,
    ) -> Invoice | None:
        with self._lock:
            current = self._invoices.get(line_item.invoice_id)
            if current is None or current.status != expected_status:
                return None
            updates = {"amount_cents": new_amount_cents, **(invoice_updates or {})}
            updated = current.model_copy(update=updates)
            self._invoices[updated.id] = updated
            self._line_items[line_item.id] = line_item.model_copy(deep=True)
            return updated.model_copy(deep=True)

    def remove_line_item(
        self, line_item_id: UUID, new_amount_cents: int, expected_status: InvoiceStatus
    ) -> Invoice | None:
        with self._lock:
            line_item = self._line_items.get(line_item_id)
            if line_item is None:
                return None
            current = self._invoices.get(line_item.invoice_id)
            if current is None or current.status != expected_status:
                return None
            updated = current.model_copy(update={"amount_cents": new_amount_cents})
            self._invoices[updated.id] = updated
            del self._line_items[line_item_id]
            return updated.model_copy(deep=True)

    def delete_draft_invoice(self, invoice_id: UUID) -> bool:
        with self._lock:
            current = self._invoices.get(invoice_id)
            if current is None or current.status != InvoiceStatus.DRAFT:
                return False
            del self._invoices[invoice_id]
            for line_item_id in [li.id for li in self._line_items.values() if li.invoice_id == invoice_id]:
                del self._line_items[line_item_id]
            return True

    # =========================================================================
    # AUDIT
    # =========================================================================

    def append_audit_entry(self, entry: dict[str, Any]) -> None:
        with self._lock:
            self._audit.append(dict(entry))

    def list_audit_entries(self, entity_type: str, entity_id: UUID) -> list[dict[str, Any]]:
        with self._lock:
            return [
                dict(entry) for entry in reversed(self._audit)
                if entry["entity_type"] == entity_type and entry["entity_id"] == entity_id
            ]

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def _copy(record):
        return None if record is None else record.model_copy(deep=True)

    def _entries_where(self, predicate) -> list[TimeEntry]:
        entries = [e for e in self._time_entries.values() if predicate(e)]
        entries.sort(key=lambda e: e.entry_date)
        return [e.model_copy(deep=True) for e in entries]

    def _invoices_where(self, predicate) -> list[Invoice]:
        invoices = [inv for inv in self._invoices.values() if predicate(inv)]
        invoices.sort(key=lambda inv: (inv.created_at, self._insert_order[inv.id]), reverse=True)
        return [inv.model_copy(deep=True) for inv in invoices]

    def _insert_invoice(self, invoice: Invoice, line_items: list[LineItem]) -> Invoice:
        if invoice.id in self._invoices:
            raise ValueError(f"Invoice {invoice.id} already exists")
        self._invoices[invoice.id] = invoice.model_copy(deep=True)
        self._insert_order[invoice.id] = len(self._insert_order)
        for line_item in line_items:
            self._line_items[line_item.id] = line_item.model_copy(deep=True)
        logger.debug(f"Stored invoice {invoice.id} with {len(line_items)} line items")
        return invoice.model_copy(deep=True)
