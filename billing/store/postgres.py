"""
PostgreSQL-backed record store.

Schema lives in schema.sql next to this module. Status changes are
compare-and-set updates (UPDATE ... WHERE id = %s AND status = %s RETURNING *),
so a lost race returns no row instead of overwriting. Multi-statement writes
run inside PostgresClient.transaction().
"""

import logging
from datetime import date
from typing import Any, Iterable
from uuid import UUID

import psycopg2.errors
from psycopg2.extras import Json

from billing.exceptions import AlreadyClosedOutError
from billing.models import (
    Invoice, InvoiceStatus, InvoiceType, LineItem,
    Milestone, MonthlyReport, Organization, Project, TimeEntry,
)
from clients.postgres_client import PostgresClient

logger = logging.getLogger(__name__)

_INVOICE_UPDATABLE_COLUMNS = {
    "invoice_number", "status", "amount_cents", "amount_paid_cents", "late_fee_cents",
    "invoice_date", "due_date", "finalized_at", "paid_at", "voided_at",
    "document_status", "document_location", "document_error", "document_attempts",
    "notes", "updated_at",
}


def _set_clause(updates: dict[str, Any], allowed: set[str]) -> tuple[str, list[Any]]:
    unknown = set(updates) - allowed
    if unknown:
        raise ValueError(f"Cannot update invoice columns: {', '.join(sorted(unknown))}")
    return ", ".join(f"{column} = %s" for column in updates), list(updates.values())


class PostgresBillingStore:
    """
    BillingStore over PostgreSQL.

    Usage:
        store = PostgresBillingStore(PostgresClient(get_database_url()))
    """

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    # =========================================================================
    # REFERENCE RECORDS
    # =========================================================================

    def get_organization(self, organization_id: UUID) -> Organization | None:
        return self._get("organizations", Organization, organization_id)

    def get_project(self, project_id: UUID) -> Project | None:
        return self._get("projects", Project, project_id)

    def get_milestone(self, milestone_id: UUID) -> Milestone | None:
        return self._get("milestones", Milestone, milestone_id)

    def get_monthly_report(self, report_id: UUID) -> MonthlyReport | None:
        return self._get("monthly_reports", MonthlyReport, report_id)

    def save_organization(self, organization: Organization) -> Organization:
        return self._upsert("organizations", organization)

    def save_project(self, project: Project) -> Project:
        return self._upsert("projects", project)

    def save_milestone(self, milestone: Milestone) -> Milestone:
        return self._upsert("milestones", milestone)

    def save_monthly_report(self, report: MonthlyReport) -> MonthlyReport:
        return self._upsert("monthly_reports", report)

    def save_time_entry(self, entry: TimeEntry) -> TimeEntry:
        return self._upsert("time_entries", entry)

    def list_milestones_for_project(self, project_id: UUID) -> list[Milestone]:
        rows = self.postgres.execute(
            "SELECT * FROM milestones WHERE project_id = %s ORDER BY milestone_order ASC",
            (project_id,)
        )
        return [Milestone.model_validate(row) for row in rows]

    def list_time_entries_for_milestone(self, milestone_id: UUID) -> list[TimeEntry]:
        rows = self.postgres.execute(
            "SELECT * FROM time_entries WHERE milestone_id = %s ORDER BY entry_date ASC",
            (milestone_id,)
        )
        return [TimeEntry.model_validate(row) for row in rows]

    def list_time_entries_for_project(self, project_id: UUID) -> list[TimeEntry]:
        rows = self.postgres.execute(
            "SELECT * FROM time_entries WHERE project_id = %s ORDER BY entry_date ASC",
            (project_id,)
        )
        return [TimeEntry.model_validate(row) for row in rows]

    def list_time_entries_for_period(
        self, organization_id: UUID, start: date, end: date
    ) -> list[TimeEntry]:
        rows = self.postgres.execute(
            """
            SELECT * FROM time_entries
            WHERE organization_id = %s AND entry_date BETWEEN %s AND %s
            ORDER BY entry_date ASC
            """,
            (organization_id, start, end)
        )
        return [TimeEntry.model_validate(row) for row in rows]

    # =========================================================================
    # INVOICES
    # =========================================================================

    def get_invoice(self, invoice_id: UUID) -> Invoice | None:
        return self._get("invoices", Invoice, invoice_id)

    def list_line_items(self, invoice_id: UUID) -> list[LineItem]:
        rows = self.postgres.execute(
            "SELECT * FROM invoice_line_items WHERE invoice_id = %s ORDER BY display_order ASC",
            (invoice_id,)
        )
        return [LineItem.model_validate(row) for row in rows]

    def list_invoices_for_milestone(self, milestone_id: UUID) -> list[Invoice]:
        rows = self.postgres.execute(
            """
            SELECT * FROM invoices
            WHERE milestone_id = %s
               OR id IN (SELECT invoice_id FROM invoice_line_items WHERE milestone_id = %s)
            ORDER BY created_at DESC
            """,
            (milestone_id, milestone_id)
        )
        return [Invoice.model_validate(row) for row in rows]

    def list_invoices_for_project(
        self, project_id: UUID, invoice_type: InvoiceType | None = None
    ) -> list[Invoice]:
        if invoice_type is None:
            rows = self.postgres.execute(
                "SELECT * FROM invoices WHERE project_id = %s ORDER BY created_at DESC",
                (project_id,)
            )
        else:
            rows = self.postgres.execute(
                """
                SELECT * FROM invoices
                WHERE project_id = %s AND invoice_type = %s
                ORDER BY created_at DESC
                """,
                (project_id, invoice_type)
            )
        return [Invoice.model_validate(row) for row in rows]

    def list_invoices_for_report(self, report_id: UUID) -> list[Invoice]:
        rows = self.postgres.execute(
            "SELECT * FROM invoices WHERE monthly_report_id = %s ORDER BY created_at DESC",
            (report_id,)
        )
        return [Invoice.model_validate(row) for row in rows]

    def list_invoices_by_status(self, statuses: Iterable[InvoiceStatus]) -> list[Invoice]:
        rows = self.postgres.execute(
            """
            SELECT * FROM invoices
            WHERE status = ANY(%s)
            ORDER BY COALESCE(due_date, created_at::date) ASC
            """,
            ([status.value for status in statuses],)
        )
        return [Invoice.model_validate(row) for row in rows]

    def create_invoice(self, invoice: Invoice, line_items: list[LineItem]) -> Invoice:
        with self.postgres.transaction() as tx:
            row = self._insert(tx, "invoices", invoice)
            for line_item in line_items:
                self._insert(tx, "invoice_line_items", line_item)
        return Invoice.model_validate(row)

    def create_closeout_invoice(self, invoice: Invoice, line_items: list[LineItem]) -> Invoice:
        try:
            with self.postgres.transaction() as tx:
                # Serialize closeouts per project
                tx.execute("SELECT id FROM projects WHERE id = %s FOR UPDATE", (invoice.project_id,))
                existing = tx.execute_single(
                    """
                    SELECT id FROM invoices
                    WHERE project_id = %s AND invoice_type = %s AND status <> %s
                    LIMIT 1
                    """,
                    (invoice.project_id, InvoiceType.CLOSEOUT, InvoiceStatus.VOID)
                )
                if existing is not None:
                    raise AlreadyClosedOutError(invoice.project_id, existing["id"])

                row = self._insert(tx, "invoices", invoice)
                for line_item in line_items:
                    self._insert(tx, "invoice_line_items", line_item)
        except psycopg2.errors.UniqueViolation:
            logger.warning(f"Closeout insert for project {invoice.project_id} lost a race")
            raise AlreadyClosedOutError(invoice.project_id)

        return Invoice.model_validate(row)

    def compare_and_set_invoice(
        self, invoice_id: UUID, expected_status: InvoiceStatus, updates: dict[str, Any]
    ) -> Invoice | None:
        set_sql, params = _set_clause(updates, _INVOICE_UPDATABLE_COLUMNS)
        row = self.postgres.execute_single(
            f"""
            UPDATE invoices
            SET {set_sql}
            WHERE id = %s AND status = %s
            RETURNING *
            """,
            tuple(params + [invoice_id, expected_status])
        )
        return Invoice.model_validate(row) if row else None

    def update_invoice_document(
        self, invoice_id: UUID, updates: dict[str, Any], statuses: Iterable[InvoiceStatus]
    ) -> Invoice | None:
        allowed = {c for c in _INVOICE_UPDATABLE_COLUMNS if c.startswith("document_")} | {"updated_at"}
        set_sql, params = _set_clause(updates, allowed)
        row = self.postgres.execute_single(
            f"UPDATE invoices SET {set_sql} WHERE id = %s AND status = ANY(%s) RETURNING *",
            tuple(params + [invoice_id, [status.value for status in statuses]])
        )
        return Invoice.model_validate(row) if row else None

    def append_line_item(
        self,
        line_item: LineItem,
        new_amount_cents: int,
        expected_status: InvoiceStatus,
        invoice_updates: dict[str, Any] | None = None,
    ) -> Invoice | None:
        updates = {"amount_cents": new_amount_cents, **(invoice_updates or {})}
        set_sql, params = _set_clause(updates, _INVOICE_UPDATABLE_COLUMNS)

        with self.postgres.transaction() as tx:
            row = tx.execute_single(
                f"UPDATE invoices SET {set_sql} WHERE id = %s AND status = %s RETURNING *",
                tuple(params + [line_item.invoice_id, expected_status])
            )
            if row is None:
                return None
            self._insert(tx, "invoice_line_items", line_item)

        return Invoice.model_validate(row)

    def remove_line_item(
        self, line_item_id: UUID, new_amount_cents: int, expected_status: InvoiceStatus
    ) -> Invoice | None:
        with self.postgres.transaction() as tx:
            item = tx.execute_single(
                "SELECT invoice_id FROM invoice_line_items WHERE id = %s",
                (line_item_id,)
            )
            if item is None:
                return None
            row = tx.execute_single(
                """
                UPDATE invoices SET amount_cents = %s
                WHERE id = %s AND status = %s
                RETURNING *
                """,
                (new_amount_cents, item["invoice_id"], expected_status)
            )
            if row is None:
                return None
            tx.execute("DELETE FROM invoice_line_items WHERE id = %s", (line_item_id,))

        return Invoice.model_validate(row)

    def delete_draft_invoice(self, invoice_id: UUID) -> bool:
        # Line items go with the invoice (ON DELETE CASCADE)
        rows = self.postgres.execute(
            "DELETE FROM invoices WHERE id = %s AND status = %s RETURNING id",
            (invoice_id, InvoiceStatus.DRAFT)
        )
        return len(rows) > 0

    # =========================================================================
    # AUDIT
    # =========================================================================

    def append_audit_entry(self, entry: dict[str, Any]) -> None:
        self.postgres.execute(
            """
            INSERT INTO billing_audit_log (id, actor_id, entity_type, entity_id, action, changes, created_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            """,
            (
                entry["id"],
                entry["actor_id"],
                entry["entity_type"],
                entry["entity_id"],
                entry["action"],
                Json(entry["changes"]),
                entry["created_at"],
            )
        )

    def list_audit_entries(self, entity_type: str, entity_id: UUID) -> list[dict[str, Any]]:
        return self.postgres.execute(
            """
            SELECT id, actor_id, entity_type, entity_id, action, changes, created_at
            FROM billing_audit_log
            WHERE entity_type = %s AND entity_id = %s
            ORDER BY created_at DESC
            """,
            (entity_type, entity_id)
        )

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _get(self, table: str, model, record_id: UUID):
        row = self.postgres.execute_single(f"SELECT * FROM {table} WHERE id = %s", (record_id,))
        return None if row is None else model.model_validate(row)

    def _upsert(self, table: str, record):
        data = record.model_dump()
        columns = list(data)
        updates = ", ".join(f"{c} = EXCLUDED.{c}" for c in columns if c != "id")
        row = self.postgres.execute_single(
            f"""
            INSERT INTO {table} ({', '.join(columns)})
            VALUES ({', '.join(['%s'] * len(columns))})
            ON CONFLICT (id) DO UPDATE SET {updates}
            RETURNING *
            """,
            tuple(data.values())
        )
        return type(record).model_validate(row)

    @staticmethod
    def _insert(tx, table: str, record) -> dict[str, Any]:
        data = record.model_dump()
        return tx.execute_single(
            f"""
            INSERT INTO {table} ({', '.join(data)})
            VALUES ({', '.join(['%s'] * len(data))})
            RETURNING *
            """,
            tuple(data.values())
        )
