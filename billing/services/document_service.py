"""
Client-facing invoice documents.

Generation is requested after finalize and runs on a background thread pool.
It never holds up or rolls back the status change that triggered it: failures
are recorded on the invoice (document_status = failed) and can be retried.
Regenerating overwrites the previous document, so retries are safe.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Protocol
from uuid import UUID

from billing.audit import AuditAction, AuditLogger
from billing.models import DocumentStatus, Invoice, InvoiceStatus, OPEN_STATUSES
from clients.document_client import DocumentGenerationError
from utils.clock import Clock

logger = logging.getLogger(__name__)

_DOCUMENT_STATUSES = OPEN_STATUSES | {InvoiceStatus.PAID}


class DocumentGenerator(Protocol):
    """Renders an invoice document and returns where it was stored."""

    def generate_document(self, invoice_id: UUID) -> str: ...


class DocumentService:
    """Generates invoice documents and records the outcome on the invoice."""

    def __init__(self, store, generator: DocumentGenerator, audit: AuditLogger, clock: Clock):
        self.store = store
        self.generator = generator
        self.audit = audit
        self.clock = clock

    def generate(self, invoice_id: UUID) -> Invoice | None:
        """
        Generate (or regenerate) the document for an invoice.

        Never raises for generation failures. The outcome is written to the
        invoice's document_* fields.

        Returns:
            Updated invoice, or None if the invoice no longer exists or was
            reverted to draft or voided while the document was generated
        """
        invoice = self.store.get_invoice(invoice_id)
        if invoice is None:
            logger.warning(f"Document requested for missing invoice {invoice_id}")
            return None

        if invoice.status not in _DOCUMENT_STATUSES:
            logger.info(f"Skipping document for invoice {invoice_id} in status {invoice.status.value}")
            return invoice

        attempts = invoice.document_attempts + 1

        try:
            location = self.generator.generate_document(invoice_id)
        except DocumentGenerationError as e:
            logger.error(f"Document generation failed for invoice {invoice_id} (attempt {attempts}): {e}")
            return self._record(invoice, {
                "document_status": DocumentStatus.FAILED,
                "document_error": str(e),
                "document_attempts": attempts,
            })
        except Exception as e:
            logger.exception(f"Unexpected error generating document for invoice {invoice_id}")
            return self._record(invoice, {
                "document_status": DocumentStatus.FAILED,
                "document_error": f"{type(e).__name__}: {e}",
                "document_attempts": attempts,
            })

        return self._record(invoice, {
            "document_status": DocumentStatus.GENERATED,
            "document_location": location,
            "document_error": None,
            "document_attempts": attempts,
        })

    def retry(self, invoice_id: UUID) -> Invoice | None:
        """
        Retry a failed generation. A document that already exists is left alone.

        Returns:
            Updated invoice, or None if the invoice doesn't exist
        """
        invoice = self.store.get_invoice(invoice_id)
        if invoice is None:
            return None

        if invoice.document_status == DocumentStatus.GENERATED:
            logger.debug(f"Document for invoice {invoice_id} already generated")
            return invoice

        return self.generate(invoice_id)

    def failed_invoices(self) -> list[Invoice]:
        """Issued invoices whose last document generation failed."""
        return [
            inv for inv in self.store.list_invoices_by_status(_DOCUMENT_STATUSES)
            if inv.document_status == DocumentStatus.FAILED
        ]

    def retry_failed(self) -> list[Invoice]:
        """Retry every failed document. Returns the invoices after the attempt."""
        results = []
        for invoice in self.failed_invoices():
            updated = self.retry(invoice.id)
            if updated is not None:
                results.append(updated)
        return results

    def _record(self, invoice: Invoice, updates: dict) -> Invoice | None:
        updated = self.store.update_invoice_document(
            invoice.id, {**updates, "updated_at": self.clock.now()}, _DOCUMENT_STATUSES
        )
        if updated is None:
            logger.warning(
                f"Document outcome for invoice {invoice.id} discarded: "
                f"invoice left {invoice.status.value} while the document was generated"
            )
            return None

        self.audit.log_change(
            entity_type="invoice",
            entity_id=invoice.id,
            action=AuditAction.UPDATE,
            changes={
                "document_status": {
                    "old": invoice.document_status.value,
                    "new": updated.document_status.value,
                },
                "document_attempts": {
                    "old": invoice.document_attempts,
                    "new": updated.document_attempts,
                },
            }
        )

        return updated


class DocumentDispatcher:
    """
    Fire-and-forget document generation on a thread pool.

    Usage:
        dispatcher = DocumentDispatcher(document_service, max_workers=2)
        dispatcher.submit(invoice.id)
        ...
        dispatcher.shutdown()
    """

    def __init__(self, service: DocumentService, max_workers: int = 2):
        self.service = service
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="invoice-documents")
        self._lock = threading.Lock()
        self._pending: set[Future] = set()

    def submit(self, invoice_id: UUID) -> Future:
        """Queue document generation for an invoice and return immediately."""
        future = self._executor.submit(self.service.generate, invoice_id)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._discard)
        logger.debug(f"Queued document generation for invoice {invoice_id}")
        return future

    def _discard(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def wait_all(self, timeout: float | None = None) -> None:
        """Block until every queued generation has finished."""
        with self._lock:
            pending = list(self._pending)
        wait(pending, timeout=timeout)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
