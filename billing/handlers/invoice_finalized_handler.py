"""
Handler for InvoiceFinalized events.

On finalize, queues generation of the client-facing invoice document. The
handler returns as soon as the job is queued; the finalize never waits on it.
"""

import logging
from typing import Callable

from billing.events import InvoiceFinalized

logger = logging.getLogger(__name__)


def handle_invoice_finalized(dispatcher) -> Callable:
    """
    Factory that returns an InvoiceFinalized handler.

    Args:
        dispatcher: DocumentDispatcher instance

    Returns:
        Handler callable that queues document generation
    """

    def handler(event: InvoiceFinalized):
        invoice = event.invoice
        dispatcher.submit(invoice.id)
        logger.debug(f"Document requested for finalized invoice {invoice.invoice_number}")

    return handler
