"""
Handler for LateFeeApplied events.

A late fee adds a line to an issued invoice, so the client document is
regenerated to show it.
"""

from typing import Callable

from billing.events import LateFeeApplied


def handle_late_fee_applied(dispatcher) -> Callable:
    """
    Factory that returns a LateFeeApplied handler.

    Args:
        dispatcher: DocumentDispatcher instance

    Returns:
        Handler callable that queues document regeneration
    """

    def handler(event: LateFeeApplied):
        dispatcher.submit(event.invoice.id)

    return handler
