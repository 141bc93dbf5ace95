"""Event handlers wired onto the billing event bus."""

from billing.handlers.invoice_finalized_handler import handle_invoice_finalized
from billing.handlers.late_fee_handler import handle_late_fee_applied
