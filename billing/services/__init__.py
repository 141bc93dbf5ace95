"""Billing engine services, one per component."""

from billing.services.amount_resolver import AmountResolution, AmountResolver
from billing.services.overage_calculator import OverageCalculator, OverageResult
from billing.services.ledger import InvoiceLedger
from billing.services.numbering import (
    SequenceNumberingAuthority,
    ValkeyNumberingAuthority,
    format_invoice_number,
    parse_invoice_number,
)
from billing.services.invoice_state_machine import InvoiceStateMachine
from billing.services.closeout_aggregator import CloseoutAggregator, CloseoutPlan
from billing.services.billing_status import BillingStatusProjector, project_status
from billing.services.document_service import DocumentDispatcher, DocumentService
from billing.services.invoice_generator import InvoiceGenerator
from billing.services.billing_sweep import BillingSweep, SweepResult
