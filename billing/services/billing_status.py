"""
Billing status projection for milestones and monthly reports.

Billing status is never stored. It is read off the newest linked invoice each
time, so it cannot drift from the invoices themselves. A void invoice counts
as no invoice.
"""

from uuid import UUID

from billing.models import BillingStatus, Invoice, InvoiceStatus


def project_status(invoice_status: InvoiceStatus | None, is_deposit: bool = False) -> BillingStatus:
    """
    Display billing status from the linked invoice's status.

    Args:
        invoice_status: Status of the linked invoice, None if there is none
        is_deposit: Whether the billable is a deposit milestone

    Returns:
        Pending, Invoiced, Invoiced as Deposit or Paid
    """
    if invoice_status is None or invoice_status == InvoiceStatus.VOID:
        return BillingStatus.PENDING

    if invoice_status == InvoiceStatus.PAID:
        return BillingStatus.PAID

    if is_deposit:
        return BillingStatus.INVOICED_AS_DEPOSIT

    return BillingStatus.INVOICED


def current_invoice(invoices: list[Invoice]) -> Invoice | None:
    """Newest non-void invoice from a newest-first list."""
    return next((inv for inv in invoices if inv.status != InvoiceStatus.VOID), None)


class BillingStatusProjector:
    """Looks up linked invoices and projects billing status from them."""

    def __init__(self, store):
        self.store = store

    def milestone_status(self, milestone_id: UUID) -> BillingStatus:
        milestone = self.store.get_milestone(milestone_id)
        if milestone is None:
            raise ValueError(f"Milestone {milestone_id} not found")

        invoice = current_invoice(self.store.list_invoices_for_milestone(milestone_id))
        return project_status(invoice.status if invoice else None, milestone.is_deposit)

    def report_status(self, report_id: UUID) -> BillingStatus:
        report = self.store.get_monthly_report(report_id)
        if report is None:
            raise ValueError(f"Monthly report {report_id} not found")

        invoice = current_invoice(self.store.list_invoices_for_report(report_id))
        return project_status(invoice.status if invoice else None)
