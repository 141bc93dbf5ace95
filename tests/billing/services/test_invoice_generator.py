"""Tests for InvoiceGenerator: monthly, milestone and closeout invoices."""

from decimal import Decimal
from uuid import uuid4

import pytest

from billing.events import CloseoutInvoiceCreated, InvoiceCreated
from billing.exceptions import (
    AlreadyClosedOutError, DuplicateInvoiceError, InvoiceLockedError,
    MissingRateError, NoEligibleWorkError,
)
from billing.models import (
    InvoiceStatus, InvoiceType, LineItemType, Milestone, MonthlyReport, Organization,
)


class TestMonthlyReport:
    def test_lines(self, engine, march_report, make_time_entry):
        """$25 hosting, 5h support at $50/h, 2 free hours credited, 1h non-billable shown."""
        request_id = uuid4()
        make_time_entry("5", service_request_id=request_id)
        make_time_entry("1", billable=False, service_request_id=request_id)

        invoice = engine.invoice_from_monthly_report(march_report.id)
        lines = engine.ledger.line_items(invoice.id)

        assert [line.line_type for line in lines] == [
            LineItemType.HOSTING_FEE, LineItemType.SUPPORT,
            LineItemType.FREE_HOURS_CREDIT, LineItemType.NON_BILLABLE,
        ]
        assert [line.amount_cents for line in lines] == [2500, 25000, -10000, 0]
        assert lines[0].description == "Monthly hosting - March 2025"
        assert lines[1].quantity == Decimal("5")
        assert lines[2].description == "Included support (2 hrs/month)"
        assert invoice.amount_cents == 17500
        assert invoice.status == InvoiceStatus.DRAFT
        assert invoice.invoice_type == InvoiceType.STANDARD
        assert invoice.monthly_report_id == march_report.id

    def test_free_hours_cover_everything(self, engine, march_report, make_time_entry):
        """Only hosting is charged when support stays inside the allowance."""
        make_time_entry("1.5", service_request_id=uuid4())

        invoice = engine.invoice_from_monthly_report(march_report.id)

        assert invoice.amount_cents == 2500

    def test_hosting_only(self, engine, march_report):
        invoice = engine.invoice_from_monthly_report(march_report.id)

        assert [line.line_type for line in engine.ledger.line_items(invoice.id)] == [LineItemType.HOSTING_FEE]

    def test_nothing_chargeable(self, engine, store, organization, march_report):
        store.save_organization(organization.model_copy(update={"monthly_hosting_fee_cents": 0}))

        with pytest.raises(NoEligibleWorkError, match="nothing chargeable"):
            engine.invoice_from_monthly_report(march_report.id)

    def test_missing_rate(self, engine, store, make_time_entry):
        organization = store.save_organization(Organization(id=uuid4(), name="No Rate Ltd"))
        report = store.save_monthly_report(MonthlyReport.for_month(uuid4(), organization.id, 2025, 3))
        make_time_entry("1", organization_id=organization.id, service_request_id=uuid4())

        with pytest.raises(MissingRateError):
            engine.invoice_from_monthly_report(report.id)

    def test_duplicate(self, engine, march_report):
        first = engine.invoice_from_monthly_report(march_report.id)

        with pytest.raises(DuplicateInvoiceError) as exc_info:
            engine.invoice_from_monthly_report(march_report.id)

        assert exc_info.value.invoice_id == first.id

    def test_after_void_a_new_invoice_is_allowed(self, engine, march_report):
        first = engine.invoice_from_monthly_report(march_report.id)
        engine.finalize(first.id, InvoiceStatus.DRAFT)
        engine.void(first.id, InvoiceStatus.PENDING)

        second = engine.invoice_from_monthly_report(march_report.id)

        assert second.id != first.id

    def test_publishes_created(self, engine, event_bus, march_report):
        events = []
        event_bus.subscribe("InvoiceCreated", events.append)

        engine.invoice_from_monthly_report(march_report.id)

        assert len(events) == 1
        assert isinstance(events[0], InvoiceCreated)


class TestMilestone:
    def test_flat(self, engine, make_milestone):
        milestone = make_milestone(fixed_amount_cents=300000)

        invoice = engine.invoice_from_milestone(milestone.id)
        lines = engine.ledger.line_items(invoice.id)

        assert invoice.invoice_type == InvoiceType.MILESTONE
        assert invoice.amount_cents == 300000
        assert len(lines) == 1
        assert lines[0].line_type == LineItemType.PROJECT_MILESTONE
        assert lines[0].description == "PR-0007-01 - Milestone 1"
        assert lines[0].milestone_id == milestone.id

    def test_deposit(self, engine, make_milestone):
        milestone = make_milestone(fixed_amount_cents=100000, is_deposit=True)

        invoice = engine.invoice_from_milestone(milestone.id)

        assert invoice.invoice_type == InvoiceType.DEPOSIT
        assert engine.ledger.line_items(invoice.id)[0].line_type == LineItemType.PROJECT_DEPOSIT

    def test_hourly_with_non_billable(self, engine, make_milestone, make_time_entry):
        milestone = make_milestone()
        make_time_entry("2.5", milestone_id=milestone.id)
        make_time_entry("0.5", billable=False, milestone_id=milestone.id)

        invoice = engine.invoice_from_milestone(milestone.id)
        lines = engine.ledger.line_items(invoice.id)

        assert invoice.amount_cents == 12500
        assert [line.amount_cents for line in lines] == [12500, 0]
        assert lines[0].quantity == Decimal("2.5")
        assert lines[1].line_type == LineItemType.NON_BILLABLE

    def test_hourly_without_time(self, engine, make_milestone):
        with pytest.raises(NoEligibleWorkError, match="no billable amount"):
            engine.invoice_from_milestone(make_milestone().id)

    def test_unlinked(self, engine, store):
        milestone = store.save_milestone(Milestone(id=uuid4(), name="Loose", fixed_amount_cents=1000))

        with pytest.raises(NoEligibleWorkError):
            engine.invoice_from_milestone(milestone.id)

    def test_duplicate(self, engine, make_milestone):
        milestone = make_milestone(fixed_amount_cents=1000)
        engine.invoice_from_milestone(milestone.id)

        with pytest.raises(DuplicateInvoiceError):
            engine.invoice_from_milestone(milestone.id)


class TestCloseout:
    def test_lines(self, engine, event_bus, project, make_milestone, make_time_entry):
        events = []
        event_bus.subscribe("CloseoutInvoiceCreated", events.append)
        flat = make_milestone(fixed_amount_cents=80000)
        hourly = make_milestone()
        make_time_entry("4", milestone_id=hourly.id)
        make_time_entry("1", project_id=project.id)

        invoice = engine.create_closeout(project.id)
        lines = engine.ledger.line_items(invoice.id)

        assert invoice.invoice_type == InvoiceType.CLOSEOUT
        assert invoice.project_id == project.id
        assert invoice.amount_cents == 80000 + 20000 + 5000
        assert [line.line_type for line in lines] == [
            LineItemType.PROJECT_WORK, LineItemType.PROJECT_MILESTONE, LineItemType.PROJECT_MILESTONE,
        ]
        assert lines[0].description == "Project Work - PR-0007 - Website Rebuild"
        assert [line.milestone_id for line in lines[1:]] == [flat.id, hourly.id]
        assert lines[1].quantity is None
        assert lines[2].quantity == Decimal("4")
        assert isinstance(events[0], CloseoutInvoiceCreated)
        assert events[0].plan.eligible_milestones == [flat, hourly]

    def test_nothing_to_close(self, engine, project, make_milestone):
        make_milestone()

        with pytest.raises(NoEligibleWorkError, match="no eligible work"):
            engine.create_closeout(project.id)

    def test_twice(self, engine, project, make_milestone):
        make_milestone(fixed_amount_cents=1000)
        engine.create_closeout(project.id)

        with pytest.raises(AlreadyClosedOutError):
            engine.create_closeout(project.id)

    def test_store_rechecks_at_insert(self, engine, store, project, make_milestone, monkeypatch):
        """A closeout that appears after classification still blocks the insert."""
        make_milestone(fixed_amount_cents=1000)
        plan = engine.build_closeout(project.id)
        engine.create_closeout(project.id)
        monkeypatch.setattr(engine.aggregator, "build", lambda project_id: plan)

        with pytest.raises(AlreadyClosedOutError):
            engine.create_closeout(project.id)

        closeouts = store.list_invoices_for_project(project.id, InvoiceType.CLOSEOUT)
        assert len(closeouts) == 1


class TestDiscardDraft:
    def test_requires_staff(self, engine, make_draft):
        with pytest.raises(RuntimeError):
            engine.discard_draft(make_draft(100).id)

    def test_discard(self, engine, store, make_draft, as_staff):
        draft = make_draft(100, 200)

        engine.discard_draft(draft.id)

        assert store.get_invoice(draft.id) is None
        assert store.list_line_items(draft.id) == []
        assert store.list_audit_entries("invoice", draft.id)[0]["action"] == "delete"

    def test_discard_frees_milestone(self, engine, make_milestone, as_staff):
        milestone = make_milestone(fixed_amount_cents=1000)
        draft = engine.invoice_from_milestone(milestone.id)

        engine.discard_draft(draft.id)

        assert engine.invoice_from_milestone(milestone.id).id != draft.id

    def test_finalized_invoice_cannot_be_discarded(self, engine, pending_invoice, as_staff):
        with pytest.raises(InvoiceLockedError):
            engine.discard_draft(pending_invoice.id)

    def test_unknown(self, engine, as_staff):
        with pytest.raises(ValueError):
            engine.discard_draft(uuid4())
