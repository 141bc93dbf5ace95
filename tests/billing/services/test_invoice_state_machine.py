"""Tests for InvoiceStateMachine transitions, guards and concurrency."""

import threading
from datetime import date
from uuid import uuid4

import pytest

from billing.events import InvoiceFinalized, InvoicePaid, InvoicePaymentRecorded
from billing.exceptions import ConcurrentModificationError, IllegalTransitionError
from billing.models import DocumentStatus, InvoiceStatus
from billing.services.invoice_state_machine import ALLOWED_TRANSITIONS, is_allowed


class TestTransitionTable:
    @pytest.mark.parametrize("from_status,to_status", [
        (InvoiceStatus.DRAFT, InvoiceStatus.PENDING),
        (InvoiceStatus.PENDING, InvoiceStatus.PAID),
        (InvoiceStatus.PENDING, InvoiceStatus.PARTIAL),
        (InvoiceStatus.PENDING, InvoiceStatus.VOID),
        (InvoiceStatus.PENDING, InvoiceStatus.DRAFT),
        (InvoiceStatus.PARTIAL, InvoiceStatus.PARTIAL),
        (InvoiceStatus.OVERDUE, InvoiceStatus.PAID),
    ])
    def test_allowed(self, from_status, to_status):
        assert is_allowed(from_status, to_status)

    @pytest.mark.parametrize("from_status,to_status", [
        (InvoiceStatus.DRAFT, InvoiceStatus.PAID),
        (InvoiceStatus.DRAFT, InvoiceStatus.VOID),
        (InvoiceStatus.PARTIAL, InvoiceStatus.DRAFT),
        (InvoiceStatus.OVERDUE, InvoiceStatus.DRAFT),
    ])
    def test_refused(self, from_status, to_status):
        assert not is_allowed(from_status, to_status)

    def test_paid_and_void_are_terminal(self):
        assert ALLOWED_TRANSITIONS[InvoiceStatus.PAID] == frozenset()
        assert ALLOWED_TRANSITIONS[InvoiceStatus.VOID] == frozenset()


class TestFinalize:
    def test_numbers_and_dates(self, pending_invoice):
        assert pending_invoice.status == InvoiceStatus.PENDING
        assert pending_invoice.invoice_number == "INV-2503-001"
        assert pending_invoice.amount_cents == 15000
        assert pending_invoice.invoice_date == date(2025, 3, 10)
        assert pending_invoice.due_date == date(2025, 3, 15)

    def test_requests_document(self, engine, store, document_generator, pending_invoice):
        stored = store.get_invoice(pending_invoice.id)

        assert document_generator.calls == [pending_invoice.id]
        assert stored.document_status == DocumentStatus.GENERATED

    def test_organization_payment_terms(self, engine, store, organization, make_draft):
        store.save_organization(organization.model_copy(update={"payment_terms_days": 30}))

        invoice = engine.finalize(make_draft(100).id, InvoiceStatus.DRAFT)

        assert invoice.due_date == date(2025, 4, 9)

    def test_no_line_items(self, engine, make_draft):
        with pytest.raises(IllegalTransitionError, match="no line items"):
            engine.finalize(make_draft().id, InvoiceStatus.DRAFT)

    def test_total_not_positive(self, engine, make_draft):
        with pytest.raises(IllegalTransitionError, match="not positive"):
            engine.finalize(make_draft(5000, -5000).id, InvoiceStatus.DRAFT)

    def test_twice(self, engine, pending_invoice):
        with pytest.raises(IllegalTransitionError):
            engine.finalize(pending_invoice.id, InvoiceStatus.PENDING)

    def test_unknown_invoice(self, engine):
        with pytest.raises(ValueError, match="not found"):
            engine.finalize(uuid4(), InvoiceStatus.DRAFT)

    def test_publishes_event(self, engine, event_bus, make_draft):
        seen = []
        event_bus.subscribe("InvoiceFinalized", seen.append)

        engine.finalize(make_draft(100).id, InvoiceStatus.DRAFT)

        assert len(seen) == 1
        assert isinstance(seen[0], InvoiceFinalized)


class TestPayments:
    def test_partial_then_paid(self, engine, pending_invoice):
        partial = engine.mark_partial(pending_invoice.id, 5000, InvoiceStatus.PENDING)
        paid = engine.mark_paid(pending_invoice.id, InvoiceStatus.PARTIAL)

        assert partial.status == InvoiceStatus.PARTIAL
        assert paid.status == InvoiceStatus.PAID
        assert paid.amount_paid_cents == 15000
        assert paid.balance_cents == 0

    @pytest.mark.parametrize("amount", [0, 15000, 20000])
    def test_partial_amount_must_be_strictly_between(self, engine, pending_invoice, amount):
        with pytest.raises(IllegalTransitionError, match="amount paid"):
            engine.mark_partial(pending_invoice.id, amount, InvoiceStatus.PENDING)

    def test_record_payment_accumulates(self, engine, pending_invoice):
        engine.record_payment(pending_invoice.id, 4000, InvoiceStatus.PENDING)
        second = engine.record_payment(pending_invoice.id, 6000, InvoiceStatus.PARTIAL)

        assert second.status == InvoiceStatus.PARTIAL
        assert second.amount_paid_cents == 10000
        assert second.balance_cents == 5000

    def test_record_payment_settles(self, engine, event_bus, pending_invoice):
        events = []
        event_bus.subscribe("InvoicePaid", events.append)
        engine.record_payment(pending_invoice.id, 10000, InvoiceStatus.PENDING)

        paid = engine.record_payment(pending_invoice.id, 5000, InvoiceStatus.PARTIAL)

        assert paid.status == InvoiceStatus.PAID
        assert paid.paid_at is not None
        assert [type(e) for e in events] == [InvoicePaid]

    def test_payment_event_carries_increment(self, engine, event_bus, pending_invoice):
        events = []
        event_bus.subscribe("InvoicePaymentRecorded", events.append)

        engine.record_payment(pending_invoice.id, 4000, InvoiceStatus.PENDING)
        engine.mark_partial(pending_invoice.id, 9000, InvoiceStatus.PARTIAL)

        assert isinstance(events[0], InvoicePaymentRecorded)
        assert [e.payment_cents for e in events] == [4000, 5000]

    @pytest.mark.parametrize("amount", [1000, 10000])
    def test_partial_total_cannot_shrink(self, engine, event_bus, pending_invoice, amount):
        """A lower or repeated total paid is refused, not written over the recorded one."""
        engine.mark_partial(pending_invoice.id, 10000, InvoiceStatus.PENDING)
        events = []
        event_bus.subscribe("InvoicePaymentRecorded", events.append)

        with pytest.raises(IllegalTransitionError, match="amount paid"):
            engine.mark_partial(pending_invoice.id, amount, InvoiceStatus.PARTIAL)

        assert engine.store.get_invoice(pending_invoice.id).amount_paid_cents == 10000
        assert events == []

    def test_payment_must_be_positive(self, engine, pending_invoice):
        with pytest.raises(ValueError, match="positive"):
            engine.record_payment(pending_invoice.id, 0, InvoiceStatus.PENDING)

    def test_draft_cannot_be_paid(self, engine, make_draft):
        with pytest.raises(IllegalTransitionError):
            engine.mark_paid(make_draft(100).id, InvoiceStatus.DRAFT)

    def test_paid_is_terminal(self, engine, pending_invoice):
        engine.mark_paid(pending_invoice.id, InvoiceStatus.PENDING)

        with pytest.raises(IllegalTransitionError):
            engine.void(pending_invoice.id, InvoiceStatus.PAID)
        with pytest.raises(IllegalTransitionError):
            engine.record_payment(pending_invoice.id, 100, InvoiceStatus.PAID)


class TestVoid:
    def test_void_with_reason(self, engine, pending_invoice):
        voided = engine.void(pending_invoice.id, InvoiceStatus.PENDING, reason="Issued to the wrong client")

        assert voided.status == InvoiceStatus.VOID
        assert voided.voided_at is not None
        assert voided.notes == "Issued to the wrong client"

    def test_void_partial(self, engine, pending_invoice):
        engine.mark_partial(pending_invoice.id, 100, InvoiceStatus.PENDING)

        assert engine.void(pending_invoice.id, InvoiceStatus.PARTIAL).status == InvoiceStatus.VOID

    def test_drafts_are_not_voided(self, engine, make_draft):
        with pytest.raises(IllegalTransitionError):
            engine.void(make_draft(100).id, InvoiceStatus.DRAFT)


class TestRevertToDraft:
    def test_requires_staff(self, engine, pending_invoice):
        with pytest.raises(RuntimeError):
            engine.revert_to_draft(pending_invoice.id, InvoiceStatus.PENDING)

    def test_keeps_number_and_clears_dates(self, engine, pending_invoice, as_staff):
        draft = engine.revert_to_draft(pending_invoice.id, InvoiceStatus.PENDING)

        assert draft.status == InvoiceStatus.DRAFT
        assert draft.invoice_number == pending_invoice.invoice_number
        assert draft.invoice_date is None
        assert draft.due_date is None
        assert draft.document_status == DocumentStatus.NOT_REQUESTED
        assert draft.document_location is None

    def test_refinalize_reuses_number(self, engine, pending_invoice, as_staff):
        engine.revert_to_draft(pending_invoice.id, InvoiceStatus.PENDING)

        refinalized = engine.finalize(pending_invoice.id, InvoiceStatus.DRAFT)

        assert refinalized.invoice_number == pending_invoice.invoice_number

    def test_not_from_partial(self, engine, pending_invoice, as_staff):
        engine.mark_partial(pending_invoice.id, 100, InvoiceStatus.PENDING)

        with pytest.raises(IllegalTransitionError):
            engine.revert_to_draft(pending_invoice.id, InvoiceStatus.PARTIAL)

    def test_not_once_past_due(self, engine, clock, pending_invoice, as_staff):
        clock.advance(days=6)

        with pytest.raises(IllegalTransitionError) as exc_info:
            engine.revert_to_draft(pending_invoice.id, InvoiceStatus.PENDING)

        assert exc_info.value.from_status == "overdue"


class TestOverdue:
    def test_effective_status_overlay(self, engine, clock, pending_invoice):
        assert engine.effective_status(pending_invoice.id) == InvoiceStatus.PENDING

        clock.advance(days=6)

        assert engine.effective_status(pending_invoice.id) == InvoiceStatus.OVERDUE
        assert engine.store.get_invoice(pending_invoice.id).status == InvoiceStatus.PENDING

    def test_due_date_itself_is_not_overdue(self, engine, clock, pending_invoice):
        clock.advance(days=5)

        assert engine.effective_status(pending_invoice.id) == InvoiceStatus.PENDING

    def test_mark_overdue_persists(self, engine, clock, pending_invoice):
        clock.advance(days=6)

        overdue = engine.state_machine.mark_overdue(pending_invoice.id, InvoiceStatus.PENDING)

        assert overdue.status == InvoiceStatus.OVERDUE

    def test_mark_overdue_before_due(self, engine, pending_invoice):
        with pytest.raises(IllegalTransitionError, match="not past due"):
            engine.state_machine.mark_overdue(pending_invoice.id, InvoiceStatus.PENDING)

    def test_overdue_can_still_be_paid(self, engine, clock, pending_invoice):
        clock.advance(days=30)
        engine.state_machine.mark_overdue(pending_invoice.id, InvoiceStatus.PENDING)

        assert engine.record_payment(pending_invoice.id, 15000, InvoiceStatus.OVERDUE).status == InvoiceStatus.PAID


class TestConcurrency:
    def test_expected_status_mismatch(self, engine, pending_invoice):
        with pytest.raises(ConcurrentModificationError) as exc_info:
            engine.mark_paid(pending_invoice.id, InvoiceStatus.PARTIAL)

        assert exc_info.value.actual == "pending"

    def test_lost_race_leaves_invoice_untouched(self, engine, store, pending_invoice, monkeypatch):
        """A writer that slips in between read and write wins; the late writer is refused."""
        original_get = store.get_invoice
        stale = original_get(pending_invoice.id)
        store.compare_and_set_invoice(pending_invoice.id, InvoiceStatus.PENDING, {"status": InvoiceStatus.VOID})
        monkeypatch.setattr(store, "get_invoice", lambda invoice_id: stale if invoice_id == stale.id else None)

        with pytest.raises(ConcurrentModificationError):
            engine.mark_paid(pending_invoice.id, InvoiceStatus.PENDING)

        monkeypatch.setattr(store, "get_invoice", original_get)
        assert store.get_invoice(pending_invoice.id).status == InvoiceStatus.VOID

    def test_pay_and_void_race(self, engine, store, pending_invoice):
        """Exactly one of two racing transitions commits."""
        barrier = threading.Barrier(2)
        outcomes = {}

        def attempt(name, action):
            barrier.wait()
            try:
                outcomes[name] = action(pending_invoice.id, InvoiceStatus.PENDING).status
            except ConcurrentModificationError:
                outcomes[name] = "lost"

        threads = [
            threading.Thread(target=attempt, args=("pay", engine.mark_paid)),
            threading.Thread(target=attempt, args=("void", engine.void)),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert list(outcomes.values()).count("lost") == 1
        final = store.get_invoice(pending_invoice.id).status
        assert final in (InvoiceStatus.PAID, InvoiceStatus.VOID)
        assert final in outcomes.values()

    def test_expected_status_is_required(self, engine, pending_invoice):
        with pytest.raises(TypeError):
            engine.mark_paid(pending_invoice.id)

    def test_late_caller_gets_concurrent_modification(self, engine, store, pending_invoice):
        """Two callers act on the same Pending invoice; the one that commits second is refused."""
        engine.void(pending_invoice.id, InvoiceStatus.PENDING)

        with pytest.raises(ConcurrentModificationError) as exc_info:
            engine.mark_paid(pending_invoice.id, InvoiceStatus.PENDING)

        assert exc_info.value.actual == "void"
        assert store.get_invoice(pending_invoice.id).status == InvoiceStatus.VOID

    def test_pay_and_void_race_on_many_invoices(self, engine, store, make_draft):
        """Every loser of a pay/void race sees ConcurrentModificationError, never an illegal transition."""
        invoices = [engine.finalize(make_draft(100).id, InvoiceStatus.DRAFT) for _ in range(20)]
        outcomes = []
        lock = threading.Lock()

        def attempt(barrier, action, invoice):
            barrier.wait()
            try:
                action(invoice.id, invoice.status)
                result = "won"
            except ConcurrentModificationError:
                result = "lost"
            with lock:
                outcomes.append((invoice.id, result))

        for invoice in invoices:
            barrier = threading.Barrier(2)
            threads = [
                threading.Thread(target=attempt, args=(barrier, engine.mark_paid, invoice)),
                threading.Thread(target=attempt, args=(barrier, engine.void, invoice)),
            ]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

        for invoice in invoices:
            results = sorted(result for invoice_id, result in outcomes if invoice_id == invoice.id)
            assert results == ["lost", "won"]
            assert store.get_invoice(invoice.id).status in (InvoiceStatus.PAID, InvoiceStatus.VOID)
        engine.dispatcher.wait_all(timeout=5)


class TestAudit:
    def test_transition_is_audited(self, engine, store, pending_invoice):
        engine.mark_paid(pending_invoice.id, InvoiceStatus.PENDING)

        latest = store.list_audit_entries("invoice", pending_invoice.id)[0]

        assert latest["action"] == "update"
        assert latest["changes"]["status"] == {"old": "pending", "new": "paid"}

    def test_actor_recorded(self, engine, store, pending_invoice, as_staff):
        engine.void(pending_invoice.id, InvoiceStatus.PENDING)

        latest = store.list_audit_entries("invoice", pending_invoice.id)[0]

        assert latest["actor_id"] == as_staff
