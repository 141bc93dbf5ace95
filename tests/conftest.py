"""Shared test fixtures for the billing test suite."""

import threading
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path
from uuid import UUID, uuid4

import pytest
from dotenv import load_dotenv

# Load .env file BEFORE any other imports that might use env vars
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

# Reset vault client singleton to pick up env vars
from clients.vault_client import reset_vault_client
reset_vault_client()

from billing.config import BillingConfig
from billing.engine import BillingEngine
from billing.event_bus import EventBus
from billing.models import (
    Invoice, InvoiceStatus, LineItemCreate, LineItemType, Milestone, MonthlyReport,
    Organization, Project, TimeEntry,
)
from billing.services.numbering import SequenceNumberingAuthority
from billing.store.memory import InMemoryBillingStore
from clients.document_client import DocumentGenerationError
from utils.actor_context import acting_as, clear_current_actor_id
from utils.clock import FixedClock


# =============================================================================
# TEST CONSTANTS
# =============================================================================

# Staff member used for actions that require a person
TEST_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000001")

# Monday morning, mid-month
TEST_NOW = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)


# =============================================================================
# ACTOR CONTEXT FIXTURES
# =============================================================================


@pytest.fixture(autouse=True)
def reset_actor_context():
    """Ensure clean actor context before and after each test."""
    clear_current_actor_id()
    yield
    clear_current_actor_id()


@pytest.fixture
def actor_id() -> UUID:
    return TEST_ACTOR_ID


@pytest.fixture
def as_staff(actor_id):
    """Run the test as a staff member."""
    with acting_as(actor_id):
        yield actor_id


# =============================================================================
# ENGINE FIXTURES
# =============================================================================


class RecordingDocumentGenerator:
    """Document generator that records calls and can fail a set number of times."""

    def __init__(self, fail_times: int = 0):
        self.calls: list[UUID] = []
        self.fail_times = fail_times
        self._lock = threading.Lock()

    def generate_document(self, invoice_id: UUID) -> str:
        with self._lock:
            self.calls.append(invoice_id)
            if self.fail_times > 0:
                self.fail_times -= 1
                raise DocumentGenerationError("Gateway error: renderer unavailable")
        return f"https://documents.test/invoices/{invoice_id}.pdf"


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(TEST_NOW)


@pytest.fixture
def config() -> BillingConfig:
    return BillingConfig()


@pytest.fixture
def store() -> InMemoryBillingStore:
    return InMemoryBillingStore()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def numbering() -> SequenceNumberingAuthority:
    return SequenceNumberingAuthority("INV")


@pytest.fixture
def document_generator() -> RecordingDocumentGenerator:
    return RecordingDocumentGenerator()


@pytest.fixture
def flaky_generator() -> RecordingDocumentGenerator:
    """Generator whose first call fails."""
    return RecordingDocumentGenerator(fail_times=1)


@pytest.fixture
def engine(store, document_generator, numbering, clock, config, event_bus):
    """Fully wired engine over the in-memory store."""
    engine = BillingEngine(
        store,
        document_generator,
        numbering=numbering,
        clock=clock,
        config=config,
        event_bus=event_bus,
    )
    yield engine
    engine.close()


# =============================================================================
# RECORD FIXTURES
# =============================================================================


@pytest.fixture
def organization(store) -> Organization:
    """Client with a $50/h rate, 2 free hours and a $25 hosting fee."""
    return store.save_organization(Organization(
        id=uuid4(),
        name="Acme Dental",
        monthly_free_hours=Decimal("2"),
        hourly_rate_cents=5000,
        monthly_hosting_fee_cents=2500,
    ))


@pytest.fixture
def project(store, organization) -> Project:
    return store.save_project(Project(
        id=uuid4(),
        organization_id=organization.id,
        name="Website Rebuild",
        reference="PR-0007",
    ))


@pytest.fixture
def make_milestone(store, project):
    """Factory for milestones under the test project."""
    counter = iter(range(1, 100))

    def make(fixed_amount_cents: int | None = None, is_deposit: bool = False, **overrides) -> Milestone:
        order = next(counter)
        fields = {
            "id": uuid4(),
            "project_id": project.id,
            "name": f"Milestone {order}",
            "reference": f"PR-0007-{order:02d}",
            "fixed_amount_cents": fixed_amount_cents,
            "is_deposit": is_deposit,
            "milestone_order": order,
            **overrides,
        }
        return store.save_milestone(Milestone(**fields))

    return make


@pytest.fixture
def make_time_entry(store, organization):
    """Factory for time entries for the test organization."""

    def make(hours: str, billable: bool = True, entry_date: date = date(2025, 3, 5), **links) -> TimeEntry:
        return store.save_time_entry(TimeEntry(
            id=uuid4(),
            organization_id=links.pop("organization_id", organization.id),
            entry_date=entry_date,
            hours=Decimal(hours),
            billable=billable,
            **links,
        ))

    return make


@pytest.fixture
def march_report(store, organization) -> MonthlyReport:
    return store.save_monthly_report(
        MonthlyReport.for_month(uuid4(), organization.id, 2025, 3)
    )


@pytest.fixture
def make_draft(engine, store, clock, organization):
    """Factory for draft invoices with the given line item amounts."""

    def make(*amounts_cents: int) -> Invoice:
        now = clock.now()
        invoice = store.create_invoice(
            Invoice(id=uuid4(), organization_id=organization.id, created_at=now, updated_at=now),
            [],
        )
        for number, amount in enumerate(amounts_cents, start=1):
            engine.add_line_item(invoice.id, LineItemCreate(
                line_type=LineItemType.ADJUSTMENT,
                description=f"Line {number}",
                amount_cents=amount,
            ))
        return store.get_invoice(invoice.id)

    return make


@pytest.fixture
def pending_invoice(engine, make_draft) -> Invoice:
    """A finalized $150.00 invoice, due in five days."""
    draft = make_draft(10000, 5000)
    invoice = engine.finalize(draft.id, InvoiceStatus.DRAFT)
    engine.dispatcher.wait_all(timeout=5)
    return invoice
