"""Propagate the acting staff member through the call stack using contextvars."""

from contextlib import contextmanager
from contextvars import ContextVar
from uuid import UUID

_current_actor_id: ContextVar[UUID | None] = ContextVar("current_actor_id", default=None)


def get_current_actor_id() -> UUID | None:
    """
    Get the acting staff member's ID, or None for system jobs.

    Scheduled work (the billing sweep, document retries) runs without an actor
    and is audited as such.
    """
    return _current_actor_id.get()


def require_actor_id() -> UUID:
    """
    Get the acting staff member's ID.

    Raises RuntimeError if no actor is set. Use on code paths that must only
    ever be triggered by a person (manual status changes).
    """
    actor_id = _current_actor_id.get()
    if actor_id is None:
        raise RuntimeError(
            "No actor context set. This usually means a staff-only action "
            "was called from a background job."
        )
    return actor_id


def set_current_actor_id(actor_id: UUID) -> None:
    _current_actor_id.set(actor_id)


def clear_current_actor_id() -> None:
    """
    Clear actor context.

    Must be called in a finally block to prevent context leakage.
    """
    _current_actor_id.set(None)


@contextmanager
def acting_as(actor_id: UUID):
    """
    Context manager for temporarily setting the actor.

    Example:
        with acting_as(staff_id):
            engine.revert_to_draft(invoice_id, InvoiceStatus.PENDING)
    """
    previous = _current_actor_id.get()
    set_current_actor_id(actor_id)
    try:
        yield
    finally:
        if previous is None:
            clear_current_actor_id()
        else:
            set_current_actor_id(previous)
