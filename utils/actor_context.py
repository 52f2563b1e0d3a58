"""Propagate the acting operator's identity through the call stack using contextvars."""

from contextvars import ContextVar
from uuid import UUID
from contextlib import contextmanager

_current_actor_id: ContextVar[UUID | None] = ContextVar("current_actor_id", default=None)


def get_actor_id() -> UUID | None:
    """
    Get the acting operator's ID, or None for system work.

    Scheduled jobs such as the arrear refresh run without an actor.
    """
    return _current_actor_id.get()


def set_actor_id(actor_id: UUID) -> None:
    """
    Set the acting operator for the current context.

    Called by ActorMiddleware from the upstream-supplied actor header.
    """
    _current_actor_id.set(actor_id)


def clear_actor_id() -> None:
    """
    Clear the actor.

    Must be called in a finally block to prevent context leakage.
    """
    _current_actor_id.set(None)


@contextmanager
def actor_context(actor_id: UUID):
    """
    Context manager for temporarily acting as an operator.

    Example:
        with actor_context(staff_id):
            invoice_service.create(data, issued_by=IssuedBy.STAFF)
    """
    previous = _current_actor_id.get()
    set_actor_id(actor_id)
    try:
        yield
    finally:
        if previous is None:
            clear_actor_id()
        else:
            set_actor_id(previous)
