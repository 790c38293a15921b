"""Correlation context — ambient ids and identity for new messages."""

from __future__ import annotations

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator

    from .metadata import UserInfo

# ContextVars for correlation/causation tracking across async boundaries.
_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)
_causation_id: ContextVar[str | None] = ContextVar("causation_id", default=None)
_current_user: ContextVar[UserInfo | None] = ContextVar("current_user", default=None)


def get_correlation_id() -> str | None:
    """Get current correlation ID from context."""
    return _correlation_id.get()


def set_correlation_id(correlation_id: str | None) -> None:
    """Set correlation ID in context."""
    _correlation_id.set(correlation_id)


def get_causation_id() -> str | None:
    """Get current causation ID from context."""
    return _causation_id.get()


def set_causation_id(causation_id: str | None) -> None:
    """Set causation ID in context."""
    _causation_id.set(causation_id)


def get_current_user() -> UserInfo | None:
    """Get the identity attached to messages created in this context."""
    return _current_user.get()


def set_current_user(user: UserInfo | None) -> None:
    """Set the identity attached to messages created in this context."""
    _current_user.set(user)


def generate_correlation_id() -> str:
    """Generate a new correlation ID."""
    return str(uuid.uuid4())


def get_context_vars() -> dict[str, Any]:
    """Get all correlation context variables for background task spawning."""
    return {
        "correlation_id": get_correlation_id(),
        "causation_id": get_causation_id(),
        "user": get_current_user(),
    }


def set_context_vars(**kwargs: Any) -> None:
    """Set correlation context variables (useful for background tasks)."""
    if "correlation_id" in kwargs:
        set_correlation_id(kwargs["correlation_id"])
    if "causation_id" in kwargs:
        set_causation_id(kwargs["causation_id"])
    if "user" in kwargs:
        set_current_user(kwargs["user"])


def correlation_metadata_hook() -> dict[str, Any]:
    """Metadata hook that copies the ambient context into new metadata.

    Only values that are set are returned, so library defaults still apply
    outside of a correlated context::

        configure(metadata_hook=correlation_metadata_hook)
    """
    defaults: dict[str, Any] = {}
    correlation_id = get_correlation_id()
    if correlation_id:
        defaults["correlation_id"] = correlation_id
    causation_id = get_causation_id()
    if causation_id:
        defaults["causation_id"] = causation_id
    user = get_current_user()
    if user is not None:
        defaults["user"] = user
    return defaults


@contextmanager
def correlation_scope(
    correlation_id: str | None,
    causation_id: str | None,
    user: UserInfo | None = None,
) -> Iterator[None]:
    """Install correlation values for the duration of the block.

    The previous values are restored on exit, so a handler's correlation does
    not outlive it::

        with correlation_scope(message.metadata.correlation_id, message.metadata.event_id):
            await handler(message)
    """
    correlation_token = _correlation_id.set(correlation_id)
    causation_token = _causation_id.set(causation_id)
    user_token = _current_user.set(user)
    try:
        yield
    finally:
        _current_user.reset(user_token)
        _causation_id.reset(causation_token)
        _correlation_id.reset(correlation_token)
