# backend/portfolio_engine/utils/context.py
"""
Correlation id of the current call, carried in a ContextVar.

The host sets it once per request; the logging filter copies it onto every
record the engine emits while that request is being served.

    with correlation_scope("req-42"):
        engine.get_history(ledger, portfolio_id, start, end)
"""

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def get_correlation_id() -> str | None:
    return _correlation_id.get()


def set_correlation_id(correlation_id: str) -> None:
    _correlation_id.set(correlation_id)


def clear_correlation_id() -> None:
    _correlation_id.set(None)


@contextmanager
def correlation_scope(correlation_id: str) -> Iterator[str]:
    """Set the id for the block, then restore whatever was set before."""
    token = _correlation_id.set(correlation_id)
    try:
        yield correlation_id
    finally:
        _correlation_id.reset(token)
