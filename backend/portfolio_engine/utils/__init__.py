# backend/portfolio_engine/utils/__init__.py
"""
Cross-cutting helpers: logging setup, correlation ids, date ranges.

Usage:
    from portfolio_engine.utils import setup_logging, correlation_scope
    from portfolio_engine.utils.date_utils import get_calendar_days
"""

from portfolio_engine.utils.context import (
    get_correlation_id,
    set_correlation_id,
    clear_correlation_id,
    correlation_scope,
)
from portfolio_engine.utils.logging import setup_logging

__all__ = [
    "setup_logging",
    "get_correlation_id",
    "set_correlation_id",
    "clear_correlation_id",
    "correlation_scope",
]
