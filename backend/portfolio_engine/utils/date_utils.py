# backend/portfolio_engine/utils/date_utils.py
"""
Date utility functions for the portfolio engine.

Usage:
    from portfolio_engine.utils.date_utils import get_calendar_days

    days = get_calendar_days(start_date, end_date)
"""

from datetime import date, timedelta


def get_calendar_days(start_date: date, end_date: date) -> list[date]:
    """
    Get every calendar day in a date range.

    Snapshots exist for weekends too: prices and rates fall back to the
    most recent prior date, so every day has a defined valuation.

    Args:
        start_date: First date in range (inclusive)
        end_date: Last date in range (inclusive)

    Returns:
        List of dates sorted chronologically (empty if start > end)

    Example:
        >>> get_calendar_days(date(2024, 1, 30), date(2024, 2, 1))
        [date(2024, 1, 30), date(2024, 1, 31), date(2024, 2, 1)]
    """
    days = []
    current = start_date

    while current <= end_date:
        days.append(current)
        current += timedelta(days=1)

    return days


def days_in_range(start_date: date, end_date: date) -> int:
    """Number of calendar days in an inclusive range (0 if start > end)."""
    return max((end_date - start_date).days + 1, 0)
