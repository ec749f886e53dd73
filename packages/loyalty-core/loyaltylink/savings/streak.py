"""Savings streaks over distinct calendar dates."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any

from loyaltylink.identity.records import coerce_datetime


@dataclass
class StreakResult:
    """Current and longest runs of consecutive days."""

    current_streak: int = 0
    longest_streak: int = 0


def calculate_streaks(dates: Iterable[date], today: date) -> StreakResult:
    """Compute streaks from event dates.

    The current streak only counts if the most recent date is today or
    yesterday. The longest streak ignores recency.

    Args:
        dates: Event dates, duplicates allowed.
        today: Reference date.

    Returns:
        StreakResult for the distinct dates.
    """
    ordered = sorted(set(dates), reverse=True)
    if not ordered:
        return StreakResult()

    longest = run = 1
    for newer, older in zip(ordered, ordered[1:]):
        if newer - older == timedelta(days=1):
            run += 1
        else:
            run = 1
        longest = max(longest, run)

    current = 0
    if (today - ordered[0]).days in (0, 1):
        current = 1
        for newer, older in zip(ordered, ordered[1:]):
            if newer - older != timedelta(days=1):
                break
            current += 1

    return StreakResult(current_streak=current, longest_streak=longest)


def event_date(data: Mapping[str, Any]) -> date | None:
    """Calendar date of a savings event or redemption.

    Uses the ``date`` field (``YYYY-MM-DD``) when present, otherwise the UTC
    date of ``timestamp``.
    """
    value = data.get("date")
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value:
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            pass

    timestamp = coerce_datetime(data.get("timestamp"))
    return timestamp.date() if timestamp else None
