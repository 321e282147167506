"""Comparison windows over calendar days.

The engine compares the last ``window_days`` days (reference day included)
against the same number of days immediately before them. Record dates are
plain calendar days, so filtering never touches timezones.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, List, Optional

from models import SalesRecord, parse_calendar_date

WINDOW_DAYS = 7
HISTORY_DAYS = 60


@dataclass(frozen=True)
class DateWindow:
    """Inclusive range of calendar days."""

    start: date
    end: date

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    def days(self) -> List[date]:
        span = (self.end - self.start).days
        return [self.start + timedelta(days=offset) for offset in range(span + 1)]


@dataclass(frozen=True)
class ComparisonWindows:
    current: DateWindow
    prior: DateWindow


def comparison_windows(reference: Optional[date] = None, window_days: int = WINDOW_DAYS) -> ComparisonWindows:
    """Return the current window ending on ``reference`` and the window before it.

    For a reference of 2025-06-15 and 7-day windows this is
    ``current=[2025-06-09, 2025-06-15]`` and ``prior=[2025-06-02, 2025-06-08]``.
    """
    reference = parse_calendar_date(reference) if reference else date.today()
    current = DateWindow(reference - timedelta(days=window_days - 1), reference)
    prior_end = current.start - timedelta(days=1)
    prior = DateWindow(prior_end - timedelta(days=window_days - 1), prior_end)
    return ComparisonWindows(current=current, prior=prior)


def history_range(reference: Optional[date] = None, days: int = HISTORY_DAYS) -> DateWindow:
    """Range of days requested from the record store for one generation run."""
    reference = parse_calendar_date(reference) if reference else date.today()
    return DateWindow(reference - timedelta(days=days), reference)


def filter_window(records: Iterable[SalesRecord], window: DateWindow) -> List[SalesRecord]:
    return [record for record in records if window.contains(record.date)]


__all__ = [
    "ComparisonWindows",
    "DateWindow",
    "HISTORY_DAYS",
    "WINDOW_DAYS",
    "comparison_windows",
    "filter_window",
    "history_range",
]
