"""Trailing one-year window over dated records.

Dates are parsed with pandas as UTC calendar dates, so a record's day never
shifts with the server's timezone. "One year back" is
``pandas.DateOffset(years=1)``: a leap day rolls back to Feb 28
(2024-02-29 → 2023-02-28).
"""

from __future__ import annotations

import datetime as dt
from typing import Any, Callable, Iterable, TypeVar

import pandas as pd

T = TypeVar("T")

ONE_YEAR = pd.DateOffset(years=1)


def parse_calendar_date(value: Any) -> pd.Timestamp | None:
    """UTC-midnight Timestamp for ``value``, or None if missing/unparsable."""
    if value is None:
        return None
    if isinstance(value, str) and not value.strip():
        return None
    ts = pd.to_datetime(value, errors="coerce", utc=True)
    if pd.isna(ts):
        return None
    return ts.normalize()


def _dated(records: Iterable[T], date_accessor: Callable[[T], Any]) -> list[tuple[pd.Timestamp, T]]:
    pairs = []
    for record in records:
        ts = parse_calendar_date(date_accessor(record))
        if ts is not None:
            pairs.append((ts, record))
    return pairs


def latest_date(records: Iterable[T], date_accessor: Callable[[T], Any]) -> dt.date | None:
    """The anchor date: latest parsable date among ``records``."""
    pairs = _dated(records, date_accessor)
    if not pairs:
        return None
    return max(ts for ts, _ in pairs).date()


def filter_trailing_year(records: Iterable[T], date_accessor: Callable[[T], Any]) -> list[T]:
    """Keep records dated within one year of the latest one, oldest first.

    Records without a usable date are dropped. Both ends of the window are
    inclusive: a record exactly one year before the anchor is kept.
    """
    pairs = _dated(records, date_accessor)
    if not pairs:
        return []

    latest = max(ts for ts, _ in pairs)
    cutoff = latest - ONE_YEAR
    kept = [(ts, rec) for ts, rec in pairs if cutoff <= ts <= latest]
    kept.sort(key=lambda pair: pair[0])
    return [rec for _, rec in kept]
