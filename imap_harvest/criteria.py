"""Time-range filters and the IMAP SEARCH criteria built from them.

IMAP date search is day-granular (no time component), so every range is
expressed as a half-open ``[SINCE, BEFORE)`` pair of local calendar days.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from enum import StrEnum

from .exceptions import InvalidFilterError

# Fixed English table: strftime("%b") follows the process locale, the wire
# format does not.
_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


class TimeRange(StrEnum):
    """Named time windows understood by :func:`build_search_query`."""

    TODAY = "today"
    YESTERDAY = "yesterday"
    THIS_WEEK = "thisWeek"
    LAST_7_DAYS = "last7days"
    THIS_MONTH = "thisMonth"
    LAST_MONTH = "lastMonth"
    NONE = "none"


@dataclass(frozen=True)
class TimeRangeFilter:
    """A time window plus an optional "most recent N" limit."""

    time_range: TimeRange | str = TimeRange.NONE
    limit: int | None = None

    def __post_init__(self) -> None:
        if self.limit is not None and self.limit <= 0:
            raise InvalidFilterError(f"limit must be a positive integer, got {self.limit}")


@dataclass(frozen=True)
class SearchQuery:
    """Ordered IMAP SEARCH terms plus the day bounds they encode."""

    terms: tuple[str, ...]
    since: date | None = None
    before: date | None = None

    def to_imap(self) -> str:
        return " ".join(self.terms)


def format_imap_date(day: date) -> str:
    """Render *day* as ``DD-Mon-YYYY`` (e.g. ``05-Mar-2024``)."""
    return f"{day.day:02d}-{_MONTHS[day.month - 1]}-{day.year:04d}"


def _first_of_month(year: int, month: int) -> date:
    # month may run one past either end of the year
    if month < 1:
        return date(year - 1, 12, 1)
    if month > 12:
        return date(year + 1, 1, 1)
    return date(year, month, 1)


def time_range_bounds(
    time_range: TimeRange | str,
    *,
    today: date | None = None,
    first_weekday: int = calendar.SUNDAY,
) -> tuple[date, date] | None:
    """Return ``(since, before)`` for *time_range*, or ``None`` for no bound."""
    try:
        tag = TimeRange(time_range)
    except ValueError:
        raise InvalidFilterError(f"unknown time range: {time_range!r}") from None

    today = today or date.today()

    match tag:
        case TimeRange.NONE:
            return None
        case TimeRange.TODAY:
            return today, today + timedelta(days=1)
        case TimeRange.YESTERDAY:
            return today - timedelta(days=1), today
        case TimeRange.THIS_WEEK:
            since = today - timedelta(days=(today.weekday() - first_weekday) % 7)
            return since, since + timedelta(days=7)
        case TimeRange.LAST_7_DAYS:
            return today - timedelta(days=6), today + timedelta(days=1)
        case TimeRange.THIS_MONTH:
            return (
                _first_of_month(today.year, today.month),
                _first_of_month(today.year, today.month + 1),
            )
        case TimeRange.LAST_MONTH:
            return (
                _first_of_month(today.year, today.month - 1),
                _first_of_month(today.year, today.month),
            )


def build_search_query(
    search_filter: TimeRangeFilter,
    *,
    today: date | None = None,
    first_weekday: int = calendar.SUNDAY,
) -> SearchQuery:
    """Translate *search_filter* into IMAP SEARCH criteria.

    ``none`` yields ``ALL`` alone; every other range adds exactly one
    ``SINCE`` and one ``BEFORE`` term.  Raises :class:`InvalidFilterError`
    for an unrecognised range.
    """
    bounds = time_range_bounds(
        search_filter.time_range,
        today=today,
        first_weekday=first_weekday,
    )
    if bounds is None:
        return SearchQuery(terms=("ALL",))

    since, before = bounds
    return SearchQuery(
        terms=(
            "ALL",
            f"SINCE {format_imap_date(since)}",
            f"BEFORE {format_imap_date(before)}",
        ),
        since=since,
        before=before,
    )
