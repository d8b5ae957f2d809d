"""
Temporal Intent Parser

Extracts the time-related intent of a natural-language query ("the first
time I...", "around last month", "in the past 10 days") as a type, an optional
reference date or range, and the sort order results should follow.

Pure: the clock is passed in, nothing is stored.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Iterable, Optional

from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta


class TemporalType(str, Enum):
    FIRST = "first"
    LAST = "last"
    BEFORE = "before"
    AFTER = "after"
    AROUND = "around"
    BETWEEN = "between"
    RECENT = "recent"
    NONE = "none"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass
class TemporalIntent:
    type: TemporalType = TemporalType.NONE
    sort_order: SortOrder = SortOrder.DESC
    reference_date: Optional[datetime] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    phrase: Optional[str] = None


FIRST_PATTERNS = ("first time", "earliest", "when did i first", "initial")
LAST_PATTERNS = ("last time", "most recent", "latest", "when did i last")
RECENT_PATTERNS = ("recently", "lately", "these days", "this week")

AROUND_WINDOW = timedelta(days=3)
RECENT_WINDOW = timedelta(days=7)

_BEFORE_RE = re.compile(r"before (.+?)(?:\?|$)")
_AFTER_RE = re.compile(r"after (.+?)(?:\?|$)")
_AROUND_RE = re.compile(r"(?:around|near|about) (.+?)(?:\?|$)")
_LAST_DAYS_RE = re.compile(r"(?:last|past) (\d+) days?")


def _first_match(query: str, patterns: Iterable[str]) -> Optional[str]:
    for pattern in patterns:
        if pattern in query:
            return pattern
    return None


def _start_of_day(dt: datetime) -> datetime:
    return dt.replace(hour=0, minute=0, second=0, microsecond=0)


def _naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is not None:
        return dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def _shift(dt: datetime, delta: timedelta) -> datetime:
    """dt + delta, clamped to the representable datetime range"""
    try:
        return dt + delta
    except OverflowError:
        return datetime.max if delta > timedelta(0) else datetime.min


class TemporalParser:
    """Rule-based temporal intent extraction. First matching rule wins."""

    def parse(self, query: str, now: Optional[datetime] = None) -> TemporalIntent:
        now = now or datetime.utcnow()
        q = (query or "").lower()

        phrase = _first_match(q, FIRST_PATTERNS)
        if phrase:
            return TemporalIntent(type=TemporalType.FIRST, sort_order=SortOrder.ASC, phrase=phrase)

        phrase = _first_match(q, LAST_PATTERNS)
        if phrase:
            return TemporalIntent(type=TemporalType.LAST, sort_order=SortOrder.DESC, phrase=phrase)

        match = _BEFORE_RE.search(q)
        if match:
            date = self.parse_relative_date(match.group(1), now)
            return TemporalIntent(
                type=TemporalType.BEFORE,
                sort_order=SortOrder.DESC,
                reference_date=date,
                end=date,
                phrase=f"before {match.group(1)}",
            )

        match = _AFTER_RE.search(q)
        if match:
            date = self.parse_relative_date(match.group(1), now)
            return TemporalIntent(
                type=TemporalType.AFTER,
                sort_order=SortOrder.ASC,
                reference_date=date,
                start=date,
                phrase=f"after {match.group(1)}",
            )

        match = _AROUND_RE.search(q)
        if match:
            center = self.parse_relative_date(match.group(1), now)
            return TemporalIntent(
                type=TemporalType.AROUND,
                sort_order=SortOrder.DESC,
                reference_date=center,
                start=_shift(center, -AROUND_WINDOW),
                end=_shift(center, AROUND_WINDOW),
                phrase=f"around {match.group(1)}",
            )

        time_range = self.parse_time_range(q, now)
        if time_range:
            start, end, phrase = time_range
            return TemporalIntent(
                type=TemporalType.BETWEEN,
                sort_order=SortOrder.DESC,
                start=start,
                end=end,
                phrase=phrase,
            )

        if _first_match(q, RECENT_PATTERNS):
            return TemporalIntent(
                type=TemporalType.RECENT,
                sort_order=SortOrder.DESC,
                start=now - RECENT_WINDOW,
                end=now,
                phrase="recently",
            )

        return TemporalIntent()

    def parse_relative_date(self, text: str, now: Optional[datetime] = None) -> datetime:
        """Resolve 'yesterday', 'last month', '2024-03-01' etc.; falls back to now."""
        now = now or datetime.utcnow()
        s = text.strip().lower()

        if s == "today":
            return now
        if s == "yesterday":
            return now - timedelta(days=1)
        if s == "tomorrow":
            return now + timedelta(days=1)

        if "last week" in s:
            return now - timedelta(days=7)
        if "this week" in s:
            return now
        if "last month" in s:
            return now + relativedelta(months=-1)
        if "this month" in s:
            return now
        if "last year" in s:
            return now + relativedelta(years=-1)
        if "this year" in s:
            return now

        try:
            return _naive_utc(date_parser.parse(text.strip(), default=_start_of_day(now)))
        except (ValueError, OverflowError):
            return now

    def parse_time_range(self, q: str, now: datetime):
        """(start, end, phrase) for range expressions, or None"""
        match = _LAST_DAYS_RE.search(q)
        if match:
            days = int(match.group(1))
            return _shift(now, -timedelta(days=min(days, timedelta.max.days))), now, f"last {days} days"

        if "last week" in q:
            return now - timedelta(days=7), now, "last week"

        if "this week" in q:
            # Weeks start on Sunday
            days_since_sunday = (now.weekday() + 1) % 7
            return _start_of_day(now - timedelta(days=days_since_sunday)), now, "this week"

        if "last month" in q:
            first_of_this_month = _start_of_day(now).replace(day=1)
            start = first_of_this_month + relativedelta(months=-1)
            end = first_of_this_month - timedelta(microseconds=1)
            return start, end, "last month"

        if "this month" in q:
            return _start_of_day(now).replace(day=1), now, "this month"

        return None


temporal_parser = TemporalParser()
