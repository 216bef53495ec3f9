"""
Regex-level date and time extraction for Spanish chat messages.

Dates are resolved by a prioritized chain of matchers (relative phrases,
numeric forms, "15 de mayo"); the first one that matches wins. Times are
returned as a tagged TimeParseResult so the caller can re-prompt, ask
for AM/PM clarification or reject out-of-hours requests.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional

from app.core.scheduling.phrases import (
    AFTERNOON_MARKERS,
    MIDNIGHT_PATTERN,
    MONTH_ALIASES,
    MONTH_NAMES,
    MORNING_MARKERS,
    NOON_PATTERN,
    TIME_INDICATOR_PATTERN,
    TIMEZONE_PATTERN,
    month_number,
    normalize_text,
)
from app.core.scheduling.timeutils import DateParts, TimeParts, make_date_parts, normalize_zone_input

logger = logging.getLogger(__name__)

# Years tried when rolling a month/day forward (covers Feb 29)
_MAX_YEAR_ROLL = 8

_IN_DAYS_RE = re.compile(r"en\s+(\d{1,2})\s+dias?")
_TODAY_RE = re.compile(r"\bhoy\b|el\s+dia\s+de\s+hoy")
_DAY_AFTER_TOMORROW_RE = re.compile(r"pasado\s*manana")
# "de la mañana" is a day part, not tomorrow
_TOMORROW_RE = re.compile(r"(?<!la )manana")

_ISO_DATE_RE = re.compile(r"(\d{4})[/-](\d{1,2})[/-](\d{1,2})")
_SHORT_DATE_RE = re.compile(r"(\d{1,2})[/-](\d{1,2})(?:[/-](\d{2,4}))?")
_YEAR_RE = re.compile(r"\b(\d{4})\b")

# Ordered from most to least explicit
_CLOCK_RE = re.compile(r"(\d{1,2})\s*[:h.]\s*(\d{2})")
_MARKED_HOUR_RE = re.compile(r"(\d{1,2})\s*(?:a\.?\s?m|p\.?\s?m|hrs?|horas?)")
_A_LAS_RE = re.compile(r"a\s+las?\s+(\d{1,2})")
_BARE_HOUR_RE = re.compile(r"(\d{1,2})")


@dataclass(frozen=True)
class DateMatch:
    """Raw date found by a matcher, before validation."""

    year: int
    month: int
    day: int
    explicit_year: bool


# === Date parsing ===


def _utc_day(reference: datetime) -> datetime:
    if reference.tzinfo is not None:
        reference = reference.astimezone(timezone.utc)
    return datetime(reference.year, reference.month, reference.day)


def _offset_date(reference: datetime, days: int) -> DateParts:
    day = _utc_day(reference) + timedelta(days=days)
    return DateParts(day.year, day.month, day.day)


def parse_relative_date(normalized: str, reference: datetime) -> Optional[DateParts]:
    """Relative phrases: hoy, mañana, pasado mañana, en N días."""
    if _DAY_AFTER_TOMORROW_RE.search(normalized):
        return _offset_date(reference, 2)

    if _TOMORROW_RE.search(normalized):
        return _offset_date(reference, 1)

    if _TODAY_RE.search(normalized):
        return _offset_date(reference, 0)

    in_days = _IN_DAYS_RE.search(normalized)
    if in_days:
        return _offset_date(reference, int(in_days.group(1)))

    return None


def parse_numeric_date(normalized: str, reference: datetime) -> Optional[DateMatch]:
    """ISO "2024-05-15" / "2024/05/15" or short "15/05[/24]"."""
    iso = _ISO_DATE_RE.search(normalized)
    if iso:
        year, month, day = (int(value) for value in iso.groups())
        return DateMatch(year, month, day, explicit_year=True)

    short = _SHORT_DATE_RE.search(normalized)
    if short:
        day = int(short.group(1))
        month = int(short.group(2))
        if short.group(3):
            year = int(short.group(3))
            if year < 100:
                year += 2000
        else:
            year = _utc_day(reference).year
        return DateMatch(year, month, day, explicit_year=bool(short.group(3)))

    return None


def parse_textual_date(normalized: str, reference: datetime) -> Optional[DateMatch]:
    """Month-name dates: 15 de mayo, mayo 15, 15 de mayo de 2025."""
    names = MONTH_NAMES + list(MONTH_ALIASES)
    month_name = next((name for name in names if name in normalized), None)
    if month_name is None:
        return None

    day = None
    before = re.search(rf"(\d{{1,2}})\s*(?:de\s+)?{month_name}", normalized)
    if before:
        day = int(before.group(1))
    else:
        after = re.search(rf"{month_name}\s*(?:del\s+ano\s+)?(\d{{1,2}})(?!\d)", normalized)
        if after:
            day = int(after.group(1))

    if day is None:
        return None

    year_match = _YEAR_RE.search(normalized)
    year = int(year_match.group(1)) if year_match else _utc_day(reference).year
    return DateMatch(year, month_number(month_name), day, explicit_year=bool(year_match))


def ensure_future_date(match: DateMatch, reference: datetime) -> Optional[DateParts]:
    """Validate a match and roll a year-less date forward past the reference day."""
    if match.explicit_year:
        return make_date_parts(match.year, match.month, match.day)

    today = _utc_day(reference).date()
    for offset in range(_MAX_YEAR_ROLL + 1):
        rolled = make_date_parts(match.year + offset, match.month, match.day)
        if rolled is not None and rolled.to_date() >= today:
            return rolled

    return None


_DATE_MATCHERS: list[Callable[[str, datetime], Optional[DateMatch]]] = [
    parse_numeric_date,
    parse_textual_date,
]


def parse_flexible_date(text: str, reference: datetime) -> Optional[DateParts]:
    """Extract a calendar date from free text.

    Args:
        text: User message
        reference: "Now" as an aware datetime; relative phrases count
            from its UTC calendar day

    Returns:
        DateParts, or None when nothing date-like was found
    """
    normalized = normalize_text(text)
    if not normalized:
        return None

    relative = parse_relative_date(normalized, reference)
    if relative:
        return relative

    for matcher in _DATE_MATCHERS:
        match = matcher(normalized, reference)
        if match:
            return ensure_future_date(match, reference)

    return None


# === Time parsing ===


class TimeParseStatus(str, Enum):
    """Outcome of parse_flexible_time()."""

    OK = "ok"
    CLARIFY = "clarify"
    OUT_OF_RANGE = "out_of_range"
    INVALID = "invalid"


@dataclass(frozen=True)
class TimeParseResult:
    """Tagged result of a time parse."""

    status: TimeParseStatus
    hour: Optional[int] = None
    minute: Optional[int] = None
    suggestion: Optional[TimeParts] = None

    @property
    def time_parts(self) -> Optional[TimeParts]:
        if self.hour is None or self.minute is None:
            return None
        return TimeParts(self.hour, self.minute)

    @classmethod
    def ok(cls, hour: int, minute: int) -> "TimeParseResult":
        return cls(TimeParseStatus.OK, hour, minute)

    @classmethod
    def clarify(cls, suggestion: TimeParts) -> "TimeParseResult":
        return cls(TimeParseStatus.CLARIFY, suggestion=suggestion)

    @classmethod
    def out_of_range(cls, hour: int, minute: int) -> "TimeParseResult":
        return cls(TimeParseStatus.OUT_OF_RANGE, hour, minute)

    @classmethod
    def invalid(cls) -> "TimeParseResult":
        return cls(TimeParseStatus.INVALID)


def is_within_business_hours(
    hour: int,
    minute: int,
    start_hour: int,
    end_hour: int,
    duration_minutes: int = 0,
) -> bool:
    """True when [hh:mm, hh:mm + duration] fits inside [start_hour:00, end_hour:00]."""
    start = hour * 60 + minute
    return start >= start_hour * 60 and start + duration_minutes <= end_hour * 60


def _extract_clock(normalized: str) -> Optional[tuple[int, int, bool]]:
    """Return (hour, minute, spelled_out) for the most explicit time found."""
    clock = _CLOCK_RE.search(normalized)
    if clock:
        return int(clock.group(1)), int(clock.group(2)), False

    for pattern in (_MARKED_HOUR_RE, _A_LAS_RE, _BARE_HOUR_RE):
        found = pattern.search(normalized)
        if found:
            return int(found.group(1)), 0, False

    if NOON_PATTERN.search(normalized):
        return 12, 0, True
    if MIDNIGHT_PATTERN.search(normalized):
        return 0, 0, True
    return None


def parse_flexible_time(
    text: str,
    business_start_hour: int = 9,
    business_end_hour: int = 15,
    appointment_minutes: int = 30,
) -> TimeParseResult:
    """Extract a time of day and classify it against business hours.

    "1 pm" -> ok(13, 0); "8" (no marker, before opening) ->
    clarify(20:00); "20:00" with a 15:00 close -> out_of_range(20, 0).
    A start whose appointment would run past closing ("15:00", "14:45"
    with 30 minutes) is out_of_range as well.
    The parser never guesses AM/PM silently for early hours; it asks.
    """
    normalized = normalize_text(text)
    if not normalized:
        return TimeParseResult.invalid()

    clock = _extract_clock(normalized)
    if clock is None:
        return TimeParseResult.invalid()

    hour, minute, spelled_out = clock
    if minute > 59:
        return TimeParseResult.invalid()

    if spelled_out:
        if not is_within_business_hours(
            hour, minute, business_start_hour, business_end_hour, appointment_minutes
        ):
            return TimeParseResult.out_of_range(hour, minute)
        return TimeParseResult.ok(hour, minute)

    mentions_afternoon = bool(AFTERNOON_MARKERS.search(normalized))
    mentions_morning = bool(MORNING_MARKERS.search(normalized))

    if mentions_afternoon and hour < 12:
        hour += 12

    if mentions_morning and hour == 12:
        hour = 0

    if not mentions_afternoon and not mentions_morning and hour <= 12:
        if 0 < hour < business_start_hour:
            suggested = hour + 12 if hour + 12 <= 23 else hour
            return TimeParseResult.clarify(TimeParts(suggested, minute))

    if hour > 23:
        return TimeParseResult.invalid()

    if not is_within_business_hours(
        hour, minute, business_start_hour, business_end_hour, appointment_minutes
    ):
        return TimeParseResult.out_of_range(hour, minute)

    return TimeParseResult.ok(hour, minute)


def has_explicit_time_reference(text: str) -> bool:
    """True when the message mentions a clock time ("a las 11", "13:30", "1pm")."""
    normalized = normalize_text(text)
    if not normalized:
        return False
    return bool(TIME_INDICATOR_PATTERN.search(normalized))


def extract_time_zone(text: str) -> Optional[str]:
    """Find a zone like "America/Bogota", "UTC-5" or "GMT-3" in a message."""
    if not text:
        return None
    found = TIMEZONE_PATTERN.search(text)
    if not found:
        return None
    return normalize_zone_input(found.group(0))
