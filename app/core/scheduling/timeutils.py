"""
Calendar and time-zone arithmetic for the scheduling core.

Everything here is pure: instants are timezone-aware UTC datetimes,
wall-clock values are DateParts/TimeParts. Zone identifiers may be IANA
names ("America/Mexico_City") or fixed offsets ("UTC-5", "GMT+3").
"""

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.core.clock import utcnow
from app.core.scheduling.errors import InvalidDateError, InvalidTimeError
from app.core.scheduling.phrases import MONTH_NAMES

# Refinement passes used when resolving wall clock -> instant
_MAX_ZONE_PASSES = 3

_OFFSET_ZONE_RE = re.compile(r"^(?:UTC|GMT)([+-])(\d{1,2})(?::?(\d{2}))?$", re.IGNORECASE)


@dataclass(frozen=True)
class DateParts:
    """A calendar-valid Gregorian date."""

    year: int
    month: int
    day: int

    @classmethod
    def from_date(cls, value: date) -> "DateParts":
        return cls(value.year, value.month, value.day)

    def to_date(self) -> date:
        return date(self.year, self.month, self.day)

    def iso(self) -> str:
        """Format as YYYY-MM-DD."""
        return f"{self.year:04d}-{self.month:02d}-{self.day:02d}"


@dataclass(frozen=True)
class TimeParts:
    """A wall-clock time without seconds."""

    hour: int
    minute: int

    def hhmm(self) -> str:
        """Format as HH:MM."""
        return f"{self.hour:02d}:{self.minute:02d}"


@dataclass(frozen=True)
class ShiftedDateTime:
    """Result of add_minutes()."""

    date_parts: DateParts
    time_parts: TimeParts
    iso: str


def make_date_parts(year: int, month: int, day: int) -> Optional[DateParts]:
    """Build DateParts, returning None for dates like Feb 30."""
    try:
        candidate = date(year, month, day)
    except (ValueError, OverflowError):
        return None
    return DateParts.from_date(candidate)


def parse_date_parts(value: str) -> DateParts:
    """Parse an ISO "YYYY-MM-DD" date.

    Raises:
        InvalidDateError: If the text is malformed or the date does not exist
    """
    pieces = str(value or "").strip().split("-")
    if len(pieces) != 3:
        raise InvalidDateError(f"Invalid date: {value!r}")

    try:
        year, month, day = (int(piece) for piece in pieces)
    except ValueError:
        raise InvalidDateError(f"Invalid date: {value!r}") from None

    parts = make_date_parts(year, month, day)
    if parts is None:
        raise InvalidDateError(f"Date does not exist: {value!r}")
    return parts


def parse_time_parts(value: str) -> TimeParts:
    """Parse an "HH:MM" time.

    Raises:
        InvalidTimeError: If the text is malformed or out of range
    """
    pieces = str(value or "").strip().split(":")
    if len(pieces) != 2:
        raise InvalidTimeError(f"Invalid time: {value!r}")

    try:
        hour, minute = int(pieces[0]), int(pieces[1])
    except ValueError:
        raise InvalidTimeError(f"Invalid time: {value!r}") from None

    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise InvalidTimeError(f"Time out of range: {value!r}")
    return TimeParts(hour, minute)


def normalize_zone_input(raw_zone: Optional[str]) -> Optional[str]:
    """Normalize a zone typed by a user: "gmt-5" -> "UTC-5"."""
    if not raw_zone:
        return None

    raw_zone = raw_zone.strip()
    if re.match(r"^GMT[+-]\d{1,2}$", raw_zone, re.IGNORECASE):
        return "UTC" + raw_zone[3:]
    if re.match(r"^UTC[+-]\d{1,2}$", raw_zone, re.IGNORECASE):
        return raw_zone.upper()
    return raw_zone


def resolve_zone(zone: Optional[str]) -> Optional[tzinfo]:
    """Resolve a zone identifier to a tzinfo, or None if unknown."""
    if not zone or not isinstance(zone, str):
        return None

    offset = _OFFSET_ZONE_RE.match(zone.strip())
    if offset:
        sign = -1 if offset.group(1) == "-" else 1
        hours = int(offset.group(2))
        minutes = int(offset.group(3) or 0)
        if hours > 14 or minutes > 59:
            return None
        delta = timedelta(hours=hours, minutes=minutes) * sign
        return timezone(delta, name=zone.strip().upper())

    if zone.strip().upper() == "UTC":
        return timezone.utc

    try:
        return ZoneInfo(zone.strip())
    except (ZoneInfoNotFoundError, ValueError, OSError):
        return None


def _require_zone(zone: str) -> tzinfo:
    tz = resolve_zone(zone)
    if tz is None:
        raise ValueError(f"Unknown time zone: {zone!r}")
    return tz


def is_valid_zone(zone: Optional[str]) -> bool:
    """Probe a zone by rendering the current time in it. Fails closed."""
    tz = resolve_zone(zone)
    if tz is None:
        return False
    try:
        utcnow().astimezone(tz).strftime("%Y-%m-%d %H:%M")
    except (ValueError, OverflowError, OSError):
        return False
    return True


def to_zoned_instant(
    date_parts: DateParts,
    time_parts: TimeParts,
    zone: str,
) -> Optional[datetime]:
    """Resolve a wall-clock date/time in a zone to an absolute UTC instant.

    Starts by reading the wall clock as if it were UTC, then corrects by
    the difference between the desired wall clock and what the zone shows
    for the guess. A few passes settle zones with DST or fractional
    offsets.

    Returns:
        Timezone-aware UTC datetime, or None for an unresolvable zone
    """
    if date_parts is None or time_parts is None:
        return None

    tz = resolve_zone(zone)
    if tz is None:
        return None

    try:
        desired = datetime(
            date_parts.year,
            date_parts.month,
            date_parts.day,
            time_parts.hour,
            time_parts.minute,
        )
    except ValueError:
        return None

    guess = desired.replace(tzinfo=timezone.utc)
    for _ in range(_MAX_ZONE_PASSES):
        shown = guess.astimezone(tz).replace(tzinfo=None)
        diff = desired - shown
        guess = guess + diff
        if abs(diff) < timedelta(seconds=1):
            break

    return guess


def build_iso_datetime(date_parts: DateParts, time_parts: TimeParts) -> str:
    """Format as a local ISO datetime without offset (YYYY-MM-DDTHH:MM:00)."""
    return f"{date_parts.iso()}T{time_parts.hhmm()}:00"


def add_minutes(
    date_parts: DateParts,
    time_parts: TimeParts,
    minutes: int,
) -> ShiftedDateTime:
    """Add minutes to a wall-clock date/time, rolling over days as needed."""
    base = datetime(
        date_parts.year,
        date_parts.month,
        date_parts.day,
        time_parts.hour,
        time_parts.minute,
    )
    shifted = base + timedelta(minutes=minutes)

    new_date = DateParts(shifted.year, shifted.month, shifted.day)
    new_time = TimeParts(shifted.hour, shifted.minute)
    return ShiftedDateTime(
        date_parts=new_date,
        time_parts=new_time,
        iso=build_iso_datetime(new_date, new_time),
    )


def date_parts_in_zone(instant: datetime, zone: str) -> DateParts:
    """Calendar date of an instant as observed in a zone."""
    local = instant.astimezone(_require_zone(zone))
    return DateParts(local.year, local.month, local.day)


def time_parts_in_zone(instant: datetime, zone: str) -> TimeParts:
    """Wall-clock time of an instant as observed in a zone."""
    local = instant.astimezone(_require_zone(zone))
    return TimeParts(local.hour, local.minute)


def is_weekend(instant: datetime, zone: str) -> bool:
    """True for Saturday/Sunday as observed in the zone."""
    return instant.astimezone(_require_zone(zone)).weekday() >= 5


def days_between(start: DateParts, end: DateParts) -> int:
    return (end.to_date() - start.to_date()).days


def format_date_for_humans(date_parts: DateParts) -> str:
    """Spanish long date, e.g. 15 de mayo de 2024."""
    month = MONTH_NAMES[date_parts.month - 1]
    return f"{date_parts.day} de {month} de {date_parts.year}"


def format_time_for_humans(time_parts: TimeParts) -> str:
    """Zero-padded 24-hour time, e.g. 09:30."""
    return time_parts.hhmm()
