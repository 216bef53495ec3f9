"""
Availability engine.

Computes free appointment slots against the calendar gateway and
re-validates a concrete date/time before it is accepted or booked.

Slots:
- Start on the slot grid counted from the business start hour
- Never start before now + minimum notice
- Skip Saturdays and Sundays (as observed in the target zone)
- End no later than the business end hour
- Never overlap an active calendar event
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional

from app.config import Settings, get_settings
from app.core.scheduling.calendar_client import (
    CalendarGateway,
    build_busy_intervals,
    is_slot_free,
)
from app.core.scheduling.errors import CalendarGatewayError
from app.core.scheduling.parser import is_within_business_hours
from app.core.scheduling.timeutils import (
    DateParts,
    TimeParts,
    add_minutes,
    build_iso_datetime,
    date_parts_in_zone,
    is_valid_zone,
    is_weekend,
    time_parts_in_zone,
    to_zoned_instant,
    utcnow,
)
from app.core.session.models import AvailabilityCursor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SchedulingPolicy:
    """Business rules consumed by the scheduling core."""

    default_timezone: str = "America/Mexico_City"
    appointment_minutes: int = 30
    minimum_notice_minutes: int = 60
    business_start_hour: int = 9
    business_end_hour: int = 15
    slot_minutes: int = 30
    max_lookahead_days: int = 14
    max_suggestion_slots: int = 5
    quick_suggestion_slots: int = 2
    organization_name: str = "Asesoría"

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "SchedulingPolicy":
        settings = settings or get_settings()
        return cls(
            default_timezone=settings.default_timezone,
            appointment_minutes=settings.appointment_duration_minutes,
            minimum_notice_minutes=settings.minimum_notice_minutes,
            business_start_hour=settings.business_start_hour,
            business_end_hour=settings.business_end_hour,
            slot_minutes=settings.slot_minutes,
            max_lookahead_days=settings.max_lookahead_days,
            max_suggestion_slots=settings.max_suggestion_slots,
            quick_suggestion_slots=settings.quick_suggestion_slots,
            organization_name=settings.organization_name,
        )

    @property
    def minimum_notice(self) -> timedelta:
        return timedelta(minutes=self.minimum_notice_minutes)


@dataclass(frozen=True)
class Slot:
    """A free appointment window."""

    start: datetime
    end: datetime
    date_parts: DateParts
    time_parts: TimeParts
    end_time_parts: TimeParts
    time_zone: str

    @property
    def date(self) -> str:
        return self.date_parts.iso()

    @property
    def time(self) -> str:
        return self.time_parts.hhmm()

    def to_dict(self) -> dict:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "date": self.date,
            "time": self.time,
            "end_time": self.end_time_parts.hhmm(),
            "time_zone": self.time_zone,
        }


class SlotCheckStatus(str, Enum):
    """Outcome of AvailabilityEngine.check_slot()."""

    OK = "ok"
    INVALID_ZONE = "invalid_zone"
    UNRESOLVABLE = "unresolvable"
    WEEKEND = "weekend"
    OUTSIDE_HOURS = "outside_hours"
    OFF_GRID = "off_grid"
    INSUFFICIENT_NOTICE = "insufficient_notice"
    CONFLICT = "conflict"
    GATEWAY_ERROR = "gateway_error"


@dataclass(frozen=True)
class SlotCheck:
    """Result of validating a concrete date/time for booking."""

    status: SlotCheckStatus
    date_parts: DateParts
    time_parts: TimeParts
    time_zone: str
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    start_iso: Optional[str] = None
    end_iso: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == SlotCheckStatus.OK


def align_slot_start(day_start: datetime, not_before: datetime, slot_minutes: int) -> datetime:
    """First grid point (counted from day_start) at or after not_before."""
    if not_before <= day_start:
        return day_start

    step = timedelta(minutes=slot_minutes)
    elapsed = not_before - day_start
    steps = -(-elapsed // step)  # ceil
    return day_start + steps * step


class AvailabilityEngine:
    """Finds free slots and validates concrete appointment times."""

    def __init__(
        self,
        calendar: CalendarGateway,
        policy: Optional[SchedulingPolicy] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.calendar = calendar
        self.policy = policy or SchedulingPolicy()
        self._clock = clock or utcnow

    def now(self) -> datetime:
        return self._clock()

    async def find_slots(
        self,
        start: Optional[datetime] = None,
        max_slots: Optional[int] = None,
        slot_minutes: Optional[int] = None,
        zone: Optional[str] = None,
        max_days: Optional[int] = None,
    ) -> list[Slot]:
        """Walk forward day by day collecting free slots.

        Args:
            start: Earliest instant to consider (clamped to now + notice)
            max_slots: Stop once this many slots are found
            slot_minutes: Slot length and grid step
            zone: Zone whose business hours and weekdays apply
            max_days: Days to walk (defaults to the lookahead window)

        Returns:
            Up to max_slots slots in chronological order. An empty list
            means no availability in the window.
        """
        policy = self.policy
        max_slots = max_slots or policy.max_suggestion_slots
        slot_minutes = slot_minutes or policy.slot_minutes
        zone = zone or policy.default_timezone
        max_days = max_days or policy.max_lookahead_days

        if not self.calendar.is_configured():
            logger.warning("Calendar not configured, no slots computed")
            return []

        if not is_valid_zone(zone):
            logger.warning(f"Cannot compute slots for invalid zone {zone}")
            return []

        now = self.now()
        earliest = now + policy.minimum_notice
        effective_start = max(start, earliest) if start else earliest

        first_day = date_parts_in_zone(effective_start, zone).to_date()
        slots: list[Slot] = []

        for offset in range(max_days):
            if len(slots) >= max_slots:
                break

            day = DateParts.from_date(first_day + timedelta(days=offset))
            midday = to_zoned_instant(day, TimeParts(12, 0), zone)
            if midday is None or is_weekend(midday, zone):
                continue

            day_start = to_zoned_instant(day, TimeParts(policy.business_start_hour, 0), zone)
            day_end = to_zoned_instant(day, TimeParts(policy.business_end_hour, 0), zone)
            if day_start is None or day_end is None:
                continue

            if max(day_start, effective_start) >= day_end:
                continue

            try:
                events = await self.calendar.list_events(day_start, day_end)
            except CalendarGatewayError as e:
                logger.error(f"Failed to list events for {day.iso()}: {e}")
                break

            busy = build_busy_intervals(events)
            candidate = align_slot_start(day_start, effective_start, slot_minutes)
            step = timedelta(minutes=slot_minutes)

            while len(slots) < max_slots:
                slot_end = candidate + step
                if slot_end > day_end:
                    break
                if is_slot_free(busy, candidate, slot_end):
                    slots.append(self._build_slot(candidate, slot_end, zone))
                candidate = slot_end

        logger.debug(f"Found {len(slots)} slots from {effective_start.isoformat()} in {zone}")
        return slots

    def _build_slot(self, start: datetime, end: datetime, zone: str) -> Slot:
        return Slot(
            start=start,
            end=end,
            date_parts=date_parts_in_zone(start, zone),
            time_parts=time_parts_in_zone(start, zone),
            end_time_parts=time_parts_in_zone(end, zone),
            time_zone=zone,
        )

    async def slots_for_date(
        self,
        date_parts: DateParts,
        zone: Optional[str] = None,
        max_slots: Optional[int] = None,
    ) -> list[Slot]:
        """Free slots on one calendar day only."""
        zone = zone or self.policy.default_timezone
        day_start = to_zoned_instant(date_parts, TimeParts(self.policy.business_start_hour, 0), zone)
        if day_start is None:
            return []

        slots = await self.find_slots(
            start=day_start,
            max_slots=max_slots,
            zone=zone,
            max_days=1,
        )
        return [slot for slot in slots if slot.date_parts == date_parts]

    async def earliest_slot(
        self,
        date_parts: Optional[DateParts] = None,
        zone: Optional[str] = None,
    ) -> Optional[Slot]:
        """The first free slot, optionally restricted to one day."""
        if date_parts is not None:
            slots = await self.slots_for_date(date_parts, zone=zone, max_slots=1)
        else:
            slots = await self.find_slots(max_slots=1, zone=zone)
        return slots[0] if slots else None

    async def more_slots(
        self,
        cursor: AvailabilityCursor,
        max_slots: Optional[int] = None,
    ) -> list[Slot]:
        """Continue a previous listing from its cursor."""
        return await self.find_slots(
            start=cursor.next_search_at,
            max_slots=max_slots,
            slot_minutes=cursor.slot_minutes,
            zone=cursor.time_zone,
        )

    def cursor_after(self, slots: list[Slot]) -> Optional[AvailabilityCursor]:
        """Pagination cursor pointing past the last listed slot."""
        if not slots:
            return None
        last = slots[-1]
        return AvailabilityCursor(
            next_search=last.end.isoformat(),
            time_zone=last.time_zone,
            slot_minutes=int((last.end - last.start).total_seconds() // 60),
        )

    async def check_slot(
        self,
        date_parts: DateParts,
        time_parts: TimeParts,
        zone: Optional[str] = None,
    ) -> SlotCheck:
        """Validate a concrete appointment start.

        Checks, in order: zone validity, wall-clock resolution, weekend,
        business hours (the whole appointment, on the requested zone's
        wall clock), the slot grid, minimum notice and calendar conflicts.
        Gateway failures come back as GATEWAY_ERROR instead of raising.
        """
        zone = zone or self.policy.default_timezone

        def result(status: SlotCheckStatus, **extra) -> SlotCheck:
            return SlotCheck(status, date_parts, time_parts, zone, **extra)

        if not is_valid_zone(zone):
            return result(SlotCheckStatus.INVALID_ZONE)

        start = to_zoned_instant(date_parts, time_parts, zone)
        if start is None:
            return result(SlotCheckStatus.UNRESOLVABLE)

        end = start + timedelta(minutes=self.policy.appointment_minutes)
        shifted = add_minutes(date_parts, time_parts, self.policy.appointment_minutes)
        instants = {
            "start": start,
            "end": end,
            "start_iso": build_iso_datetime(date_parts, time_parts),
            "end_iso": shifted.iso,
        }

        if is_weekend(start, zone):
            return result(SlotCheckStatus.WEEKEND, **instants)

        policy = self.policy
        fits_day = shifted.date_parts == date_parts and is_within_business_hours(
            time_parts.hour,
            time_parts.minute,
            policy.business_start_hour,
            policy.business_end_hour,
            policy.appointment_minutes,
        )
        if not fits_day:
            return result(SlotCheckStatus.OUTSIDE_HOURS, **instants)

        offset = time_parts.hour * 60 + time_parts.minute - policy.business_start_hour * 60
        if offset % policy.slot_minutes:
            return result(SlotCheckStatus.OFF_GRID, **instants)

        if start < self.now() + self.policy.minimum_notice:
            return result(SlotCheckStatus.INSUFFICIENT_NOTICE, **instants)

        try:
            conflict = await self.calendar.has_conflict(start, end)
        except CalendarGatewayError as e:
            logger.error(f"Conflict check failed for {date_parts.iso()} {time_parts.hhmm()}: {e}")
            return result(SlotCheckStatus.GATEWAY_ERROR, **instants)

        if conflict:
            return result(SlotCheckStatus.CONFLICT, **instants)

        return result(SlotCheckStatus.OK, **instants)
