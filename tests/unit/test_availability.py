"""Tests for the availability engine."""

import pytest
from datetime import datetime, timedelta, timezone

from app.core.scheduling.availability import (
    AvailabilityEngine,
    SchedulingPolicy,
    SlotCheckStatus,
    align_slot_start,
)
from app.core.scheduling.calendar_client import (
    BusyInterval,
    build_busy_intervals,
    parse_event_boundary,
)
from app.core.scheduling.timeutils import DateParts, TimeParts
from tests.fakes import NOW, ZONE, FakeCalendar, busy_event, local


def make_engine(calendar, now=NOW, **policy):
    return AvailabilityEngine(
        calendar,
        policy=SchedulingPolicy(default_timezone=ZONE, **policy),
        clock=lambda: now,
    )


class TestAlignSlotStart:
    """Test grid alignment."""

    def test_before_day_start(self):
        day_start = datetime(2024, 5, 14, 15, tzinfo=timezone.utc)
        assert align_slot_start(day_start, day_start - timedelta(hours=2), 30) == day_start

    def test_rounds_up(self):
        day_start = datetime(2024, 5, 14, 15, tzinfo=timezone.utc)
        aligned = align_slot_start(day_start, day_start + timedelta(minutes=70), 30)
        assert aligned == day_start + timedelta(minutes=90)

    def test_exact_grid_point(self):
        day_start = datetime(2024, 5, 14, 15, tzinfo=timezone.utc)
        aligned = align_slot_start(day_start, day_start + timedelta(minutes=60), 30)
        assert aligned == day_start + timedelta(minutes=60)


class TestBusyIntervals:
    """Test event -> busy interval conversion."""

    def test_date_time_boundary(self):
        parsed = parse_event_boundary({"dateTime": "2024-05-14T10:00:00-06:00"})
        assert parsed == datetime(2024, 5, 14, 16, tzinfo=timezone.utc)

    def test_all_day_boundary(self):
        parsed = parse_event_boundary({"date": "2024-05-14"})
        assert parsed == datetime(2024, 5, 14, tzinfo=timezone.utc)

    def test_missing_boundary(self):
        assert parse_event_boundary({}) is None
        assert parse_event_boundary(None) is None

    def test_skips_cancelled_and_unreadable(self):
        events = [
            busy_event(local(2024, 5, 14, 12), local(2024, 5, 14, 13)),
            busy_event(local(2024, 5, 14, 9), local(2024, 5, 14, 10), status="cancelled"),
            {"status": "confirmed", "start": {}, "end": {}},
            busy_event(local(2024, 5, 14, 10), local(2024, 5, 14, 11)),
        ]

        intervals = build_busy_intervals(events)

        assert len(intervals) == 2
        assert intervals[0].start < intervals[1].start

    def test_touching_intervals_do_not_overlap(self):
        interval = BusyInterval(local(2024, 5, 14, 10), local(2024, 5, 14, 11))

        assert interval.overlaps(local(2024, 5, 14, 11), local(2024, 5, 14, 11, 30)) is False
        assert interval.overlaps(local(2024, 5, 14, 10, 30), local(2024, 5, 14, 11)) is True


class TestFindSlots:
    """Test slot search."""

    @pytest.mark.asyncio
    async def test_first_slots_respect_notice(self):
        """At 08:00 local with 60 min notice the first slot is 09:00."""
        engine = make_engine(FakeCalendar())

        slots = await engine.find_slots()

        assert len(slots) == 5
        assert slots[0].start == local(2024, 5, 14, 9)
        assert [slot.time for slot in slots] == ["09:00", "09:30", "10:00", "10:30", "11:00"]

    @pytest.mark.asyncio
    async def test_slots_have_fixed_length_and_do_not_overlap(self):
        engine = make_engine(FakeCalendar())

        slots = await engine.find_slots(max_slots=30)

        for slot in slots:
            assert slot.end - slot.start == timedelta(minutes=30)
        for previous, current in zip(slots, slots[1:]):
            assert current.start >= previous.end

    @pytest.mark.asyncio
    async def test_notice_is_aligned_to_grid(self):
        engine = make_engine(FakeCalendar(), now=local(2024, 5, 14, 9, 10))

        slots = await engine.find_slots(max_slots=1)

        assert slots[0].start == local(2024, 5, 14, 10, 30)

    @pytest.mark.asyncio
    async def test_skips_busy_events(self):
        calendar = FakeCalendar(events=[busy_event(local(2024, 5, 14, 9), local(2024, 5, 14, 10))])
        engine = make_engine(calendar)

        slots = await engine.find_slots(max_slots=2)

        assert [slot.time for slot in slots] == ["10:00", "10:30"]

    @pytest.mark.asyncio
    async def test_cancelled_events_do_not_block(self):
        calendar = FakeCalendar(
            events=[busy_event(local(2024, 5, 14, 9), local(2024, 5, 14, 10), status="cancelled")]
        )
        engine = make_engine(calendar)

        slots = await engine.find_slots(max_slots=1)

        assert slots[0].time == "09:00"

    @pytest.mark.asyncio
    async def test_all_day_event_blocks_day(self):
        calendar = FakeCalendar(
            events=[{"status": "confirmed", "start": {"date": "2024-05-14"}, "end": {"date": "2024-05-15"}}]
        )
        engine = make_engine(calendar)

        slots = await engine.find_slots(max_slots=1)

        assert slots[0].date_parts == DateParts(2024, 5, 15)

    @pytest.mark.asyncio
    async def test_never_on_weekends(self):
        """Friday after closing: next slot is Monday morning."""
        engine = make_engine(FakeCalendar(), now=local(2024, 5, 17, 14))

        slots = await engine.find_slots(max_slots=30)

        assert slots[0].start == local(2024, 5, 20, 9)
        assert all(slot.date_parts.to_date().weekday() < 5 for slot in slots)

    @pytest.mark.asyncio
    async def test_slots_end_by_close(self):
        engine = make_engine(FakeCalendar())

        slots = await engine.slots_for_date(DateParts(2024, 5, 14), max_slots=50)

        assert len(slots) == 12
        assert slots[-1].end_time_parts == TimeParts(15, 0)
        assert all(slot.end <= local(2024, 5, 14, 15) for slot in slots)

    @pytest.mark.asyncio
    async def test_calendar_not_configured(self):
        calendar = FakeCalendar(configured=False)
        engine = make_engine(calendar)

        assert await engine.find_slots() == []
        assert calendar.list_calls == 0

    @pytest.mark.asyncio
    async def test_invalid_zone(self):
        engine = make_engine(FakeCalendar())
        assert await engine.find_slots(zone="Mars/Olympus_Mons") == []

    @pytest.mark.asyncio
    async def test_gateway_error_stops_walk(self):
        calendar = FakeCalendar()
        calendar.fail_list = True
        engine = make_engine(calendar)

        assert await engine.find_slots() == []
        assert calendar.list_calls == 1

    @pytest.mark.asyncio
    async def test_lookahead_exhausted(self):
        calendar = FakeCalendar(
            events=[{"status": "confirmed", "start": {"date": "2024-05-14"}, "end": {"date": "2024-05-15"}}]
        )
        engine = make_engine(calendar)

        assert await engine.find_slots(max_days=1) == []


class TestSlotHelpers:
    """Test per-day search, earliest slot and pagination."""

    @pytest.mark.asyncio
    async def test_slots_for_other_date(self):
        engine = make_engine(FakeCalendar())

        slots = await engine.slots_for_date(DateParts(2024, 5, 16), max_slots=3)

        assert [slot.date for slot in slots] == ["2024-05-16"] * 3
        assert slots[0].time == "09:00"

    @pytest.mark.asyncio
    async def test_slots_for_weekend_date(self):
        engine = make_engine(FakeCalendar())
        assert await engine.slots_for_date(DateParts(2024, 5, 18)) == []

    @pytest.mark.asyncio
    async def test_earliest_slot(self):
        engine = make_engine(FakeCalendar())

        slot = await engine.earliest_slot(DateParts(2024, 5, 16))

        assert slot.start == local(2024, 5, 16, 9)

    @pytest.mark.asyncio
    async def test_more_slots_continues_after_cursor(self):
        engine = make_engine(FakeCalendar())

        first = await engine.find_slots(max_slots=5)
        cursor = engine.cursor_after(first)
        more = await engine.more_slots(cursor, max_slots=5)

        assert cursor.next_search_at == first[-1].end
        assert cursor.slot_minutes == 30
        assert more[0].start == first[-1].end
        assert more[0].time == "11:30"

    def test_cursor_after_empty(self):
        engine = make_engine(FakeCalendar())
        assert engine.cursor_after([]) is None


class TestCheckSlot:
    """Test validation of a concrete date/time."""

    @pytest.mark.asyncio
    async def test_ok(self):
        engine = make_engine(FakeCalendar())

        check = await engine.check_slot(DateParts(2024, 5, 15), TimeParts(10, 0))

        assert check.ok
        assert check.start == local(2024, 5, 15, 10)
        assert check.start_iso == "2024-05-15T10:00:00"
        assert check.end_iso == "2024-05-15T10:30:00"

    @pytest.mark.asyncio
    async def test_weekend(self):
        engine = make_engine(FakeCalendar())

        check = await engine.check_slot(DateParts(2024, 5, 18), TimeParts(10, 0))

        assert check.status == SlotCheckStatus.WEEKEND

    @pytest.mark.asyncio
    async def test_insufficient_notice(self):
        engine = make_engine(FakeCalendar(), now=local(2024, 5, 14, 10))

        check = await engine.check_slot(DateParts(2024, 5, 14), TimeParts(10, 30))

        assert check.status == SlotCheckStatus.INSUFFICIENT_NOTICE

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "time_parts",
        [TimeParts(15, 0), TimeParts(14, 45), TimeParts(8, 30), TimeParts(23, 45)],
    )
    async def test_appointment_must_fit_business_hours(self, time_parts):
        calendar = FakeCalendar()
        engine = make_engine(calendar)

        check = await engine.check_slot(DateParts(2024, 5, 15), time_parts)

        assert check.status == SlotCheckStatus.OUTSIDE_HOURS
        assert calendar.list_calls == 0

    @pytest.mark.asyncio
    async def test_last_start_of_day(self):
        engine = make_engine(FakeCalendar())

        check = await engine.check_slot(DateParts(2024, 5, 15), TimeParts(14, 30))

        assert check.ok
        assert check.end_iso == "2024-05-15T15:00:00"

    @pytest.mark.asyncio
    async def test_off_grid(self):
        calendar = FakeCalendar()
        engine = make_engine(calendar)

        check = await engine.check_slot(DateParts(2024, 5, 15), TimeParts(10, 17))

        assert check.status == SlotCheckStatus.OFF_GRID
        assert check.start == local(2024, 5, 15, 10, 17)
        assert calendar.list_calls == 0

    @pytest.mark.asyncio
    async def test_conflict(self):
        calendar = FakeCalendar(events=[busy_event(local(2024, 5, 15, 10, 15), local(2024, 5, 15, 11))])
        engine = make_engine(calendar)

        check = await engine.check_slot(DateParts(2024, 5, 15), TimeParts(10, 0))

        assert check.status == SlotCheckStatus.CONFLICT

    @pytest.mark.asyncio
    async def test_gateway_error(self):
        calendar = FakeCalendar()
        calendar.fail_list = True
        engine = make_engine(calendar)

        check = await engine.check_slot(DateParts(2024, 5, 15), TimeParts(10, 0))

        assert check.status == SlotCheckStatus.GATEWAY_ERROR

    @pytest.mark.asyncio
    async def test_invalid_zone(self):
        engine = make_engine(FakeCalendar())

        check = await engine.check_slot(DateParts(2024, 5, 15), TimeParts(10, 0), "Nowhere/Land")

        assert check.status == SlotCheckStatus.INVALID_ZONE
        assert check.start is None

    @pytest.mark.asyncio
    async def test_offset_zone(self):
        engine = make_engine(FakeCalendar())

        check = await engine.check_slot(DateParts(2024, 5, 15), TimeParts(10, 0), "UTC-5")

        assert check.ok
        assert check.start == datetime(2024, 5, 15, 15, tzinfo=timezone.utc)
