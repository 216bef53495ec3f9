"""
Booking Conversation Flow.

Step handlers for the booking conversation:

    collect_name -> collect_email -> collect_date -> collect_time
        -> collect_notes -> finalize -> (reset)

Each handler mutates the Turn's UserState in place; the engine persists
the whole state once the turn is over. Cancellation keywords reset the
session from any step.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Optional

from app.core.scheduling.availability import (
    AvailabilityEngine,
    SlotCheck,
    SlotCheckStatus,
    Slot,
)
from app.core.scheduling.errors import (
    CalendarGatewayError,
    CalendarNotConfiguredError,
    InvalidDateError,
    InvalidTimeError,
)
from app.core.scheduling.parser import (
    TimeParseStatus,
    extract_time_zone,
    parse_flexible_date,
    parse_flexible_time,
)
from app.core.scheduling.phrases import (
    ASAP_PATTERNS,
    CANCEL_PATTERNS,
    DATE_CHANGE_PATTERNS,
    EMAIL_PATTERN,
    EMPTY_NOTES_PATTERN,
    matches_any,
    normalize_text,
)
from app.core.scheduling.response import ResponseGenerator
from app.core.scheduling.timeutils import (
    DateParts,
    is_valid_zone,
    parse_date_parts,
    parse_time_parts,
)
from app.core.session.models import (
    SchedulingData,
    SchedulingSession,
    SchedulingStep,
    UserState,
)

logger = logging.getLogger(__name__)


@dataclass
class Turn:
    """One inbound message being handled, plus what we answer."""

    user_id: str
    text: str
    now: datetime
    state: UserState
    messages: list[str] = field(default_factory=list)
    booking_id: Optional[str] = None
    event_link: Optional[str] = None

    def say(self, *messages: str) -> None:
        self.messages.extend(message for message in messages if message)

    @property
    def session(self) -> Optional[SchedulingSession]:
        return self.state.scheduling

    def move_to(self, step: SchedulingStep) -> None:
        logger.debug(f"{self.user_id}: {self.session.step.value} -> {step.value}")
        self.session.step = step


StepHandler = Callable[[Turn], Awaitable[bool]]


class BookingFlow:
    """
    State machine for the booking conversation.

    Uses:
    - parser for dates and times typed by the user
    - AvailabilityEngine for slot listings and validation
    - ResponseGenerator for every message sent back
    """

    def __init__(
        self,
        availability: AvailabilityEngine,
        responses: Optional[ResponseGenerator] = None,
    ):
        """Initialize flow.

        Args:
            availability: Availability engine bound to this turn's clock
            responses: Message templates
        """
        self.availability = availability
        self.policy = availability.policy
        self.responses = responses or ResponseGenerator(self.policy)
        self._handlers: dict[SchedulingStep, StepHandler] = {
            SchedulingStep.COLLECT_NAME: self._collect_name,
            SchedulingStep.COLLECT_EMAIL: self._collect_email,
            SchedulingStep.COLLECT_DATE: self._collect_date,
            SchedulingStep.COLLECT_TIME: self._collect_time,
            SchedulingStep.COLLECT_NOTES: self._collect_notes,
        }

    @property
    def calendar_ready(self) -> bool:
        return self.availability.calendar.is_configured()

    # === Entry points ===

    async def start(self, turn: Turn) -> bool:
        """Begin a booking for this user."""
        if not self.calendar_ready:
            turn.say(self.responses.booking_unavailable())
            return True

        turn.state.scheduling = SchedulingSession(
            step=SchedulingStep.COLLECT_NAME,
            data=SchedulingData(phone=turn.user_id),
        )
        turn.state.availability = None
        turn.say(self.responses.ask_name())
        logger.info(f"Booking started for {turn.user_id}")
        return True

    async def cancel(self, turn: Turn) -> bool:
        turn.state.reset()
        turn.say(self.responses.cancelled())
        logger.info(f"Booking cancelled by {turn.user_id}")
        return True

    async def advance(self, turn: Turn) -> bool:
        """Handle a message for the booking in progress.

        Returns:
            False when the message was not handled (corrupt step)
        """
        if matches_any(CANCEL_PATTERNS, turn.text):
            return await self.cancel(turn)

        handler = self._handlers.get(turn.session.step)
        if handler is None:
            # finalize is never a resting step
            logger.warning(f"Unexpected step {turn.session.step.value} for {turn.user_id}, resetting")
            turn.state.reset()
            return False

        return await handler(turn)

    # === Steps ===

    async def _collect_name(self, turn: Turn) -> bool:
        turn.session.data.name = turn.text.strip()
        turn.move_to(SchedulingStep.COLLECT_EMAIL)
        turn.say(self.responses.ask_email())
        return True

    async def _collect_email(self, turn: Turn) -> bool:
        email = turn.text.strip().lower()
        if not EMAIL_PATTERN.match(email):
            turn.say(self.responses.invalid_email())
            return True

        turn.session.data.email = email
        turn.move_to(SchedulingStep.COLLECT_DATE)
        turn.say(self.responses.ask_date())
        return True

    async def _collect_date(self, turn: Turn) -> bool:
        if matches_any(ASAP_PATTERNS, turn.text):
            await self.offer_earliest(turn)
            return True

        date_parts = parse_flexible_date(turn.text, turn.now)
        if date_parts is None:
            turn.say(self.responses.invalid_date())
            return True

        await self.offer_date(turn, date_parts)
        return True

    async def _collect_time(self, turn: Turn) -> bool:
        data = turn.session.data

        if matches_any(DATE_CHANGE_PATTERNS, turn.text):
            data.date = None
            data.time = None
            turn.state.availability = None
            turn.move_to(SchedulingStep.COLLECT_DATE)
            turn.say(self.responses.ask_date_again())
            return True

        new_date = parse_flexible_date(turn.text, turn.now)
        if new_date is not None:
            await self.offer_date(turn, new_date)
            return True

        try:
            date_parts = parse_date_parts(data.date)
        except InvalidDateError:
            data.date = None
            turn.move_to(SchedulingStep.COLLECT_DATE)
            turn.say(self.responses.date_required())
            return True

        if matches_any(ASAP_PATTERNS, turn.text):
            await self.offer_earliest(turn, date_parts)
            return True

        zone = extract_time_zone(turn.text) or data.time_zone or self.policy.default_timezone
        if not is_valid_zone(zone):
            turn.say(self.responses.invalid_zone())
            return True

        parsed = parse_flexible_time(
            turn.text,
            business_start_hour=self.policy.business_start_hour,
            business_end_hour=self.policy.business_end_hour,
            appointment_minutes=self.policy.appointment_minutes,
        )
        if parsed.status == TimeParseStatus.INVALID:
            turn.say(self.responses.invalid_time())
            return True
        if parsed.status == TimeParseStatus.CLARIFY:
            turn.say(self.responses.clarify_time(parsed.suggestion))
            return True
        if parsed.status == TimeParseStatus.OUT_OF_RANGE:
            turn.say(self.responses.time_out_of_range(parsed.time_parts))
            return True

        check = await self.availability.check_slot(date_parts, parsed.time_parts, zone)
        if not check.ok:
            await self._reject_slot(turn, check)
            return True

        data.time = check.time_parts.hhmm()
        data.time_zone = zone
        turn.state.availability = None
        turn.move_to(SchedulingStep.COLLECT_NOTES)
        turn.say(self.responses.ask_notes())
        return True

    async def _collect_notes(self, turn: Turn) -> bool:
        text = turn.text.strip()
        turn.session.data.notes = "" if EMPTY_NOTES_PATTERN.match(normalize_text(text)) else text
        turn.move_to(SchedulingStep.FINALIZE)
        return await self.finalize(turn)

    async def finalize(self, turn: Turn) -> bool:
        """Re-validate the stored date/time and create the event.

        Stored values are checked again (format, zone, weekend, notice,
        conflict) because the user may have idled since choosing them.
        The conflict check runs immediately before create_event.
        """
        data = turn.session.data
        zone = data.time_zone or self.policy.default_timezone

        try:
            date_parts = parse_date_parts(data.date)
            time_parts = parse_time_parts(data.time)
        except (InvalidDateError, InvalidTimeError) as e:
            logger.warning(f"Stored date/time invalid for {turn.user_id}: {e}")
            data.date = None
            data.time = None
            turn.move_to(SchedulingStep.COLLECT_DATE)
            turn.say(self.responses.stored_datetime_invalid())
            return True

        if not self.calendar_ready:
            turn.say(self.responses.booking_config_error())
            turn.state.reset()
            return True

        check = await self.availability.check_slot(date_parts, time_parts, zone)
        if not check.ok:
            await self._reject_slot(turn, check)
            return True

        try:
            event = await self.availability.calendar.create_event(
                summary=self.responses.event_summary(data.name),
                description=self.responses.event_description(
                    name=data.name,
                    email=data.email,
                    phone=data.phone,
                    notes=data.notes,
                ),
                start_datetime=check.start_iso,
                end_datetime=check.end_iso,
                time_zone=zone,
                attendees=[{"email": data.email, "displayName": data.name}],
            )
        except CalendarNotConfiguredError as e:
            logger.error(f"Calendar not configured while booking for {turn.user_id}: {e}")
            turn.say(self.responses.booking_config_error())
        except CalendarGatewayError as e:
            logger.error(f"Failed to create event for {turn.user_id}: {e}")
            turn.say(self.responses.booking_failed())
        else:
            turn.booking_id = event.id
            turn.event_link = event.html_link
            turn.say(
                *self.responses.booking_confirmed(
                    date_parts,
                    time_parts,
                    zone,
                    data.email,
                    event.html_link,
                )
            )
            logger.info(f"Booking {event.id} created for {turn.user_id} on {check.start_iso} ({zone})")

        # Creation is not retried once attempted
        turn.state.reset()
        return True

    async def _reject_slot(self, turn: Turn, check: SlotCheck) -> None:
        """Route a failed slot check to the step that can fix it."""
        data = turn.session.data
        responses = self.responses
        status = check.status

        if status == SlotCheckStatus.WEEKEND:
            data.date = None
            data.time = None
            turn.move_to(SchedulingStep.COLLECT_DATE)
            turn.say(responses.weekend())
            return

        turn.move_to(SchedulingStep.COLLECT_TIME)

        if status == SlotCheckStatus.INVALID_ZONE:
            data.time_zone = None
            turn.say(responses.invalid_zone())
        elif status == SlotCheckStatus.UNRESOLVABLE:
            turn.say(responses.unresolvable_datetime())
        elif status == SlotCheckStatus.OUTSIDE_HOURS:
            turn.say(responses.time_out_of_range(check.time_parts))
        elif status == SlotCheckStatus.OFF_GRID:
            await self.offer_alternatives(
                turn,
                start=check.start,
                zone=check.time_zone,
                intro=responses.off_grid(check.time_parts),
                empty=responses.no_conflict_alternatives(),
            )
        elif status == SlotCheckStatus.INSUFFICIENT_NOTICE:
            turn.say(responses.insufficient_notice())
            await self.offer_alternatives(
                turn,
                start=None,
                zone=check.time_zone,
                intro=responses.notice_alternatives_intro(check.time_zone),
                empty=responses.no_notice_alternatives(),
            )
        elif status == SlotCheckStatus.CONFLICT:
            turn.say(responses.conflict())
            await self.offer_alternatives(
                turn,
                start=check.start,
                zone=check.time_zone,
                intro=responses.conflict_alternatives_intro(check.time_zone),
                empty=responses.no_conflict_alternatives(),
            )
        else:
            turn.say(responses.availability_check_failed())

    # === Slot offering (shared with the availability interceptors) ===

    def present_slots(
        self,
        turn: Turn,
        slots: list[Slot],
        intro: Optional[str] = None,
        closing: Optional[str] = None,
    ) -> None:
        turn.say(self.responses.format_slots(slots, turn.now, intro=intro, closing=closing))
        turn.state.availability = self.availability.cursor_after(slots)

    async def offer_date(self, turn: Turn, date_parts: DateParts) -> None:
        """List a day's slots and wait for a time on that day."""
        data = turn.session.data
        if not self.calendar_ready:
            turn.say(self.responses.calendar_not_configured())
            return

        zone = self.policy.default_timezone
        slots = await self.availability.slots_for_date(date_parts, zone=zone)
        if not slots:
            data.date = None
            data.time = None
            turn.state.availability = None
            turn.move_to(SchedulingStep.COLLECT_DATE)
            turn.say(self.responses.no_slots_for_chosen_date(date_parts))
            return

        data.date = date_parts.iso()
        data.time = None
        turn.move_to(SchedulingStep.COLLECT_TIME)
        turn.say(self.responses.format_day_slots(slots, date_parts, zone))
        turn.state.availability = self.availability.cursor_after(slots)
        turn.say(self.responses.ask_time(date_parts))

    async def offer_earliest(self, turn: Turn, date_parts: Optional[DateParts] = None) -> None:
        """Offer the single earliest slot, optionally on one day."""
        if not self.calendar_ready:
            turn.say(self.responses.calendar_not_configured())
            return

        zone = self.policy.default_timezone
        slot = await self.availability.earliest_slot(date_parts, zone=zone)
        if slot is None:
            turn.state.availability = None
            turn.say(self.responses.no_earliest_slot(date_parts))
            return

        turn.say(*self.responses.earliest_slot(slot, turn.now, on_date=date_parts is not None))
        turn.state.availability = self.availability.cursor_after([slot])

    async def offer_alternatives(
        self,
        turn: Turn,
        start: Optional[datetime],
        zone: str,
        intro: str,
        empty: str,
    ) -> None:
        """Suggest a couple of nearby free slots after a rejected time."""
        slots = await self.availability.find_slots(
            start=start,
            max_slots=self.policy.quick_suggestion_slots,
            zone=zone,
        )
        if not slots:
            turn.state.availability = None
            turn.say(empty)
            return
        self.present_slots(turn, slots, intro=intro)
