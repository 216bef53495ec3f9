"""
Scheduling Engine - Main Orchestrator.

Entry point for every inbound chat message. Per message it:
1. Loads the user's state from the store
2. Lets availability queries through first (a specific date, "show
   more", "ASAP", "other date", "horarios disponibles")
3. Routes to the current booking step, or starts a booking on a
   trigger phrase
4. Persists the whole state and returns the messages to send

Messages nobody handled come back with handled=False so the host can
pass them to its other responders.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from app.config import get_settings
from app.core.clock import as_utc, utcnow
from app.core.scheduling.availability import (
    AvailabilityEngine,
    SchedulingPolicy,
    SlotCheckStatus,
)
from app.core.scheduling.calendar_client import CalendarGateway, get_calendar_client
from app.core.scheduling.flow import BookingFlow, Turn
from app.core.scheduling.parser import (
    TimeParseStatus,
    extract_time_zone,
    has_explicit_time_reference,
    parse_flexible_date,
    parse_flexible_time,
)
from app.core.scheduling.phrases import (
    ASAP_PATTERNS,
    AVAILABILITY_QUERY_PATTERNS,
    DATE_CHANGE_PATTERNS,
    FALLBACK_START_KEYWORDS,
    SHOW_MORE_PATTERNS,
    START_PATTERNS,
    matches_any,
    normalize_text,
)
from app.core.scheduling.response import ResponseGenerator
from app.core.scheduling.timeutils import DateParts, is_valid_zone
from app.core.session import SchedulingStep, SessionManager, get_session_manager

logger = logging.getLogger(__name__)


@dataclass
class InboundMessage:
    """Message handed over by the chat transport."""

    user_id: str
    text: str
    received_at: Optional[datetime] = None


@dataclass
class EngineResponse:
    """Response from scheduling engine."""

    messages: list[str] = field(default_factory=list)
    handled: bool = False
    step: Optional[SchedulingStep] = None
    booking_id: Optional[str] = None
    event_link: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        result = {
            "messages": self.messages,
            "handled": self.handled,
            "step": self.step.value if self.step else None,
        }

        if self.booking_id:
            result["booking_id"] = self.booking_id
        if self.event_link:
            result["event_link"] = self.event_link

        return result


class SchedulingEngine:
    """
    Main orchestrator for the scheduling assistant.

    Coordinates:
    - Conversation state (SessionManager)
    - Availability interceptors
    - Booking flow
    - Calendar gateway
    """

    def __init__(
        self,
        calendar: Optional[CalendarGateway] = None,
        store: Optional[SessionManager] = None,
        policy: Optional[SchedulingPolicy] = None,
        responses: Optional[ResponseGenerator] = None,
        clock: Optional[Callable[[], datetime]] = None,
        start_keywords: Optional[list[str]] = None,
    ):
        """Initialize engine with optional dependencies.

        Args:
            calendar: Calendar gateway (Google Calendar by default)
            store: Conversation state store
            policy: Business rules (from settings by default)
            responses: Message templates
            clock: Source of "now" when a message has no received_at
            start_keywords: Extra phrases that start a booking
        """
        self._calendar = calendar
        self._store = store
        self.policy = policy or SchedulingPolicy.from_settings()
        self.responses = responses or ResponseGenerator(self.policy)
        self._clock = clock or utcnow
        if start_keywords is None:
            start_keywords = get_settings().scheduling_keywords_list
        self._start_keywords = [
            keyword
            for keyword in (normalize_text(k) for k in [*FALLBACK_START_KEYWORDS, *start_keywords])
            if keyword
        ]

    def _get_calendar(self) -> CalendarGateway:
        """Get calendar gateway."""
        if self._calendar is None:
            self._calendar = get_calendar_client()
        return self._calendar

    def _get_store(self) -> SessionManager:
        """Get state store."""
        if self._store is None:
            self._store = get_session_manager()
        return self._store

    def _build_flow(self, now: datetime) -> BookingFlow:
        availability = AvailabilityEngine(self._get_calendar(), self.policy, clock=lambda: now)
        return BookingFlow(availability, self.responses)

    async def process(self, message: InboundMessage) -> EngineResponse:
        """Process one inbound message.

        Never raises: unexpected errors are logged and answered with a
        generic apology.

        Args:
            message: Inbound message

        Returns:
            EngineResponse with the messages to send
        """
        text = (message.text or "").strip()
        if not text:
            return EngineResponse()

        try:
            store = self._get_store()
            state = await store.get(message.user_id)

            turn = Turn(
                user_id=message.user_id,
                text=text,
                now=as_utc(message.received_at) if message.received_at else self._clock(),
                state=state,
            )
            handled = await self._dispatch(self._build_flow(turn.now), turn)

            await store.set(message.user_id, turn.state)

            return EngineResponse(
                messages=turn.messages,
                handled=handled,
                step=turn.state.step,
                booking_id=turn.booking_id,
                event_link=turn.event_link,
            )

        except Exception as e:
            logger.error(f"Error processing message from {message.user_id}: {e}", exc_info=True)
            return EngineResponse(
                messages=[self.responses.unexpected_error()],
                handled=True,
            )

    async def _dispatch(self, flow: BookingFlow, turn: Turn) -> bool:
        if turn.session is None and await self._check_specific_date(flow, turn):
            return True

        if await self._answer_availability_query(flow, turn):
            return True

        if turn.session is not None:
            return await flow.advance(turn)

        if self.is_start_request(turn.text):
            return await flow.start(turn)

        return False

    def is_start_request(self, text: str) -> bool:
        """Check whether a message asks to book an appointment."""
        if matches_any(START_PATTERNS, text):
            return True

        normalized = normalize_text(text)
        if not normalized:
            return False
        return any(keyword in normalized for keyword in self._start_keywords)

    # === Availability interceptors ===

    async def _check_specific_date(self, flow: BookingFlow, turn: Turn) -> bool:
        """Answer "¿hay espacio el 15 de mayo (a las 11)?" outside a booking."""
        date_parts = parse_flexible_date(turn.text, turn.now)
        if date_parts is None:
            return False

        responses = self.responses
        if not flow.calendar_ready:
            turn.say(responses.calendar_not_configured())
            return True

        zone = extract_time_zone(turn.text) or self.policy.default_timezone
        turn.state.availability = None

        if not is_valid_zone(zone):
            turn.say(responses.invalid_zone())
            return True

        if not has_explicit_time_reference(turn.text):
            await self._send_day_slots(flow, turn, date_parts, zone)
            return True

        parsed = parse_flexible_time(
            turn.text,
            business_start_hour=self.policy.business_start_hour,
            business_end_hour=self.policy.business_end_hour,
            appointment_minutes=self.policy.appointment_minutes,
        )
        if parsed.status == TimeParseStatus.INVALID:
            turn.say(responses.invalid_time())
            return True
        if parsed.status == TimeParseStatus.CLARIFY:
            turn.say(responses.clarify_time(parsed.suggestion))
            return True
        if parsed.status == TimeParseStatus.OUT_OF_RANGE:
            turn.say(responses.time_out_of_range(parsed.time_parts))
            return True

        check = await flow.availability.check_slot(date_parts, parsed.time_parts, zone)
        status = check.status

        if status == SlotCheckStatus.OK:
            turn.say(responses.slot_available(date_parts, parsed.time_parts, zone))
        elif status == SlotCheckStatus.CONFLICT:
            turn.say(responses.slot_taken())
            await self._send_day_slots(flow, turn, date_parts, zone)
        elif status == SlotCheckStatus.INSUFFICIENT_NOTICE:
            turn.say(responses.insufficient_notice())
            await self._send_day_slots(flow, turn, date_parts, zone)
        elif status == SlotCheckStatus.WEEKEND:
            turn.say(responses.weekend())
        elif status == SlotCheckStatus.OUTSIDE_HOURS:
            turn.say(responses.time_out_of_range(parsed.time_parts))
        elif status == SlotCheckStatus.OFF_GRID:
            turn.say(responses.off_grid(parsed.time_parts))
            await self._send_day_slots(flow, turn, date_parts, zone)
        elif status == SlotCheckStatus.INVALID_ZONE:
            turn.say(responses.invalid_zone())
        elif status == SlotCheckStatus.UNRESOLVABLE:
            turn.say(responses.unresolvable_datetime())
        else:
            turn.say(responses.availability_check_failed())
        return True

    async def _send_day_slots(
        self,
        flow: BookingFlow,
        turn: Turn,
        date_parts: DateParts,
        zone: str,
    ) -> None:
        slots = await flow.availability.slots_for_date(date_parts, zone=zone)
        if not slots:
            turn.state.availability = None
            turn.say(self.responses.no_slots_on_date(date_parts))
            return

        turn.say(
            self.responses.format_day_slots(
                slots,
                date_parts,
                zone,
                closing='Si alguno te funciona, dime "Agendar cita" con el horario elegido y continúo con tu registro.',
            )
        )
        turn.state.availability = flow.availability.cursor_after(slots)

    async def _answer_availability_query(self, flow: BookingFlow, turn: Turn) -> bool:
        responses = self.responses
        in_booking = turn.session is not None

        if not in_booking and matches_any(ASAP_PATTERNS, turn.text):
            await flow.offer_earliest(turn)
            return True

        if not in_booking and matches_any(DATE_CHANGE_PATTERNS, turn.text):
            turn.say(responses.ask_new_date())
            return True

        if matches_any(SHOW_MORE_PATTERNS, turn.text):
            if not flow.calendar_ready:
                turn.say(responses.calendar_not_configured())
                return True

            cursor = turn.state.availability
            if cursor is None:
                turn.say(responses.show_more_without_cursor())
                return True

            slots = await flow.availability.more_slots(cursor, max_slots=self.policy.max_suggestion_slots)
            if not slots:
                turn.state.availability = None
                turn.say(responses.no_more_slots())
                return True

            flow.present_slots(turn, slots, intro=responses.more_slots_intro(cursor.time_zone))
            return True

        if matches_any(AVAILABILITY_QUERY_PATTERNS, turn.text):
            if not flow.calendar_ready:
                turn.say(responses.calendar_not_configured())
                return True

            zone = self.policy.default_timezone
            slots = await flow.availability.find_slots(
                max_slots=self.policy.max_suggestion_slots,
                zone=zone,
            )
            if not slots:
                turn.state.availability = None
                turn.say(responses.no_availability())
                return True

            flow.present_slots(turn, slots, intro=responses.availability_intro(zone))
            return True

        return False

    # === Session Management ===

    async def reset_session(self, user_id: str) -> None:
        """Forget a user's booking and cursor."""
        await self._get_store().set(user_id, None)
        logger.info(f"State reset for {user_id}")


# Singleton
_engine: Optional[SchedulingEngine] = None


def get_scheduling_engine() -> SchedulingEngine:
    """Get singleton SchedulingEngine."""
    global _engine
    if _engine is None:
        _engine = SchedulingEngine()
    return _engine


async def process_message(
    user_id: str,
    text: str,
    received_at: Optional[datetime] = None,
) -> EngineResponse:
    """Process a message with the shared engine.

    Args:
        user_id: Chat user identifier
        text: Message text
        received_at: When the transport received it

    Returns:
        EngineResponse
    """
    engine = get_scheduling_engine()
    return await engine.process(InboundMessage(user_id=user_id, text=text, received_at=received_at))
