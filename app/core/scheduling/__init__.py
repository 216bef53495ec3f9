"""
Scheduling Module

Provides the scheduling engine, availability search, calendar gateway,
date/time parsing and the booking conversation flow.

Usage:
    from app.core.scheduling import process_message

    response = await process_message(
        user_id="5215512345678",
        text="Agendar cita",
    )
    print(response.messages)  # Replies to send, in order
    print(response.handled)  # False if another responder should answer
"""

# Errors
from app.core.scheduling.errors import (
    SchedulingError,
    InvalidDateError,
    InvalidTimeError,
    CalendarGatewayError,
    CalendarNotConfiguredError,
)

# Calendar Gateway
from app.core.scheduling.calendar_client import (
    CalendarGateway,
    GoogleCalendarClient,
    CreatedEvent,
    get_calendar_client,
)

# Availability
from app.core.scheduling.availability import (
    AvailabilityEngine,
    SchedulingPolicy,
    Slot,
    SlotCheck,
    SlotCheckStatus,
)

# Parsing
from app.core.scheduling.parser import (
    TimeParseResult,
    TimeParseStatus,
    parse_flexible_date,
    parse_flexible_time,
)

# Responses
from app.core.scheduling.response import (
    ResponseGenerator,
    get_response_generator,
)

# Conversation Flow
from app.core.scheduling.flow import BookingFlow, Turn

# Scheduling Engine (main orchestrator)
from app.core.scheduling.engine import (
    SchedulingEngine,
    InboundMessage,
    EngineResponse,
    get_scheduling_engine,
    process_message,
)

__all__ = [
    # Errors
    "SchedulingError",
    "InvalidDateError",
    "InvalidTimeError",
    "CalendarGatewayError",
    "CalendarNotConfiguredError",
    # Calendar Gateway
    "CalendarGateway",
    "GoogleCalendarClient",
    "CreatedEvent",
    "get_calendar_client",
    # Availability
    "AvailabilityEngine",
    "SchedulingPolicy",
    "Slot",
    "SlotCheck",
    "SlotCheckStatus",
    # Parsing
    "TimeParseResult",
    "TimeParseStatus",
    "parse_flexible_date",
    "parse_flexible_time",
    # Responses
    "ResponseGenerator",
    "get_response_generator",
    # Conversation Flow
    "BookingFlow",
    "Turn",
    # Scheduling Engine
    "SchedulingEngine",
    "InboundMessage",
    "EngineResponse",
    "get_scheduling_engine",
    "process_message",
]
