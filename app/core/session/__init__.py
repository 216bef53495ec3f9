"""
Conversation state for the scheduling assistant.

- UserState: per-user record (booking in progress + availability cursor)
- SessionManager: Redis store with in-memory fallback
"""

from .models import (
    AvailabilityCursor,
    CorruptSessionError,
    SchedulingData,
    SchedulingSession,
    SchedulingStep,
    UserState,
)
from .manager import SessionManager, get_session_manager

__all__ = [
    # Models
    "AvailabilityCursor",
    "CorruptSessionError",
    "SchedulingData",
    "SchedulingSession",
    "SchedulingStep",
    "UserState",
    # Manager
    "SessionManager",
    "get_session_manager",
]
