"""Exceptions raised by the scheduling core."""

from typing import Optional


class SchedulingError(Exception):
    """Base class for scheduling errors."""

    pass


class InvalidDateError(SchedulingError, ValueError):
    """Raised when a stored or typed date is not a real calendar date."""

    pass


class InvalidTimeError(SchedulingError, ValueError):
    """Raised when a stored or typed time is outside 00:00-23:59."""

    pass


class CalendarGatewayError(SchedulingError):
    """Raised when the calendar provider fails (network, auth, API error)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class CalendarNotConfiguredError(CalendarGatewayError):
    """Raised when calendar credentials or tokens are missing."""

    pass
