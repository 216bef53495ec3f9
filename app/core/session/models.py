"""
Conversation state models.

One UserState record per chat user holds the in-progress booking
(SchedulingSession) and the "show more" pagination cursor. The whole
record is persisted as JSON on every change.
"""

import json
from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Optional

from app.core.clock import as_utc, utcnow


class CorruptSessionError(ValueError):
    """Raised when persisted conversation state cannot be understood."""

    pass


class SchedulingStep(str, Enum):
    """Steps of the booking conversation."""

    COLLECT_NAME = "collect_name"
    COLLECT_EMAIL = "collect_email"
    COLLECT_DATE = "collect_date"
    COLLECT_TIME = "collect_time"
    COLLECT_NOTES = "collect_notes"
    FINALIZE = "finalize"


@dataclass
class SchedulingData:
    """Answers collected so far. Dates are "YYYY-MM-DD", times "HH:MM"."""

    phone: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None
    time_zone: Optional[str] = None
    notes: Optional[str] = None

    def to_dict(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "SchedulingData":
        """Create from stored dict, ignoring unknown keys.

        Raises:
            CorruptSessionError: If the stored value is not an object
        """
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise CorruptSessionError(f"Scheduling data is not an object: {type(data).__name__}")
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})


@dataclass
class SchedulingSession:
    """The in-progress booking: current step plus collected data."""

    step: SchedulingStep
    data: SchedulingData = field(default_factory=SchedulingData)

    def to_dict(self) -> dict:
        return {"step": self.step.value, "data": self.data.to_dict()}

    @classmethod
    def from_dict(cls, data: dict) -> "SchedulingSession":
        """Create from stored dict.

        Raises:
            CorruptSessionError: If the step is missing or unknown
        """
        if not isinstance(data, dict):
            raise CorruptSessionError(f"Scheduling session is not an object: {type(data).__name__}")
        raw_step = data.get("step")
        try:
            step = SchedulingStep(raw_step)
        except ValueError:
            raise CorruptSessionError(f"Unknown scheduling step: {raw_step!r}") from None
        return cls(step=step, data=SchedulingData.from_dict(data.get("data")))


@dataclass
class AvailabilityCursor:
    """Where the next "show more" listing continues from."""

    next_search: str  # ISO instant
    time_zone: str
    slot_minutes: int

    @property
    def next_search_at(self) -> datetime:
        return as_utc(datetime.fromisoformat(self.next_search.replace("Z", "+00:00")))

    def to_dict(self) -> dict:
        return {
            "next_search": self.next_search,
            "time_zone": self.time_zone,
            "slot_minutes": self.slot_minutes,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AvailabilityCursor":
        """Create from stored dict.

        Raises:
            CorruptSessionError: If required fields are missing
        """
        try:
            cursor = cls(
                next_search=str(data["next_search"]),
                time_zone=str(data["time_zone"]),
                slot_minutes=int(data["slot_minutes"]),
            )
            datetime.fromisoformat(cursor.next_search.replace("Z", "+00:00"))
        except (KeyError, TypeError, ValueError) as e:
            raise CorruptSessionError(f"Invalid availability cursor: {e}") from e
        return cursor


@dataclass
class UserState:
    """Everything persisted for one chat user."""

    user_id: str
    scheduling: Optional[SchedulingSession] = None
    availability: Optional[AvailabilityCursor] = None
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_empty(self) -> bool:
        return self.scheduling is None and self.availability is None

    @property
    def step(self) -> Optional[SchedulingStep]:
        return self.scheduling.step if self.scheduling else None

    def reset(self) -> None:
        """Drop the booking and the cursor."""
        self.scheduling = None
        self.availability = None

    def to_json(self) -> str:
        """Convert to JSON string for Redis storage."""
        data = {
            "user_id": self.user_id,
            "scheduling": self.scheduling.to_dict() if self.scheduling else None,
            "availability": self.availability.to_dict() if self.availability else None,
            "updated_at": self.updated_at.isoformat(),
        }
        return json.dumps(data)

    @classmethod
    def from_json(cls, json_str: str) -> "UserState":
        """Create from JSON string.

        Raises:
            CorruptSessionError: If the payload cannot be decoded
        """
        try:
            data = json.loads(json_str)
        except (TypeError, ValueError) as e:
            raise CorruptSessionError(f"Undecodable user state: {e}") from e
        if not isinstance(data, dict) or "user_id" not in data:
            raise CorruptSessionError("User state is not an object with user_id")

        scheduling = data.get("scheduling")
        availability = data.get("availability")
        try:
            updated_at = datetime.fromisoformat(data["updated_at"])
        except (KeyError, TypeError, ValueError):
            updated_at = utcnow()

        return cls(
            user_id=data["user_id"],
            scheduling=SchedulingSession.from_dict(scheduling) if scheduling else None,
            availability=AvailabilityCursor.from_dict(availability) if availability else None,
            updated_at=updated_at,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return json.loads(self.to_json())
