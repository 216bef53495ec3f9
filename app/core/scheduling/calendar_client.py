"""
Calendar gateway.

The scheduling core only talks to the calendar through CalendarGateway:
- Listing events in a window
- Creating an event (with attendee invitations)
- Checking a window for conflicts

GoogleCalendarClient implements it against the Google Calendar v3 REST
API. OAuth credentials come from a stored refresh token and are
refreshed with google-auth.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional
from urllib.parse import quote
from zoneinfo import ZoneInfo

import httpx
from google.auth.exceptions import GoogleAuthError, RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials

from app.config import get_settings
from app.core.clock import as_utc
from app.core.scheduling.errors import CalendarGatewayError, CalendarNotConfiguredError
from app.core.scheduling.timeutils import resolve_zone

logger = logging.getLogger(__name__)

GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"


@dataclass(frozen=True)
class BusyInterval:
    """A time range already occupied on the calendar."""

    start: datetime
    end: datetime

    def overlaps(self, start: datetime, end: datetime) -> bool:
        """Half-open overlap test: touching intervals do not overlap."""
        return start < self.end and end > self.start


@dataclass
class CreatedEvent:
    """Event returned by the calendar after creation."""

    id: str
    html_link: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "CreatedEvent":
        """Create from API response dict."""
        return cls(
            id=data.get("id", ""),
            html_link=data.get("htmlLink", data.get("html_link")),
        )


def parse_event_boundary(boundary: Optional[dict]) -> Optional[datetime]:
    """Read an event start/end ({"dateTime": ...} or {"date": ...}).

    All-day dates are read as UTC midnight. Returns None when the
    boundary has neither field or cannot be parsed.
    """
    if not boundary:
        return None

    raw = boundary.get("dateTime")
    if raw:
        try:
            parsed = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
        except ValueError:
            parsed = None
        if parsed is not None:
            return as_utc(parsed)

    raw_date = boundary.get("date")
    if raw_date:
        try:
            day = datetime.fromisoformat(f"{raw_date}T00:00:00")
        except ValueError:
            return None
        return day.replace(tzinfo=timezone.utc)

    return None


def build_busy_intervals(events: list[dict]) -> list[BusyInterval]:
    """Turn calendar events into sorted busy intervals.

    Cancelled events and events without a readable start/end are skipped.
    """
    intervals = []
    for event in events or []:
        if not isinstance(event, dict) or event.get("status") == "cancelled":
            continue
        start = parse_event_boundary(event.get("start"))
        end = parse_event_boundary(event.get("end"))
        if start is None or end is None:
            continue
        intervals.append(BusyInterval(start=start, end=end))

    intervals.sort(key=lambda interval: interval.start)
    return intervals


def event_time(local_iso: str, time_zone: str) -> dict:
    """Event start/end for a local ISO datetime in time_zone.

    Google only accepts IANA names in timeZone, so fixed offsets ("UTC-5")
    are sent as an RFC 3339 dateTime carrying the offset.
    """
    tz = resolve_zone(time_zone)
    if tz is None or isinstance(tz, ZoneInfo):
        return {"dateTime": local_iso, "timeZone": time_zone}
    moment = datetime.fromisoformat(local_iso).replace(tzinfo=tz)
    return {"dateTime": moment.isoformat()}


def is_slot_free(intervals: list[BusyInterval], start: datetime, end: datetime) -> bool:
    """True when [start, end) touches no busy interval."""
    return not any(interval.overlaps(start, end) for interval in intervals)


class CalendarGateway(ABC):
    """Capabilities the scheduling core needs from a calendar provider."""

    @abstractmethod
    def is_configured(self) -> bool:
        """Whether credentials are present; no network calls are made."""
        raise NotImplementedError

    @abstractmethod
    async def list_events(
        self,
        time_min: datetime,
        time_max: datetime,
        max_results: int = 50,
    ) -> list[dict]:
        """List events overlapping [time_min, time_max).

        Each event looks like {"status": ..., "start": {"dateTime"|"date"},
        "end": {...}}.

        Raises:
            CalendarGatewayError: On network/auth/API failure
        """
        raise NotImplementedError

    @abstractmethod
    async def create_event(
        self,
        summary: str,
        description: str,
        start_datetime: str,
        end_datetime: str,
        time_zone: str,
        attendees: Optional[list[dict]] = None,
    ) -> CreatedEvent:
        """Create an event. Datetimes are local ISO strings in time_zone.

        Raises:
            CalendarGatewayError: On network/auth/API failure
        """
        raise NotImplementedError

    async def has_conflict(self, start: datetime, end: datetime) -> bool:
        """Check whether any active event overlaps [start, end).

        Raises:
            CalendarGatewayError: On network/auth/API failure
        """
        events = await self.list_events(start, end, max_results=50)
        return not is_slot_free(build_busy_intervals(events), start, end)


class GoogleCalendarClient(CalendarGateway):
    """
    HTTP client for the Google Calendar v3 API.

    Uses:
    - google-auth Credentials - Refresh the access token
    - GET /calendars/{id}/events - List events in a window
    - POST /calendars/{id}/events - Create event (sendUpdates=all)

    Tokens are read from a JSON file (access_token, refresh_token,
    expiry_date in ms, as written by Google's Node client library).
    Rotated tokens are merged back into the same file.
    """

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        calendar_id: Optional[str] = None,
        token_path: Optional[str] = None,
        timeout: Optional[float] = None,
        base_url: str = GOOGLE_CALENDAR_API,
    ):
        """Initialize client.

        Args:
            client_id: OAuth client ID (defaults to settings)
            client_secret: OAuth client secret (defaults to settings)
            calendar_id: Target calendar (defaults to settings)
            token_path: Path to tokens JSON (defaults to settings)
            timeout: Request timeout in seconds
            base_url: Calendar API base URL
        """
        settings = get_settings()
        self.client_id = client_id if client_id is not None else settings.gcal_client_id
        self.client_secret = (
            client_secret if client_secret is not None else settings.gcal_client_secret
        )
        self.calendar_id = calendar_id or settings.gcal_calendar_id
        self.token_path = Path(token_path or settings.gcal_token_path)
        self.timeout = timeout or settings.gcal_timeout
        self.base_url = base_url
        self._client: Optional[httpx.AsyncClient] = None
        self._credentials: Optional[Credentials] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def is_configured(self) -> bool:
        """Check that credentials, a calendar and the tokens file exist."""
        try:
            has_client = bool(self.client_id and self.client_secret)
            return has_client and bool(self.calendar_id) and self.token_path.exists()
        except OSError:
            return False

    # === OAuth ===

    def _load_tokens(self) -> dict[str, Any]:
        """Read the tokens file."""
        if not (self.client_id and self.client_secret):
            raise CalendarNotConfiguredError("Google Calendar OAuth client is not configured")
        if not self.token_path.exists():
            raise CalendarNotConfiguredError(
                f"Tokens file not found: {self.token_path}"
            )

        try:
            return json.loads(self.token_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise CalendarNotConfiguredError(f"Unreadable tokens file: {e}") from e

    def _load_credentials(self) -> Credentials:
        """Build OAuth credentials from the tokens file.

        Accepts both the googleapis layout (access_token, expiry_date in ms)
        and google-auth's authorized-user layout (token, expiry).
        """
        tokens = self._load_tokens()

        refresh_token = tokens.get("refresh_token")
        if not refresh_token:
            raise CalendarNotConfiguredError("Tokens file has no refresh_token")

        # google-auth compares expiry as naive UTC
        expiry = None
        stored_expiry = tokens.get("expiry_date")
        if isinstance(stored_expiry, (int, float)):
            expiry = datetime.fromtimestamp(stored_expiry / 1000, tz=timezone.utc).replace(tzinfo=None)
        elif isinstance(tokens.get("expiry"), str):
            try:
                parsed = datetime.fromisoformat(tokens["expiry"].replace("Z", "+00:00"))
                expiry = as_utc(parsed).replace(tzinfo=None)
            except ValueError:
                expiry = None

        # A token without a known expiry is refreshed before use.
        # Scopes are left as granted with the refresh token.
        token = tokens.get("access_token") or tokens.get("token")
        return Credentials(
            token=token if expiry else None,
            refresh_token=refresh_token,
            token_uri=GOOGLE_TOKEN_URL,
            client_id=self.client_id,
            client_secret=self.client_secret,
            expiry=expiry,
        )

    def _store_tokens(self, credentials: Credentials) -> None:
        """Merge rotated tokens into the tokens file."""
        try:
            current = json.loads(self.token_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            current = {}

        current["access_token"] = credentials.token
        if credentials.expiry:
            expiry = credentials.expiry.replace(tzinfo=timezone.utc)
            current["expiry_date"] = int(expiry.timestamp() * 1000)
        if credentials.refresh_token:
            current["refresh_token"] = credentials.refresh_token

        try:
            self.token_path.write_text(json.dumps(current, indent=2), encoding="utf-8")
            logger.info("Google Calendar tokens file updated")
        except OSError as e:
            logger.error(f"Could not write tokens file: {e}")

    async def _get_access_token(self) -> str:
        """Return a valid access token, refreshing it when needed."""
        if self._credentials is None:
            self._credentials = self._load_credentials()

        credentials = self._credentials
        if credentials.valid:
            return credentials.token

        # google-auth refreshes over blocking HTTP
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, credentials.refresh, Request())
        except RefreshError as e:
            if "invalid_grant" in str(e) or "unauthorized_client" in str(e):
                logger.error(
                    "Refresh token is invalid or revoked. Re-authorize and replace the tokens file."
                )
            else:
                logger.error(f"Token refresh failed: {e}")
            raise CalendarGatewayError(f"Token refresh failed: {e}") from e
        except GoogleAuthError as e:
            logger.error(f"Failed to refresh Google token: {e}")
            raise CalendarGatewayError(f"Token refresh failed: {e}") from e

        self._store_tokens(credentials)
        return credentials.token

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict:
        """Send an authorized request to the Calendar API."""
        token = await self._get_access_token()
        client = await self._get_client()

        headers = kwargs.pop("headers", {})
        headers["Authorization"] = f"Bearer {token}"

        try:
            response = await client.request(
                method,
                f"{self.base_url}{path}",
                headers=headers,
                **kwargs,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            if status_code == 401 and self._credentials is not None:
                # Force a refresh on the next call
                self._credentials.token = None
            try:
                message = e.response.json().get("error", {}).get("message", str(e))
            except (ValueError, AttributeError):
                message = str(e)
            logger.error(f"Google Calendar {method} {path} failed ({status_code}): {message}")
            raise CalendarGatewayError(message, status_code=status_code) from e
        except httpx.HTTPError as e:
            logger.error(f"Google Calendar {method} {path} failed: {e}")
            raise CalendarGatewayError(str(e)) from e

        if not response.content:
            return {}
        return response.json()

    def _events_path(self) -> str:
        return f"/calendars/{quote(self.calendar_id, safe='')}/events"

    # === Events ===

    async def list_events(
        self,
        time_min: datetime,
        time_max: datetime,
        max_results: int = 50,
    ) -> list[dict]:
        """List single (expanded) events ordered by start time."""
        data = await self._request(
            "GET",
            self._events_path(),
            params={
                "timeMin": time_min.astimezone(timezone.utc).isoformat(),
                "timeMax": time_max.astimezone(timezone.utc).isoformat(),
                "singleEvents": "true",
                "orderBy": "startTime",
                "maxResults": max_results,
            },
        )
        items = data.get("items", [])
        return items if isinstance(items, list) else []

    async def create_event(
        self,
        summary: str,
        description: str,
        start_datetime: str,
        end_datetime: str,
        time_zone: str,
        attendees: Optional[list[dict]] = None,
    ) -> CreatedEvent:
        """Create an event and email invitations to the attendees."""
        payload = {
            "summary": summary,
            "description": description,
            "start": event_time(start_datetime, time_zone),
            "end": event_time(end_datetime, time_zone),
            "attendees": attendees or [],
            "guestsCanSeeOtherGuests": True,
            "guestsCanInviteOthers": False,
            "guestsCanModify": False,
        }

        data = await self._request(
            "POST",
            self._events_path(),
            params={"sendUpdates": "all"},
            json=payload,
        )
        event = CreatedEvent.from_dict(data)
        logger.info(f"Calendar event created: {event.id}")
        return event


# Singleton
_client: Optional[GoogleCalendarClient] = None


def get_calendar_client() -> GoogleCalendarClient:
    """Get singleton GoogleCalendarClient."""
    global _client
    if _client is None:
        _client = GoogleCalendarClient()
    return _client
