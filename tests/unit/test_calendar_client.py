"""Tests for the Google Calendar HTTP client."""

import json
import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
from google.auth.exceptions import RefreshError
from google.oauth2.credentials import Credentials
from httpx import Request, Response

from app.core.scheduling.calendar_client import (
    GOOGLE_TOKEN_URL,
    CreatedEvent,
    GoogleCalendarClient,
    event_time,
)
from app.core.scheduling.errors import CalendarGatewayError, CalendarNotConfiguredError

# 2100-01-01 in milliseconds
FAR_FUTURE_MS = 4102444800000


def grant_fresh_token(credentials, request):
    """Stand-in for the token endpoint: hand out a long-lived access token."""
    credentials.token = "fresh"
    credentials.expiry = datetime(2100, 1, 1)


def api_response(status_code: int, payload: dict, method: str = "GET") -> Response:
    return Response(
        status_code,
        json=payload,
        request=Request(method, "https://www.googleapis.com/calendar/v3/calendars/primary/events"),
    )


class TestCreatedEvent:
    """Test CreatedEvent dataclass."""

    def test_from_dict(self):
        event = CreatedEvent.from_dict({"id": "evt-1", "htmlLink": "https://calendar.google.com/e/1"})

        assert event.id == "evt-1"
        assert event.html_link == "https://calendar.google.com/e/1"

    def test_from_dict_without_link(self):
        assert CreatedEvent.from_dict({"id": "evt-1"}).html_link is None


class TestEventTime:
    """Test event start/end payloads."""

    def test_iana_zone(self):
        assert event_time("2024-05-15T11:00:00", "America/Bogota") == {
            "dateTime": "2024-05-15T11:00:00",
            "timeZone": "America/Bogota",
        }

    def test_offset_zone_uses_explicit_offset(self):
        assert event_time("2024-05-15T11:00:00", "UTC-5") == {"dateTime": "2024-05-15T11:00:00-05:00"}

    def test_utc(self):
        assert event_time("2024-05-15T11:00:00", "UTC") == {"dateTime": "2024-05-15T11:00:00+00:00"}


class TestGoogleCalendarClient:
    """Test Google Calendar client."""

    @pytest.fixture
    def token_file(self, tmp_path):
        path = tmp_path / "tokens.json"
        path.write_text(
            json.dumps({"access_token": "cached", "refresh_token": "refresh-1", "expiry_date": FAR_FUTURE_MS})
        )
        return path

    @pytest.fixture
    def client(self, token_file):
        return GoogleCalendarClient(
            client_id="client-id",
            client_secret="client-secret",
            calendar_id="primary",
            token_path=str(token_file),
            timeout=5.0,
        )

    @pytest.fixture
    def mock_httpx_client(self):
        mock = MagicMock()
        mock.request = AsyncMock()
        mock.aclose = AsyncMock()
        return mock

    def test_is_configured(self, client):
        assert client.is_configured() is True

    def test_not_configured_without_tokens(self, tmp_path):
        client = GoogleCalendarClient(
            client_id="client-id",
            client_secret="client-secret",
            token_path=str(tmp_path / "missing.json"),
        )
        assert client.is_configured() is False

    def test_not_configured_without_credentials(self, token_file):
        client = GoogleCalendarClient(client_id="", client_secret="", token_path=str(token_file))
        assert client.is_configured() is False

    @pytest.mark.asyncio
    async def test_list_events(self, client, mock_httpx_client):
        """Test listing uses the stored access token and expands recurring events."""
        mock_httpx_client.request.return_value = api_response(
            200,
            {"items": [{"id": "a", "start": {"dateTime": "2024-05-15T10:00:00Z"}}]},
        )
        client._client = mock_httpx_client

        with patch.object(Credentials, "refresh", autospec=True) as refresh:
            events = await client.list_events(
                datetime(2024, 5, 15, 15, tzinfo=timezone.utc),
                datetime(2024, 5, 15, 21, tzinfo=timezone.utc),
            )

        assert events[0]["id"] == "a"
        refresh.assert_not_called()

        call = mock_httpx_client.request.call_args
        assert call.args[0] == "GET"
        assert call.args[1].endswith("/calendars/primary/events")
        assert call.kwargs["headers"]["Authorization"] == "Bearer cached"
        assert call.kwargs["params"]["singleEvents"] == "true"
        assert call.kwargs["params"]["orderBy"] == "startTime"
        assert call.kwargs["params"]["timeMin"] == "2024-05-15T15:00:00+00:00"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "tokens",
        [
            {"refresh_token": "refresh-1", "scope": "calendar"},
            {"access_token": "stale", "refresh_token": "refresh-1", "expiry_date": 1000, "scope": "calendar"},
            {"access_token": "no-expiry", "refresh_token": "refresh-1", "scope": "calendar"},
        ],
    )
    async def test_refreshes_expired_token(self, tmp_path, mock_httpx_client, tokens):
        """Test google-auth refresh and merge of rotated tokens into the file."""
        path = tmp_path / "tokens.json"
        path.write_text(json.dumps(tokens))
        client = GoogleCalendarClient(
            client_id="client-id",
            client_secret="client-secret",
            token_path=str(path),
        )
        mock_httpx_client.request.return_value = api_response(200, {"items": []})
        client._client = mock_httpx_client

        with patch.object(Credentials, "refresh", autospec=True, side_effect=grant_fresh_token) as refresh:
            events = await client.list_events(
                datetime(2024, 5, 15, 15, tzinfo=timezone.utc),
                datetime(2024, 5, 15, 21, tzinfo=timezone.utc),
            )

        assert events == []
        refresh.assert_called_once()
        credentials = refresh.call_args.args[0]
        assert credentials.refresh_token == "refresh-1"
        assert credentials.client_id == "client-id"
        assert credentials.token_uri == GOOGLE_TOKEN_URL
        assert mock_httpx_client.request.call_args.kwargs["headers"]["Authorization"] == "Bearer fresh"

        stored = json.loads(path.read_text())
        assert stored["access_token"] == "fresh"
        assert stored["refresh_token"] == "refresh-1"
        assert stored["scope"] == "calendar"
        assert stored["expiry_date"] == FAR_FUTURE_MS

    @pytest.mark.asyncio
    async def test_reuses_refreshed_token(self, tmp_path, mock_httpx_client):
        path = tmp_path / "tokens.json"
        path.write_text(json.dumps({"refresh_token": "refresh-1"}))
        client = GoogleCalendarClient(client_id="id", client_secret="secret", token_path=str(path))
        mock_httpx_client.request.return_value = api_response(200, {"items": []})
        client._client = mock_httpx_client

        with patch.object(Credentials, "refresh", autospec=True, side_effect=grant_fresh_token) as refresh:
            for _ in range(2):
                await client.list_events(
                    datetime(2024, 5, 15, 15, tzinfo=timezone.utc),
                    datetime(2024, 5, 15, 21, tzinfo=timezone.utc),
                )

        assert refresh.call_count == 1

    @pytest.mark.asyncio
    async def test_invalid_grant(self, tmp_path, mock_httpx_client):
        path = tmp_path / "tokens.json"
        path.write_text(json.dumps({"refresh_token": "revoked"}))
        client = GoogleCalendarClient(client_id="id", client_secret="secret", token_path=str(path))
        client._client = mock_httpx_client

        error = RefreshError("invalid_grant: Token has been expired or revoked.")
        with patch.object(Credentials, "refresh", autospec=True, side_effect=error):
            with pytest.raises(CalendarGatewayError) as exc_info:
                await client.list_events(
                    datetime(2024, 5, 15, 15, tzinfo=timezone.utc),
                    datetime(2024, 5, 15, 21, tzinfo=timezone.utc),
                )

        assert "invalid_grant" in str(exc_info.value)
        mock_httpx_client.request.assert_not_called()

    @pytest.mark.asyncio
    async def test_tokens_without_refresh_token(self, tmp_path):
        path = tmp_path / "tokens.json"
        path.write_text(json.dumps({"access_token": "only"}))
        client = GoogleCalendarClient(client_id="id", client_secret="secret", token_path=str(path))

        with pytest.raises(CalendarNotConfiguredError):
            await client.list_events(
                datetime(2024, 5, 15, 15, tzinfo=timezone.utc),
                datetime(2024, 5, 15, 21, tzinfo=timezone.utc),
            )

    @pytest.mark.asyncio
    async def test_missing_tokens_file(self, tmp_path):
        client = GoogleCalendarClient(
            client_id="id",
            client_secret="secret",
            token_path=str(tmp_path / "missing.json"),
        )

        with pytest.raises(CalendarNotConfiguredError):
            await client.list_events(
                datetime(2024, 5, 15, 15, tzinfo=timezone.utc),
                datetime(2024, 5, 15, 21, tzinfo=timezone.utc),
            )

    @pytest.mark.asyncio
    async def test_http_error_is_wrapped(self, client, mock_httpx_client):
        mock_httpx_client.request.return_value = api_response(
            500,
            {"error": {"code": 500, "message": "Backend Error"}},
        )
        client._client = mock_httpx_client

        with pytest.raises(CalendarGatewayError) as exc_info:
            await client.list_events(
                datetime(2024, 5, 15, 15, tzinfo=timezone.utc),
                datetime(2024, 5, 15, 21, tzinfo=timezone.utc),
            )

        assert exc_info.value.status_code == 500
        assert "Backend Error" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_unauthorized_clears_cached_token(self, client, mock_httpx_client):
        mock_httpx_client.request.return_value = api_response(401, {"error": {"message": "Invalid Credentials"}})
        client._client = mock_httpx_client

        with pytest.raises(CalendarGatewayError):
            await client.list_events(
                datetime(2024, 5, 15, 15, tzinfo=timezone.utc),
                datetime(2024, 5, 15, 21, tzinfo=timezone.utc),
            )

        assert client._credentials.token is None

    @pytest.mark.asyncio
    async def test_network_error_is_wrapped(self, client, mock_httpx_client):
        mock_httpx_client.request.side_effect = httpx.ConnectError("connection refused")
        client._client = mock_httpx_client

        with pytest.raises(CalendarGatewayError) as exc_info:
            await client.list_events(
                datetime(2024, 5, 15, 15, tzinfo=timezone.utc),
                datetime(2024, 5, 15, 21, tzinfo=timezone.utc),
            )

        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_create_event(self, client, mock_httpx_client):
        """Test event creation sends invitations to attendees."""
        mock_httpx_client.request.return_value = api_response(
            200,
            {"id": "evt-42", "htmlLink": "https://calendar.google.com/e/42"},
            method="POST",
        )
        client._client = mock_httpx_client

        event = await client.create_event(
            summary="Asesoría - Llamada de orientación con Ana",
            description="Nombre: Ana",
            start_datetime="2024-05-15T11:00:00",
            end_datetime="2024-05-15T11:30:00",
            time_zone="America/Mexico_City",
            attendees=[{"email": "ana@example.com", "displayName": "Ana"}],
        )

        assert event.id == "evt-42"
        assert event.html_link == "https://calendar.google.com/e/42"

        call = mock_httpx_client.request.call_args
        assert call.args[0] == "POST"
        assert call.kwargs["params"] == {"sendUpdates": "all"}
        payload = call.kwargs["json"]
        assert payload["start"] == {"dateTime": "2024-05-15T11:00:00", "timeZone": "America/Mexico_City"}
        assert payload["attendees"][0]["email"] == "ana@example.com"

    @pytest.mark.asyncio
    async def test_create_event_in_offset_zone(self, client, mock_httpx_client):
        mock_httpx_client.request.return_value = api_response(200, {"id": "evt-43"}, method="POST")
        client._client = mock_httpx_client

        await client.create_event(
            summary="Asesoría - Llamada de orientación con Ana",
            description="Nombre: Ana",
            start_datetime="2024-05-15T11:00:00",
            end_datetime="2024-05-15T11:30:00",
            time_zone="UTC-5",
        )

        payload = mock_httpx_client.request.call_args.kwargs["json"]
        assert payload["start"] == {"dateTime": "2024-05-15T11:00:00-05:00"}
        assert payload["end"] == {"dateTime": "2024-05-15T11:30:00-05:00"}

    @pytest.mark.asyncio
    async def test_has_conflict(self, client, mock_httpx_client):
        mock_httpx_client.request.return_value = api_response(
            200,
            {
                "items": [
                    {
                        "status": "confirmed",
                        "start": {"dateTime": "2024-05-15T17:15:00Z"},
                        "end": {"dateTime": "2024-05-15T17:45:00Z"},
                    }
                ]
            },
        )
        client._client = mock_httpx_client

        assert await client.has_conflict(
            datetime(2024, 5, 15, 17, tzinfo=timezone.utc),
            datetime(2024, 5, 15, 17, 30, tzinfo=timezone.utc),
        ) is True

    @pytest.mark.asyncio
    async def test_cancelled_event_is_not_a_conflict(self, client, mock_httpx_client):
        mock_httpx_client.request.return_value = api_response(
            200,
            {
                "items": [
                    {
                        "status": "cancelled",
                        "start": {"dateTime": "2024-05-15T17:00:00Z"},
                        "end": {"dateTime": "2024-05-15T17:30:00Z"},
                    }
                ]
            },
        )
        client._client = mock_httpx_client

        assert await client.has_conflict(
            datetime(2024, 5, 15, 17, tzinfo=timezone.utc),
            datetime(2024, 5, 15, 17, 30, tzinfo=timezone.utc),
        ) is False

    @pytest.mark.asyncio
    async def test_close(self, client, mock_httpx_client):
        client._client = mock_httpx_client

        await client.close()

        mock_httpx_client.aclose.assert_called_once()
        assert client._client is None
