"""Tests for the HTTP routes."""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from fastapi.testclient import TestClient

from app.core.scheduling.availability import SchedulingPolicy
from app.core.scheduling.engine import SchedulingEngine
from app.core.session import SessionManager
from app.main import app
from tests.fakes import NOW, ZONE, FakeCalendar


class TestChatRoutes:
    """Test /chat endpoints."""

    @pytest.fixture
    def store(self):
        return SessionManager(use_redis=False)

    @pytest.fixture
    def engine(self, store):
        return SchedulingEngine(
            calendar=FakeCalendar(),
            store=store,
            policy=SchedulingPolicy(default_timezone=ZONE),
            clock=lambda: NOW,
            start_keywords=[],
        )

    @pytest.fixture
    def client(self, engine, store):
        with patch("app.api.routes.chat.get_scheduling_engine", return_value=engine), patch(
            "app.api.routes.chat.get_session_manager", return_value=store
        ):
            yield TestClient(app)

    def test_chat_starts_booking(self, client):
        response = client.post(
            "/chat",
            json={"user_id": "5215512345678", "message": "Agendar cita", "received_at": NOW.isoformat()},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["handled"] is True
        assert body["step"] == "collect_name"
        assert len(body["messages"]) == 1

    def test_chat_unhandled(self, client):
        response = client.post("/chat", json={"user_id": "5215512345678", "message": "gracias"})

        assert response.status_code == 200
        assert response.json()["handled"] is False

    def test_chat_validation_error(self, client):
        response = client.post("/chat", json={"user_id": "", "message": "hola"})

        assert response.status_code == 422
        assert response.json()["error"] == "Validation error"

    def test_session_lifecycle(self, client):
        client.post("/chat", json={"user_id": "u1", "message": "Agendar cita", "received_at": NOW.isoformat()})
        client.post("/chat", json={"user_id": "u1", "message": "Ana", "received_at": NOW.isoformat()})

        response = client.get("/chat/session/u1")
        assert response.status_code == 200
        body = response.json()
        assert body["step"] == "collect_email"
        assert body["data"]["name"] == "Ana"
        assert body["data"]["phone"] == "u1"

        response = client.delete("/chat/session/u1")
        assert response.status_code == 204

        assert client.get("/chat/session/u1").json()["step"] is None


class TestHealthRoutes:
    """Test /health endpoints."""

    @pytest.fixture
    def client(self):
        return TestClient(app)

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_live(self, client):
        response = client.get("/health/live")

        assert response.status_code == 200
        assert response.json()["status"] == "alive"

    def test_ready(self, client):
        calendar = MagicMock()
        calendar.is_configured.return_value = True

        with patch("app.api.routes.health.check_redis_health", new=AsyncMock(return_value=True)), patch(
            "app.api.routes.health.get_calendar_client", return_value=calendar
        ):
            response = client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["checks"] == {"redis": "ok", "calendar": "ok"}

    def test_not_ready_without_calendar(self, client):
        calendar = MagicMock()
        calendar.is_configured.return_value = False

        with patch("app.api.routes.health.check_redis_health", new=AsyncMock(return_value=True)), patch(
            "app.api.routes.health.get_calendar_client", return_value=calendar
        ):
            response = client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["checks"]["calendar"] == "not_configured"
