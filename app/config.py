"""
Configuration Management

Uses Pydantic BaseSettings to load configuration from environment variables.
All settings can be overridden via .env file or environment variables.

Environment Variables:
    REDIS_URL: Redis connection string
    DEFAULT_TIMEZONE: IANA zone used for slots and confirmations
    APPOINTMENT_DURATION_MINUTES: Length of a booked call (default: 30)
    MINIMUM_NOTICE_MINUTES: Lead time required before a slot (default: 60)
    BUSINESS_START_HOUR / BUSINESS_END_HOUR: Daily service window
    GCAL_CLIENT_ID / GCAL_CLIENT_SECRET / GCAL_CALENDAR_ID: Google Calendar
    APP_ENV: Environment name (development/staging/production)
    DEBUG: Enable debug mode (default: False)
"""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Redis Configuration
    redis_url: str = "redis://localhost:6379/0"
    """Redis connection URL.

    Format: redis://host:port/db
    Example: redis://localhost:6379/0

    Used for per-user conversation state.
    """

    redis_session_ttl: int = 86400
    """Conversation state TTL in seconds (default: 24 hours)."""

    # Scheduling Policy
    default_timezone: str = "America/Mexico_City"
    """IANA timezone used for slot generation and confirmations."""

    appointment_duration_minutes: int = 30
    """Length of the calendar event created for a booking."""

    minimum_notice_minutes: int = 60
    """Minimum lead time between now and a bookable slot start."""

    business_start_hour: int = 9
    """First hour (local time) at which slots may start."""

    business_end_hour: int = 15
    """Hour (local time) by which every slot must have ended."""

    slot_minutes: int = 30
    """Granularity of offered slots."""

    max_lookahead_days: int = 14
    """How many calendar days the availability search walks forward."""

    max_suggestion_slots: int = 5
    """Slots listed for "horarios disponibles" and date-specific answers."""

    quick_suggestion_slots: int = 2
    """Slots offered as alternates after a conflict or notice rejection."""

    organization_name: str = "Asesoría"
    """Name used in the calendar event summary."""

    scheduling_keywords: str = ""
    """Comma-separated extra phrases that start the booking flow."""

    # Google Calendar
    gcal_client_id: str = ""
    """OAuth client ID for the Google Calendar API."""

    gcal_client_secret: str = ""
    """OAuth client secret for the Google Calendar API."""

    gcal_calendar_id: str = "primary"
    """Calendar that receives the bookings."""

    gcal_token_path: str = "tokens.json"
    """JSON file holding the OAuth tokens (must include refresh_token).

    Rotated tokens are written back to the same file.
    """

    gcal_timeout: float = 15.0
    """HTTP timeout in seconds for Google Calendar requests."""

    # Application Environment
    app_env: Literal["development", "staging", "production"] = "development"
    """Current application environment."""

    debug: bool = False
    """Enable debug mode (verbose logging, detailed error responses)."""

    # Application Configuration
    app_name: str = "agenda-bot"
    """Application name."""

    host: str = "0.0.0.0"
    """Host to bind the application server."""

    port: int = 8000
    """Port to bind the application server."""

    # CORS Configuration
    cors_origins: str = "http://localhost:3000"
    """Comma-separated list of allowed CORS origins."""

    # Pydantic configuration
    model_config = SettingsConfigDict(
        env_file=".env",  # Load from .env file if it exists
        env_file_encoding="utf-8",
        case_sensitive=False,  # Allow REDIS_URL or redis_url
        extra="ignore",  # Ignore extra environment variables
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.app_env == "development"

    @property
    def cors_origins_list(self) -> list[str]:
        """Split cors_origins into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def scheduling_keywords_list(self) -> list[str]:
        """Split scheduling_keywords into a list, dropping blanks."""
        return [
            keyword.strip()
            for keyword in self.scheduling_keywords.split(",")
            if keyword.strip()
        ]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses lru_cache to ensure settings are loaded only once and reused
    across the application.

    Returns:
        Settings: Cached settings instance

    Example:
        >>> from app.config import get_settings
        >>> settings = get_settings()
        >>> print(settings.default_timezone)
        America/Mexico_City
    """
    return Settings()


# Module-level settings instance for easy imports
settings = get_settings()
