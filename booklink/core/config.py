# booklink/core/config.py
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Global application configuration.

    Values are loaded from environment variables at runtime.

    The scheduling defaults below (business hours, break, minimum notice,
    increment, slot cap) apply to every meeting unless the meeting carries
    its own overrides in `preferences`.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    APP_NAME: str = "BookLink"
    APP_ENV: str = Field("local", description="Environment name: local/dev/stage/prod")
    LOG_LEVEL: str = Field("INFO", description="Root log level for the service.")

    DB_URL: str = Field(
        "sqlite+aiosqlite:///./booklink.db",
        description="SQLAlchemy-compatible database URL",
    )

    INTERNAL_API_KEY: str | None = Field(
        default=None,
        description="API key required for hitting /internal endpoints",
    )

    PUBLIC_BASE_URL: str = Field(
        "http://localhost:5173",
        description="Base URL of the public booking page; links are <base>/r/<token>.",
    )

    # --- Calendar providers ---
    GOOGLE_CLIENT_ID: str | None = None
    GOOGLE_CLIENT_SECRET: str | None = None
    GOOGLE_API_BASE_URL: str = "https://www.googleapis.com/calendar/v3"
    GOOGLE_TOKEN_URL: str = "https://oauth2.googleapis.com/token"
    GOOGLE_BUSY_SOURCE: str = Field(
        "events",
        description="How person calendars are read on Google: 'events' or 'freebusy'.",
    )

    MICROSOFT_CLIENT_ID: str | None = None
    MICROSOFT_CLIENT_SECRET: str | None = None
    MICROSOFT_GRAPH_BASE_URL: str = "https://graph.microsoft.com/v1.0"
    MICROSOFT_TOKEN_URL: str = "https://login.microsoftonline.com/common/oauth2/v2.0/token"

    PROVIDER_TIMEOUT_SECONDS: float = Field(
        10.0,
        description="Timeout applied to every provider and token-refresh call.",
    )
    TOKEN_REFRESH_SKEW_SECONDS: int = Field(
        300,
        description="Refresh an access token proactively when it expires within this window.",
    )
    FAIL_CLOSED_ON_TOTAL_PROVIDER_FAILURE: bool = Field(
        True,
        description=(
            "When every attempted calendar lookup fails, show no availability "
            "instead of offering unchecked times."
        ),
    )

    # --- Scheduling policy defaults ---
    DEFAULT_TIMEZONE: str = "America/New_York"
    BUSINESS_HOURS_START: str = "09:00"
    BUSINESS_HOURS_END: str = "17:00"
    BREAK_START: str = "12:00"
    BREAK_END: str = "13:00"
    MINIMUM_NOTICE_MINUTES: int = 60
    SLOT_INCREMENT_MINUTES: int = 30
    MAX_SLOTS: int = 30
    BUSY_MERGE_TOLERANCE_MINUTES: int = 1
    DEFAULT_SEARCH_WINDOW_DAYS: int = 14

    # --- Booking lifecycle ---
    BOOKING_REQUEST_EXPIRES_DAYS: int = 7
    CHANGE_CUTOFF_HOURS: int = Field(
        24,
        description="Reschedule/cancel is refused this many hours before the booked start.",
    )

    # --- Downstream recorder ---
    DOWNSTREAM_EVENTS_URL: str | None = Field(
        default=None,
        description="Events endpoint of the practice-management system; unset disables recording.",
    )
    DOWNSTREAM_API_TOKEN: str | None = None
    NATIVE_CALENDAR_EVENTS: bool = Field(
        True,
        description="Write booked meetings into the host's connected calendar and remove them on change.",
    )

    # --- Public contact details shown on terminal-state pages ---
    PUBLIC_CONTACT_PHONE: str | None = None
    PUBLIC_CONTACT_EMAIL: str | None = None
    PUBLIC_CONTACT_MESSAGE: str | None = None


@lru_cache()
def get_settings() -> Settings:
    """
    Cached accessor for application settings.

    Using LRU cache ensures settings are read and validated only once,
    while still being easily importable across the app.
    """
    return Settings()
