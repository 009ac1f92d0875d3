import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

from booking_engine.scheduling.types import BusinessHours, FrequencyRule

load_dotenv()


class Settings(BaseModel):
    # Database Configuration
    database_url: str = Field(
        default="sqlite+aiosqlite:///./bookings.db", alias="DATABASE_URL"
    )
    database_echo: bool = Field(default=False, alias="DATABASE_ECHO")

    # Business Hours
    # Weekday numbers follow 0=Sunday .. 6=Saturday
    business_days: str = Field(default="1,2,3,4,5", alias="BUSINESS_DAYS")
    business_start_hour: int = Field(default=9, alias="BUSINESS_START_HOUR")
    business_end_hour: int = Field(default=17, alias="BUSINESS_END_HOUR")
    business_timezone: str = Field(default="Europe/London", alias="BUSINESS_TIMEZONE")
    buffer_minutes: int = Field(default=15, alias="BUFFER_MINUTES")
    min_advance_hours: int = Field(default=1, alias="MIN_ADVANCE_HOURS")
    max_advance_hours: int = Field(default=24, alias="MAX_ADVANCE_HOURS")

    # Frequency rules, "duration:max_bookings:window_minutes" comma separated
    frequency_rules: str = Field(
        default="15:2:90,30:2:180,45:2:300,60:2:720", alias="FREQUENCY_RULES"
    )

    # Google Calendar
    google_calendar_enabled: bool = Field(default=False, alias="GOOGLE_CALENDAR_ENABLED")
    google_calendar_id: str = Field(default="primary", alias="GOOGLE_CALENDAR_ID")
    # Service account key file; tokens are refreshed automatically
    google_service_account_key_path: str = Field(
        default="", alias="GOOGLE_SERVICE_ACCOUNT_KEY_PATH"
    )
    # Optional user to impersonate with domain-wide delegation
    google_calendar_subject: str = Field(default="", alias="GOOGLE_CALENDAR_SUBJECT")
    # Fixed token, used only when no key path is set
    google_calendar_access_token: str = Field(
        default="", alias="GOOGLE_CALENDAR_ACCESS_TOKEN"
    )
    google_calendar_timezone: str = Field(
        default="Europe/London", alias="GOOGLE_CALENDAR_TIMEZONE"
    )
    google_calendar_retry_attempts: int = Field(
        default=3, alias="GOOGLE_CALENDAR_RETRY_ATTEMPTS"
    )
    google_calendar_retry_delay_ms: int = Field(
        default=1000, alias="GOOGLE_CALENDAR_RETRY_DELAY_MS"
    )

    # HubSpot CRM
    hubspot_enabled: bool = Field(default=False, alias="HUBSPOT_ENABLED")
    hubspot_access_token: str = Field(default="", alias="HUBSPOT_ACCESS_TOKEN")

    # Notifications
    email_enabled: bool = Field(default=False, alias="EMAIL_ENABLED")
    email_api_url: str = Field(default="https://api.resend.com", alias="EMAIL_API_URL")
    email_api_key: str = Field(default="", alias="EMAIL_API_KEY")
    email_from: str = Field(default="bookings@example.com", alias="EMAIL_FROM")
    admin_email: str = Field(default="admin@example.com", alias="ADMIN_EMAIL")

    # Circuit breakers (shared by every provider)
    circuit_failure_threshold: int = Field(default=5, alias="CIRCUIT_FAILURE_THRESHOLD")
    circuit_reset_timeout_seconds: int = Field(default=60, alias="CIRCUIT_RESET_TIMEOUT")
    circuit_monitoring_period_seconds: int = Field(
        default=120, alias="CIRCUIT_MONITORING_PERIOD"
    )

    # Background sync workers
    sync_workers: int = Field(default=4, alias="SYNC_WORKERS")
    sync_queue_size: int = Field(default=1000, alias="SYNC_QUEUE_SIZE")

    # Cache
    cache_max_size: int = Field(default=1000, alias="CACHE_MAX_SIZE")
    cache_debug: bool = Field(default=False, alias="CACHE_DEBUG")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    @field_validator("business_start_hour", "business_end_hour")
    @classmethod
    def _check_hour(cls, value: int) -> int:
        if not 0 <= value <= 23:
            raise ValueError(f"hour must be between 0 and 23, got {value}")
        return value

    @field_validator("business_days")
    @classmethod
    def _check_days(cls, value: str) -> str:
        days = [int(day) for day in value.split(",") if day.strip()]
        if not days or any(day < 0 or day > 6 for day in days):
            raise ValueError(f"BUSINESS_DAYS must list weekdays 0-6, got {value!r}")
        return value

    @model_validator(mode="after")
    def _check_ranges(self) -> "Settings":
        if self.business_start_hour >= self.business_end_hour:
            raise ValueError("BUSINESS_START_HOUR must be before BUSINESS_END_HOUR")
        if self.min_advance_hours > self.max_advance_hours:
            raise ValueError("MIN_ADVANCE_HOURS must not exceed MAX_ADVANCE_HOURS")
        if self.buffer_minutes < 0:
            raise ValueError("BUFFER_MINUTES must be >= 0")
        if self.sync_workers < 1:
            raise ValueError("SYNC_WORKERS must be >= 1")
        self.parsed_frequency_rules()
        return self

    def business_hours(self) -> BusinessHours:
        return BusinessHours(
            days_of_week=frozenset(
                int(day) for day in self.business_days.split(",") if day.strip()
            ),
            start_hour=self.business_start_hour,
            end_hour=self.business_end_hour,
            timezone=self.business_timezone,
            buffer_minutes=self.buffer_minutes,
            min_advance_hours=self.min_advance_hours,
            max_advance_hours=self.max_advance_hours,
        )

    def parsed_frequency_rules(self) -> list[FrequencyRule]:
        rules = []
        for chunk in self.frequency_rules.split(","):
            if not chunk.strip():
                continue
            duration, max_bookings, window = (int(p) for p in chunk.split(":"))
            rules.append(
                FrequencyRule(
                    duration=duration,
                    max_bookings=max_bookings,
                    window_minutes=window,
                )
            )
        return rules

    @classmethod
    def from_env(cls) -> "Settings":
        return cls.model_validate(dict(os.environ))


global_settings = Settings.from_env()
