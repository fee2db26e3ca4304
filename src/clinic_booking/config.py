"""
Configuration management for the clinic booking service.

This module provides centralized configuration using Pydantic settings
for type-safe environment variable management.
"""

from functools import lru_cache
from typing import List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # MongoDB Configuration
    mongodb_uri: Optional[str] = Field(default=None, alias="MONGODB_URI")
    mongodb_db: str = Field(default="clinic", alias="MONGODB_DB")
    mongodb_server_selection_timeout_ms: int = Field(
        default=5000, alias="MONGODB_SERVER_SELECTION_TIMEOUT_MS"
    )
    mongodb_max_pool_size: int = Field(default=10, alias="MONGODB_MAX_POOL_SIZE")

    # Calendar Rules
    practice_timezone: str = Field(default="Asia/Kolkata", alias="PRACTICE_TIMEZONE")
    closed_weekday: int = Field(default=0, ge=0, le=6, alias="CLOSED_WEEKDAY")

    # Holds and Sweeping
    hold_ttl_seconds: int = Field(default=300, ge=1, alias="HOLD_TTL_SECONDS")
    blocked_date_cache_ttl_seconds: int = Field(
        default=300, ge=0, alias="BLOCKED_DATE_CACHE_TTL_SECONDS"
    )
    orphan_claim_grace_seconds: int = Field(
        default=120, ge=0, alias="ORPHAN_CLAIM_GRACE_SECONDS"
    )
    sweep_interval_seconds: int = Field(default=60, ge=0, alias="SWEEP_INTERVAL_SECONDS")

    # reCAPTCHA Configuration
    recaptcha_enabled: bool = Field(default=False, alias="RECAPTCHA_ENABLED")
    recaptcha_secret_key: Optional[str] = Field(default=None, alias="RECAPTCHA_SECRET_KEY")
    recaptcha_verify_url: str = Field(
        default="https://www.google.com/recaptcha/api/siteverify",
        alias="RECAPTCHA_VERIFY_URL",
    )
    recaptcha_min_score: float = Field(default=0.5, alias="RECAPTCHA_MIN_SCORE")
    recaptcha_expected_action: str = Field(
        default="appointment_booking", alias="RECAPTCHA_EXPECTED_ACTION"
    )
    recaptcha_timeout: int = Field(default=10, alias="RECAPTCHA_TIMEOUT")

    # API Configuration
    expose_holder_names: bool = Field(default=False, alias="EXPOSE_HOLDER_NAMES")
    admin_api_token: Optional[str] = Field(default=None, alias="ADMIN_API_TOKEN")
    api_host: str = Field(default="0.0.0.0", alias="API_HOST")
    api_port: int = Field(default=8080, alias="API_PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("practice_timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Reject zone names the tz database does not know."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown time zone: {v}") from None
        return v


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once,
    improving performance for repeated access.
    """
    return Settings()


# Bookable time slots - the single enumeration every component reasons about
TIME_SLOTS: Tuple[str, ...] = (
    "10:30 AM",
    "11:00 AM",
    "11:30 AM",
    "12:00 PM",
    "12:30 PM",
    "01:00 PM",
    "01:30 PM",
    "02:00 PM",
    "06:00 PM",
    "06:30 PM",
    "07:00 PM",
    "07:30 PM",
    "08:00 PM",
    "08:30 PM",
    "09:00 PM",
)

# Services offered on the appointment form
APPOINTMENT_SERVICES: List[str] = [
    "General Consultation",
    "Pregnancy Care",
    "High Risk Pregnancy",
    "PCOS/PCOD Treatment",
    "Infertility Treatment",
    "Laparoscopy",
    "Well Women Health",
    "Pregnancy Complications",
]

# Weekday names in Sunday-first numbering (0 = Sunday)
WEEKDAY_NAMES = {
    0: "Sunday",
    1: "Monday",
    2: "Tuesday",
    3: "Wednesday",
    4: "Thursday",
    5: "Friday",
    6: "Saturday",
}


def is_time_slot(label: str) -> bool:
    """Check whether a label belongs to the enumerated slot set."""
    return label in TIME_SLOTS
