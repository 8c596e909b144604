from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent


class Settings(BaseSettings):
    """
    Clinic-wide configuration, read from CLINIC_* environment variables or .env.
    """

    model_config = SettingsConfigDict(env_prefix="CLINIC_", env_file=".env", extra="ignore")

    database_url: str = f"sqlite:///{BASE_DIR / 'clinic.db'}"

    clinic_timezone: str = "America/New_York"
    slot_step_minutes: int = Field(30, gt=0, le=240)
    doctor_slot_step_minutes: int = Field(60, gt=0, le=240)
    default_duration_minutes: int = Field(60, gt=0, le=480)
    reference_duration_minutes: int = Field(60, gt=0, le=480)

    calendar_timeout_seconds: float = Field(10.0, gt=0)
    calendar_num_retries: int = Field(1, ge=0)
    google_service_account_file: Optional[str] = None
    google_calendar_id: Optional[str] = None

    cors_origins: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]
    log_level: str = "INFO"

    @field_validator("clinic_timezone")
    @classmethod
    def known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown IANA timezone: {value}") from exc
        return value

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.clinic_timezone)


@lru_cache
def get_settings() -> Settings:
    return Settings()
