from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    database_url: str
    booking_api_key: str
    admin_api_key: str
    slot_stride_minutes: int
    booking_horizon_days: int
    default_duration_minutes: int
    partial_block_minutes: int
    booking_write_retries: int
    booking_rate_limit: int
    booking_rate_window_seconds: int
    log_level: str


def _clean(value: str) -> str:
    return value.strip().strip('"').strip("'")


def _get_required_env(name: str) -> str:
    value = _clean(os.getenv(name, ""))
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def _get_positive_int_env(name: str, default: int) -> int:
    raw = _clean(os.getenv(name, ""))
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise RuntimeError(f"Environment variable {name} must be an integer, got {raw!r}") from exc
    if value <= 0:
        raise RuntimeError(f"Environment variable {name} must be positive, got {value}")
    return value


@lru_cache
def get_settings() -> Settings:
    return Settings(
        app_name="Booking Availability API",
        app_version="1.0.0",
        database_url=_get_required_env("DATABASE_URL"),
        booking_api_key=_get_required_env("BOOKING_API_KEY"),
        admin_api_key=_get_required_env("ADMIN_API_KEY"),
        slot_stride_minutes=_get_positive_int_env("SLOT_STRIDE_MINUTES", 15),
        booking_horizon_days=_get_positive_int_env("BOOKING_HORIZON_DAYS", 30),
        default_duration_minutes=_get_positive_int_env("DEFAULT_DURATION_MINUTES", 60),
        partial_block_minutes=_get_positive_int_env("PARTIAL_BLOCK_MINUTES", 60),
        booking_write_retries=_get_positive_int_env("BOOKING_WRITE_RETRIES", 3),
        booking_rate_limit=_get_positive_int_env("BOOKING_RATE_LIMIT", 10),
        booking_rate_window_seconds=_get_positive_int_env("BOOKING_RATE_WINDOW_SECONDS", 60),
        log_level=_clean(os.getenv("LOG_LEVEL", "INFO")).upper() or "INFO",
    )
