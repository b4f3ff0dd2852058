"""Runtime settings read from the environment (and a local .env file)."""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

DEFAULT_DATABASE_URL = "sqlite:///seats.db"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    port: int = 5000
    lock_timeout_ms: int = 5000
    default_seat_price_cents: int = 5000
    payment_api_url: Optional[str] = None
    payment_api_key: Optional[str] = None
    payment_timeout_seconds: int = 10
    log_level: str = "INFO"
    seed_demo_event: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from os.environ after loading .env, if present."""
        load_dotenv()
        return cls(
            database_url=os.getenv("DATABASE_URL") or DEFAULT_DATABASE_URL,
            port=_env_int("PORT", 5000),
            lock_timeout_ms=_env_int("LOCK_TIMEOUT_MS", 5000),
            default_seat_price_cents=_env_int("DEFAULT_SEAT_PRICE_CENTS", 5000),
            payment_api_url=os.getenv("PAYMENT_API_URL") or None,
            payment_api_key=os.getenv("PAYMENT_API_KEY") or None,
            payment_timeout_seconds=_env_int("PAYMENT_TIMEOUT_SECONDS", 10),
            log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
            seed_demo_event=_env_bool("SEED_DEMO_EVENT"),
        )
