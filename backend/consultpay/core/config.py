from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

DEFAULT_API_URL = "http://localhost:3001/api"


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    return float(value)


@dataclass
class PaymentTimings:
    """Timer budget for one STK push attempt."""

    countdown_seconds: int = 60
    status_poll_seconds: float = 4.0
    verify_poll_seconds: float = 5.0


@dataclass
class Settings:
    api_url: Optional[str] = DEFAULT_API_URL
    api_token: Optional[str] = None
    api_timeout: float = 15.0
    use_sandbox: bool = False
    timings: PaymentTimings = field(default_factory=PaymentTimings)
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"


def load_settings() -> Settings:
    """Build settings from the process environment (and .env, if present)."""
    return Settings(
        api_url=os.getenv("CONSULT_API_URL", DEFAULT_API_URL) or None,
        api_token=os.getenv("CONSULT_API_TOKEN") or None,
        api_timeout=_env_float("CONSULT_API_TIMEOUT", 15.0),
        use_sandbox=_env_bool("CONSULT_API_SANDBOX"),
        timings=PaymentTimings(
            countdown_seconds=int(_env_float("PAYMENT_COUNTDOWN_SECONDS", 60)),
            status_poll_seconds=_env_float("BOOKING_POLL_SECONDS", 4.0),
            verify_poll_seconds=_env_float("VERIFY_POLL_SECONDS", 5.0),
        ),
        host=os.getenv("API_HOST", "0.0.0.0"),
        port=int(os.getenv("API_PORT", 8000)),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
