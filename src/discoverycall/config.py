"""Startup configuration.

``validate_config()`` checks that required environment variables are set
before the server accepts connections, so a missing key causes a clear
startup failure rather than a silent mid-call crash.  ``load_settings()``
turns the environment into a frozen ``Settings`` used by every call.

Collaborator URLs are optional: an unset URL means that collaborator is
absent and the call degrades (no memory, generic scheduling prompt).
"""

import os
import sys
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

REQUIRED_VARS = [
    "OPENAI_API_KEY",
]

OPTIONAL_VARS = [
    "CALENDAR_API_URL",
    "MEMORY_API_URL",
    "WEBHOOK_URL",
    "WEBHOOK_SECRET",
    "BUSINESS_TIMEZONE",
    "LOG_LEVEL",
]


@dataclass(frozen=True)
class Settings:
    openai_api_key: str = ""
    openai_model: str = "gpt-4o"

    calendar_api_url: str = ""
    calendar_api_key: str = ""
    memory_api_url: str = ""
    memory_api_key: str = ""
    webhook_url: str = ""
    webhook_secret: str = ""

    business_timezone: str = "America/Phoenix"
    business_timezone_label: str = "Arizona time"
    agent_name: str = "Sarah"
    company_name: str = "Nexella AI"

    # Anti-loop knobs
    min_response_spacing_ms: int = 2000
    max_responses_per_minute: int = 10
    booking_cooldown_ms: int = 10000
    booking_dispatch_delay_s: float = 1.0


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r, using %d", name, raw, default)
        return default


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r, using %s", name, raw, default)
        return default


def load_settings() -> Settings:
    """Build Settings from the current environment."""
    return Settings(
        openai_api_key=os.getenv("OPENAI_API_KEY", ""),
        openai_model=os.getenv("OPENAI_MODEL", "gpt-4o"),
        calendar_api_url=os.getenv("CALENDAR_API_URL", ""),
        calendar_api_key=os.getenv("CALENDAR_API_KEY", ""),
        memory_api_url=os.getenv("MEMORY_API_URL", ""),
        memory_api_key=os.getenv("MEMORY_API_KEY", ""),
        webhook_url=os.getenv("WEBHOOK_URL", ""),
        webhook_secret=os.getenv("WEBHOOK_SECRET", ""),
        business_timezone=os.getenv("BUSINESS_TIMEZONE", "America/Phoenix"),
        business_timezone_label=os.getenv("BUSINESS_TIMEZONE_LABEL", "Arizona time"),
        agent_name=os.getenv("AGENT_NAME", "Sarah"),
        company_name=os.getenv("COMPANY_NAME", "Nexella AI"),
        min_response_spacing_ms=_int_env("MIN_RESPONSE_SPACING_MS", 2000),
        max_responses_per_minute=_int_env("MAX_RESPONSES_PER_MINUTE", 10),
        booking_cooldown_ms=_int_env("BOOKING_COOLDOWN_MS", 10000),
        booking_dispatch_delay_s=_float_env("BOOKING_DISPATCH_DELAY_S", 1.0),
    )


def validate_config() -> None:
    """Validate environment variables at startup.

    Exits the process with a clear error if any required variable is missing
    or empty.  Logs warnings for missing optional variables.
    """
    missing = [var for var in REQUIRED_VARS if not os.getenv(var)]

    if missing:
        print(
            f"\nFATAL: Missing required environment variables:\n"
            f"  {', '.join(missing)}\n"
            f"\nSet them in .env (local) or your deployment secrets.\n",
            file=sys.stderr,
        )
        sys.exit(1)

    for var in OPTIONAL_VARS:
        if not os.getenv(var):
            logger.warning("Optional env var %s is not set", var)
