"""
Runtime configuration for the KisanSathi backend.

Every value is read from the environment when asked for, so a `.env` file
loaded at startup and variables changed in tests are both honoured.
"""
import os
from typing import Optional

# Checked in this order; the first non-empty value wins.
API_KEY_ENV_VARS = (
    "GOOGLE_GENERATIVE_AI_API_KEY",
    "GOOGLE_API_KEY",
    "GEMINI_API_KEY",
)

DEFAULT_MODEL = "gemini-2.5-flash-lite"
OPENWEATHER_URL = "https://api.openweathermap.org/data/2.5/weather"


def get_api_key() -> Optional[str]:
    """Return the generative-AI credential, or None when none is configured.

    Whitespace-only values count as unset, so a blank line in `.env` does not
    shadow a real key further down the priority list.
    """
    for name in API_KEY_ENV_VARS:
        value = (os.getenv(name) or "").strip()
        if value:
            return value
    return None


def get_model_name() -> str:
    return os.getenv("GEMINI_MODEL", "").strip() or DEFAULT_MODEL


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def get_chat_temperature() -> float:
    return _env_float("CHAT_TEMPERATURE", 0.7)


def get_chat_max_output_tokens() -> int:
    return _env_int("CHAT_MAX_OUTPUT_TOKENS", 500)


def get_upstream_timeout() -> float:
    """Seconds allowed for a single call to the text-generation provider."""
    return _env_float("UPSTREAM_TIMEOUT", 30.0)


def get_upstream_max_retries() -> int:
    # Retries apply to transient failures only; quota errors are never retried.
    return max(0, _env_int("UPSTREAM_MAX_RETRIES", 0))


def get_upstream_retry_backoff() -> float:
    return max(0.0, _env_float("UPSTREAM_RETRY_BACKOFF", 0.5))


def get_openweather_api_key() -> Optional[str]:
    return (os.getenv("OPENWEATHER_API_KEY") or "").strip() or None


def get_openweather_url() -> str:
    return os.getenv("OPENWEATHER_URL", "").strip() or OPENWEATHER_URL
