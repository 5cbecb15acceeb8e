"""
Configuration service for runtime console settings.
"""
import os
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

_DEFAULT_PLAN_API_BASE_URL = "http://localhost:8000/api"
_DEFAULT_PLAN_API_TIMEOUT_SECONDS = 30.0
_DEFAULT_APPROVED_CARGO_RELEASE_STATUS = "APPROVED"

_PLAN_API_BASE_URL: Optional[str] = None
_APPROVED_CARGO_RELEASE_STATUS: Optional[str] = None


def get_plan_api_base_url() -> str:
    """Return the base URL of the destuffing plan REST backend."""
    if _PLAN_API_BASE_URL is not None:
        return _PLAN_API_BASE_URL

    raw = os.getenv("PLAN_API_BASE_URL", _DEFAULT_PLAN_API_BASE_URL).replace('"', "").strip()
    if not raw.startswith("http"):
        raw = "http://" + raw.lstrip(":/")
    return raw.rstrip("/")


def set_plan_api_base_url(url: Optional[str]) -> None:
    """Override the plan API base URL in memory (None resets)."""
    global _PLAN_API_BASE_URL
    _PLAN_API_BASE_URL = url.rstrip("/") if url else None


def get_plan_api_timeout() -> float:
    env_value = os.getenv("PLAN_API_TIMEOUT_SECONDS")
    if env_value:
        try:
            return float(env_value)
        except ValueError:
            return _DEFAULT_PLAN_API_TIMEOUT_SECONDS

    return _DEFAULT_PLAN_API_TIMEOUT_SECONDS


def get_approved_cargo_release_status() -> str:
    """Return the normalized cargo release status that allows destuffing."""
    if _APPROVED_CARGO_RELEASE_STATUS is not None:
        return _APPROVED_CARGO_RELEASE_STATUS

    env_value = os.getenv("APPROVED_CARGO_RELEASE_STATUS")
    if not env_value or not env_value.strip():
        return _DEFAULT_APPROVED_CARGO_RELEASE_STATUS
    return env_value.strip().upper()


def set_approved_cargo_release_status(status: Optional[str]) -> None:
    """Override the approved cargo release status in memory (None resets)."""
    global _APPROVED_CARGO_RELEASE_STATUS
    _APPROVED_CARGO_RELEASE_STATUS = status.strip().upper() if status else None
