"""
Storyboard Forge - Configuration
Reads API credentials, job limits and storage paths from the environment (.env supported).
"""
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

DEFAULT_API_URL = "https://oldapi84.vidtory.net/api/image/nano2"

# 15 minutes hard ceiling per generation job
DEFAULT_JOB_TIMEOUT_SECONDS = 900
DEFAULT_POLL_INTERVAL_MS = 3000
DEFAULT_REQUEST_TIMEOUT_SECONDS = 60


@dataclass(frozen=True)
class Settings:
    api_url: str = DEFAULT_API_URL
    api_key: str = ""
    job_timeout: float = DEFAULT_JOB_TIMEOUT_SECONDS
    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS
    projects_dir: Path = Path(__file__).parent / "projects"
    log_level: str = "INFO"


def _number_from_env(name, default, cast=float):
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = cast(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {raw!r}")
    return value


def load_settings():
    """Build Settings from environment variables.

    Returns:
        Settings with defaults filled in for anything not set
    """
    projects_dir = os.environ.get("PROJECTS_DIR")
    return Settings(
        api_url=os.environ.get("STORYBOARD_API_URL", DEFAULT_API_URL).rstrip("/"),
        api_key=os.environ.get("STORYBOARD_API_KEY", ""),
        job_timeout=_number_from_env("JOB_TIMEOUT_SECONDS", DEFAULT_JOB_TIMEOUT_SECONDS),
        poll_interval_ms=_number_from_env("POLL_INTERVAL_MS", DEFAULT_POLL_INTERVAL_MS, cast=int),
        request_timeout=_number_from_env("REQUEST_TIMEOUT_SECONDS", DEFAULT_REQUEST_TIMEOUT_SECONDS),
        projects_dir=Path(projects_dir) if projects_dir else Settings.projects_dir,
        log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    )
