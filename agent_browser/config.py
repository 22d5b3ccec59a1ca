"""Configuration for the agent browser service."""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path(__file__).resolve().parent.parent / ".env")


LOG_LEVELS = ("debug", "info", "warn", "warning", "error")


def _positive_int(name: str, default: int) -> int:
    """Read a positive integer option from the environment."""
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be a positive integer, got {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{name} must be a positive integer, got {value}")
    return value


def _log_level(raw: str) -> str:
    level = raw.strip().lower()
    if level not in LOG_LEVELS:
        raise ValueError(f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}, got {raw!r}")
    return "warning" if level == "warn" else level


class Config:
    # Server auth. Empty API_KEY disables auth (dev mode)
    API_KEY = os.getenv("API_KEY", "")

    # Server bind
    HOST = os.getenv("HOST", "0.0.0.0")
    PORT = _positive_int("PORT", 8000)

    LOG_LEVEL = _log_level(os.getenv("LOG_LEVEL", "info"))

    # Session capacity + idle reclamation
    MAX_SESSIONS = _positive_int("MAX_SESSIONS", 2)
    SESSION_TTL_SEC = _positive_int("SESSION_TTL_SEC", 900)
    SESSION_SWEEP_INTERVAL_SEC = _positive_int("SESSION_SWEEP_INTERVAL_SEC", 10)

    # Snapshot budgets
    SNAPSHOT_TEXT_MAX_CHARS = _positive_int("SNAPSHOT_TEXT_MAX_CHARS", 1200)
    SNAPSHOT_ACTIONS_MAX = _positive_int("SNAPSHOT_ACTIONS_MAX", 60)
    LABEL_MAX_CHARS = 50
    TRUNCATION_MARKER = "...(truncated)"

    # Per-session profiles live under DATA_DIR/sessions/<id>/profile
    DATA_DIR = Path(os.getenv("DATA_DIR", "/data"))

    # Browser defaults
    HEADLESS = os.getenv("HEADLESS", "1") != "0"
    DEFAULT_VIEWPORT = {"width": 1280, "height": 720}
    DEFAULT_TIMEOUT = 30_000  # ms
    DEFAULT_WAIT_MS = 1_000
    OPEN_SETTLE_MS = 500

    @classmethod
    def sessions_dir(cls) -> Path:
        return cls.DATA_DIR / "sessions"

    @classmethod
    def ensure_dirs(cls) -> None:
        cls.sessions_dir().mkdir(parents=True, exist_ok=True)
