import logging
import os
from pathlib import Path
from dotenv import load_dotenv

BASE_DIR = Path(__file__).parent
# Always load this project's root .env and let it override inherited shell vars.
load_dotenv(BASE_DIR / ".env", override=True)


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def socket_url_for(api_url: str) -> str:
    """Socket.IO lives at the API host root, without the trailing /api."""
    url = api_url.rstrip("/")
    if url.endswith("/api"):
        url = url[: -len("/api")]
    return url

# ── Remote LMS API ────────────────────────────────────────
LMS_API_URL = (os.getenv("LMS_API_URL") or "http://localhost:54112/api").rstrip("/")
LMS_SOCKET_URL = (os.getenv("LMS_SOCKET_URL") or socket_url_for(LMS_API_URL)).rstrip("/")
LMS_HTTP_TIMEOUT_SEC = _float_env("LMS_HTTP_TIMEOUT_SEC", 20.0)

# ── Course player ─────────────────────────────────────────
TRACK_INTERVAL_SEC = max(1, _int_env("TRACK_INTERVAL_SEC", 30))
TRACK_SECONDS = _int_env("TRACK_SECONDS", 30)
TRACK_IDLE_TIMEOUT_SEC = _int_env("TRACK_IDLE_TIMEOUT_SEC", 300)

# ── Portal ────────────────────────────────────────────────
PORTAL_SECRET_KEY = os.getenv("PORTAL_SECRET_KEY") or "dev-only-change-me"
PORTAL_HOST = os.getenv("PORTAL_HOST", "127.0.0.1")
PORTAL_PORT = _int_env("PORTAL_PORT", 8787)
COURSES_PAGE_SIZE = _int_env("COURSES_PAGE_SIZE", 12)
NOTIFICATIONS_PAGE_SIZE = _int_env("NOTIFICATIONS_PAGE_SIZE", 20)
LIVE_NOTIFICATIONS = (os.getenv("LIVE_NOTIFICATIONS") or "1").strip().lower() in {"1", "true", "yes", "on"}

# ── Logging ───────────────────────────────────────────────
LOG_LEVEL = (os.getenv("LOG_LEVEL") or "INFO").strip().upper()
LOG_FORMAT = "%(asctime)s | %(levelname)-5s | %(name)s | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def setup_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or LOG_LEVEL), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
    )
    # engineio/socketio are chatty at INFO
    logging.getLogger("engineio").setLevel(logging.WARNING)
    logging.getLogger("socketio").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
