import logging
import os

logger = logging.getLogger(__name__)


def _canon_prefix(val):
    """
    Normalize API prefix to always be exactly like '/api':
      - defaults to '/api' when unset/empty
      - ensures a single leading slash
      - removes any trailing slash (except for root)
    """
    val = (val or "/api").strip()
    if not val.startswith("/"):
        val = "/" + val
    if len(val) > 1 and val.endswith("/"):
        val = val[:-1]
    return val


def _env_int(name: str, default: int, *, minimum: int | None = None) -> int:
    raw_value = os.getenv(name)
    if raw_value is None or not raw_value.strip():
        return default
    try:
        value = int(raw_value)
    except ValueError:
        logger.warning(
            "%s is not a valid integer (got %r); defaulting to %d",
            name,
            raw_value,
            default,
        )
        return default
    if minimum is not None and value < minimum:
        logger.warning("%s must be >= %d; defaulting to %d", name, minimum, default)
        return default
    return value


def _env_float(name: str, default: float) -> float:
    raw_value = os.getenv(name)
    if raw_value is None or not raw_value.strip():
        return default
    try:
        value = float(raw_value)
    except ValueError:
        logger.warning(
            "%s is not a valid float (got %r); defaulting to %.2f",
            name,
            raw_value,
            default,
        )
        return default
    if value < 0:
        logger.warning("%s cannot be negative; defaulting to %.2f", name, default)
        return default
    return value


API_PREFIX = _canon_prefix(os.getenv("API_PREFIX"))

# Scoring defaults, applied per field when a match carries no override.
DEFAULT_BEST_OF = _env_int("DEFAULT_BEST_OF", 3)
DEFAULT_POINTS_TO_WIN = _env_int("DEFAULT_POINTS_TO_WIN", 25)
DEFAULT_FINAL_SET_POINTS = _env_int("DEFAULT_FINAL_SET_POINTS", 15)
DEFAULT_WIN_BY = _env_int("DEFAULT_WIN_BY", 2)

# Stream pool
STREAM_POOL_STUCK_HOURS = _env_float("STREAM_POOL_STUCK_HOURS", 6.0)
STREAM_POOL_RETENTION_DAYS = _env_int("STREAM_POOL_RETENTION_DAYS", 7, minimum=1)
STREAM_POOL_MAX_PROVISION = 20

# Match lifecycle
DEFAULT_START_DELAY_MINUTES = _env_int("DEFAULT_START_DELAY_MINUTES", 5, minimum=0)
DEFAULT_PRIVACY_STATUS = (os.getenv("DEFAULT_PRIVACY_STATUS") or "unlisted").strip().lower()
if DEFAULT_PRIVACY_STATUS not in {"public", "unlisted"}:
    raise ValueError("DEFAULT_PRIVACY_STATUS must be one of: public, unlisted")
BROADCAST_TITLE_TIMEZONE = os.getenv("BROADCAST_TITLE_TIMEZONE") or "America/New_York"
BROADCAST_DEFAULT_TITLE_PREFIX = os.getenv("BROADCAST_DEFAULT_TITLE_PREFIX") or "Clubstream"

# Auto-live poller
AUTO_LIVE_SETTLE_SECONDS = _env_float("AUTO_LIVE_SETTLE_SECONDS", 3.0)
AUTO_LIVE_THROTTLE_SECONDS = _env_float("AUTO_LIVE_THROTTLE_SECONDS", 3.0)

# YouTube Data API
YOUTUBE_API_BASE = (
    os.getenv("YOUTUBE_API_BASE") or "https://www.googleapis.com/youtube/v3"
).rstrip("/")
YOUTUBE_TIMEOUT_SECONDS = _env_float("YOUTUBE_TIMEOUT_SECONDS", 15.0)
