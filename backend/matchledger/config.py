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


def _int_env(name: str, default: int, *, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("%s is not a valid integer (got %r); defaulting to %d", name, raw, default)
        return default
    if value < minimum:
        logger.warning("%s must be >= %d; defaulting to %d", name, minimum, default)
        return default
    return value


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("%s is not a valid float (got %r); defaulting to %.2f", name, raw, default)
        return default
    if value < 0:
        logger.warning("%s cannot be negative; defaulting to %.2f", name, default)
        return default
    return value


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


API_PREFIX = _canon_prefix(os.getenv("API_PREFIX"))

ALLOWED_ORIGINS = [
    o.strip() for o in os.getenv("ALLOWED_ORIGINS", "").split(",") if o.strip()
]

# Aggregation engine
AGGREGATION_MAX_ATTEMPTS = _int_env("AGGREGATION_MAX_ATTEMPTS", 5, minimum=1)
AGGREGATION_RETRY_BACKOFF = _float_env("AGGREGATION_RETRY_BACKOFF", 0.05)
COUNT_DRAWS_IN_PERIODS = _bool_env("COUNT_DRAWS_IN_PERIODS", True)

# Score rules
MAX_GOALS = 11
WINNING_SCORE = 10
ALLOW_ELEVEN_TEN = _bool_env("ALLOW_ELEVEN_TEN", False)

# Backfill job
BACKFILL_PAGE_SIZE = _int_env("BACKFILL_PAGE_SIZE", 500, minimum=1)
BACKFILL_WRITE_BATCH = _int_env("BACKFILL_WRITE_BATCH", 450, minimum=1)
BACKFILL_BATCH_PAUSE = _float_env("BACKFILL_BATCH_PAUSE", 0.1)
BACKFILL_TIME_BUDGET = _float_env("BACKFILL_TIME_BUDGET", 0.0)
BACKFILL_DEFAULT_START = os.getenv("BACKFILL_DEFAULT_START") or "2025-01-01"
BACKFILL_SECRET = os.getenv("BACKFILL_SECRET")

# Player lookups done while recording a match
PLAYER_CACHE_TTL = _float_env("PLAYER_CACHE_TTL", 60.0)
PLAYER_LOOKUP_CHUNK = 30
