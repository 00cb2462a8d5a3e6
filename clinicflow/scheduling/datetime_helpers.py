import datetime as dt
import math
from zoneinfo import ZoneInfo

from loguru import logger


def resolve_timezone(name: str) -> dt.tzinfo:
    """Resolve a timezone name, falling back to UTC if invalid."""
    try:
        return ZoneInfo(name)
    except Exception:
        logger.warning("Invalid clinic timezone '{}'; defaulting to UTC", name)
        return dt.timezone.utc


def parse_instant(value: dt.datetime | str) -> dt.datetime | None:
    """Parse an ISO 8601 timestamp. Returns ``None`` when it cannot be parsed.

    ``datetime`` objects are returned unchanged. A trailing ``Z`` is accepted.
    """
    if isinstance(value, dt.datetime):
        return value
    if not isinstance(value, str):
        return None
    try:
        return dt.datetime.fromisoformat(value.strip())
    except ValueError:
        return None


def ceil_minutes(delta: dt.timedelta) -> int:
    """Whole minutes in ``delta``, rounded up: ``ceil_minutes(timedelta(seconds=61)) == 2``."""
    return math.ceil(delta.total_seconds() / 60)


def format_hour(hour: int) -> str:
    """Format ``8`` → ``08:00``."""
    return f"{hour:02d}:00"
