import datetime as dt
from functools import lru_cache

from clinicflow.config import BusinessRulesConfig
from clinicflow.domain.models import BusinessRuleContext
from clinicflow.scheduling.calendar import ClinicCalendar
from clinicflow.scheduling.datetime_helpers import ceil_minutes


class RuleSet:
    """Window constants plus the clinic calendar they are evaluated against."""

    def __init__(self, config: BusinessRulesConfig | None = None) -> None:
        self.config = config or BusinessRulesConfig()
        self.calendar = ClinicCalendar(self.config.schedule)


@lru_cache(maxsize=1)
def default_rules() -> RuleSet:
    """Rule set built from the environment, loaded once per process."""
    return RuleSet()


def resolve_now(
    now: dt.datetime | None, context: BusinessRuleContext | None, calendar: ClinicCalendar
) -> dt.datetime:
    """Pick the evaluation instant: explicit ``now``, then the context, then the clock."""
    if now is None and context is not None:
        now = context.current_time
    if now is None:
        return calendar.now()
    return calendar.localize(now)


# Window arithmetic runs on UTC instants: aware datetimes that share a tzinfo
# are compared and subtracted as wall-clock values, which drifts across DST.
def _utc(instant: dt.datetime) -> dt.datetime:
    return instant.astimezone(dt.timezone.utc)


def shift(instant: dt.datetime, minutes: int) -> dt.datetime:
    return _utc(instant) + dt.timedelta(minutes=minutes)


def is_before(instant: dt.datetime, reference: dt.datetime) -> bool:
    return _utc(instant) < _utc(reference)


def is_after(instant: dt.datetime, reference: dt.datetime) -> bool:
    return _utc(instant) > _utc(reference)


def within_window(now: dt.datetime, start: dt.datetime, end: dt.datetime) -> bool:
    """Both bounds are inclusive."""
    return _utc(start) <= _utc(now) <= _utc(end)


def minutes_until(target: dt.datetime, now: dt.datetime) -> int:
    """Minutes left before ``target``, rounded up so a blocked action never shows 0."""
    return max(ceil_minutes(_utc(target) - _utc(now)), 0)


def minutes_since(origin: dt.datetime, now: dt.datetime) -> int:
    """Whole minutes elapsed since ``origin``, rounded down."""
    return max(int((_utc(now) - _utc(origin)).total_seconds() // 60), 0)


def was_recently_updated(
    updated_at: dt.datetime | None, now: dt.datetime, cooldown_minutes: int
) -> bool:
    """True when the last edit is inside the cooldown or stamped after ``now``."""
    if updated_at is None:
        return False
    return _utc(updated_at) > shift(now, -cooldown_minutes)
