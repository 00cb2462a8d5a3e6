import datetime as dt

from clinicflow.config import ClinicScheduleConfig
from clinicflow.domain.models import ValidationResult
from clinicflow.scheduling.datetime_helpers import format_hour, parse_instant, resolve_timezone

_WEEKDAY_ABBREVIATIONS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")


class ClinicCalendar:
    """Answers whether an instant is a valid moment for clinic operations.

    Every hour, minute and weekday is read in the clinic timezone, never in
    the timezone of the machine running the code.
    """

    def __init__(self, schedule: ClinicScheduleConfig | None = None) -> None:
        self.schedule = schedule or ClinicScheduleConfig()
        self.tz = resolve_timezone(self.schedule.timezone)

    def localize(self, instant: dt.datetime) -> dt.datetime:
        """Return ``instant`` as clinic-local time. Naive values are taken as clinic-local."""
        if instant.tzinfo is None:
            return instant.replace(tzinfo=self.tz)
        return instant.astimezone(self.tz)

    def now(self) -> dt.datetime:
        return dt.datetime.now(self.tz)

    def is_work_day(self, instant: dt.datetime) -> bool:
        return self.localize(instant).weekday() in self.schedule.work_days

    def within_work_hours(self, instant: dt.datetime) -> bool:
        hour = self.localize(instant).hour
        return self.schedule.start_hour <= hour < self.schedule.end_hour

    def is_lunch_time(self, instant: dt.datetime) -> bool:
        hour = self.localize(instant).hour
        return self.schedule.lunch_start <= hour < self.schedule.lunch_end

    def is_valid_slot(self, instant: dt.datetime) -> bool:
        return self.localize(instant).minute % self.schedule.slot_duration_minutes == 0

    def is_open(self, instant: dt.datetime) -> bool:
        return self.is_work_day(instant) and self.within_work_hours(instant)

    def work_days_label(self) -> str:
        """Short label for the working days, e.g. ``Mon-Fri`` or ``Mon, Wed, Fri``."""
        days = sorted(self.schedule.work_days)
        if not days:
            return "none"
        if days == list(range(days[0], days[-1] + 1)) and len(days) > 2:
            return f"{_WEEKDAY_ABBREVIATIONS[days[0]]}-{_WEEKDAY_ABBREVIATIONS[days[-1]]}"
        return ", ".join(_WEEKDAY_ABBREVIATIONS[d] for d in days)

    def work_hours_label(self) -> str:
        return f"{format_hour(self.schedule.start_hour)}-{format_hour(self.schedule.end_hour)}"

    def lunch_label(self) -> str:
        return f"{format_hour(self.schedule.lunch_start)}-{format_hour(self.schedule.lunch_end)}"

    def validate_reschedule_instant(
        self, instant: dt.datetime | str, now: dt.datetime | None = None
    ) -> ValidationResult:
        """Check a candidate new time for a rescheduled appointment.

        Checks run in order and the first failure is reported: parseable,
        strictly in the future, work day, working hours, outside lunch,
        aligned to a slot, and within the advance-booking horizon.
        Unparseable strings fail closed.
        """
        parsed = parse_instant(instant)
        if parsed is None:
            return ValidationResult.fail("Invalid date/time")

        candidate = self.localize(parsed)
        current = self.localize(now) if now is not None else self.now()

        if candidate.astimezone(dt.timezone.utc) <= current.astimezone(dt.timezone.utc):
            return ValidationResult.fail("The new date must be in the future")
        if not self.is_work_day(candidate):
            return ValidationResult.fail(
                f"Only clinic work days are allowed ({self.work_days_label()})"
            )
        if not self.within_work_hours(candidate):
            return ValidationResult.fail(f"Outside working hours ({self.work_hours_label()})")
        if self.is_lunch_time(candidate):
            return ValidationResult.fail(f"Not available during lunch break ({self.lunch_label()})")
        if not self.is_valid_slot(candidate):
            return ValidationResult.fail(
                f"Time must fall on a {self.schedule.slot_duration_minutes}-minute slot"
            )
        horizon = current.astimezone(dt.timezone.utc) + dt.timedelta(
            days=self.schedule.max_advance_days
        )
        if candidate > horizon:
            return ValidationResult.fail(
                f"Cannot book more than {self.schedule.max_advance_days} days in advance"
            )
        return ValidationResult.ok()

    def generate_time_slots(self, day: dt.date, include_lunch: bool = True) -> list[dt.datetime]:
        """List the clinic-local slot start times for ``day``.

        Returns an empty list when ``day`` is not a work day.
        """
        slots: list[dt.datetime] = []
        step = self.schedule.slot_duration_minutes
        for hour in range(self.schedule.start_hour, self.schedule.end_hour):
            for minute in range(0, 60, step):
                slot = dt.datetime.combine(day, dt.time(hour, minute), tzinfo=self.tz)
                if not self.is_work_day(slot):
                    return []
                if not include_lunch and self.is_lunch_time(slot):
                    continue
                slots.append(slot)
        return slots
