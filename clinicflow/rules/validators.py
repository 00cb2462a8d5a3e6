"""Per-action business rules for the admission desk.

Each validator takes an appointment snapshot and returns a
:class:`ValidationResult`. Rules run in a fixed order and the first failure
is reported, so the caller always gets a single reason it can show inline.
``BusinessRuleContext.allow_override`` skips timing, calendar and cooldown
rules but never the status precondition.
"""

import datetime as dt
from typing import Callable

from loguru import logger

from clinicflow.domain.models import (
    AdmissionAction,
    Appointment,
    AppointmentStatus,
    BusinessRuleContext,
    ValidationResult,
)
from clinicflow.rules.windows import (
    RuleSet,
    default_rules,
    is_after,
    is_before,
    minutes_since,
    minutes_until,
    resolve_now,
    shift,
    was_recently_updated,
)
from clinicflow.scheduling.datetime_helpers import parse_instant

ACTIVE_STATUSES = frozenset({AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED})
RESCHEDULABLE_STATUSES = ACTIVE_STATUSES | {AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW}

Validator = Callable[..., ValidationResult]


def _minutes(n: int) -> str:
    return f"{n} minute" if n == 1 else f"{n} minutes"


def _deny(action: AdmissionAction, reason: str) -> ValidationResult:
    logger.debug("{} denied: {}", action.value, reason)
    return ValidationResult.fail(reason)


def _prepare(
    appointment: Appointment,
    now: dt.datetime | None,
    context: BusinessRuleContext | None,
    rules: RuleSet | None,
) -> tuple[RuleSet, dt.datetime, dt.datetime, bool]:
    rules = rules or default_rules()
    current = resolve_now(now, context, rules.calendar)
    scheduled = rules.calendar.localize(appointment.scheduled_at)
    override = bool(context and context.allow_override)
    return rules, current, scheduled, override


def can_check_in(
    appointment: Appointment,
    now: dt.datetime | None = None,
    context: BusinessRuleContext | None = None,
    *,
    rules: RuleSet | None = None,
) -> ValidationResult:
    """Mark the patient as present.

    Open from 30 minutes before to 15 minutes after the scheduled time
    (both inclusive), only while the clinic is open, and not within the
    cooldown after the last edit.
    """
    action = AdmissionAction.CHECK_IN
    rules, current, scheduled, override = _prepare(appointment, now, context, rules)
    cfg = rules.config
    calendar = rules.calendar

    if appointment.status not in ACTIVE_STATUSES:
        return _deny(action, f"Cannot check in an appointment that is {appointment.status.label}")
    if override:
        return ValidationResult.ok()

    window_start = shift(scheduled, -cfg.check_in_window_before_minutes)
    window_end = shift(scheduled, cfg.check_in_window_after_minutes)

    if is_before(current, window_start):
        wait = minutes_until(window_start, current)
        return _deny(action, f"Check-in available in {_minutes(wait)}")
    if is_after(current, window_end):
        return _deny(
            action, "Check-in window expired. Mark as no-show or reschedule the appointment"
        )
    if not calendar.is_work_day(current):
        return _deny(
            action,
            f"Check-in is only available on clinic work days ({calendar.work_days_label()})",
        )
    if not calendar.within_work_hours(current):
        return _deny(
            action,
            f"Check-in is only available during working hours ({calendar.work_hours_label()})",
        )

    updated_at = calendar.localize(appointment.updated_at) if appointment.updated_at else None
    if was_recently_updated(updated_at, current, cfg.rapid_change_cooldown_minutes):
        return _deny(action, "Appointment was updated recently. Wait a moment before trying again")

    return ValidationResult.ok()


def can_complete_appointment(
    appointment: Appointment,
    now: dt.datetime | None = None,
    context: BusinessRuleContext | None = None,
    *,
    rules: RuleSet | None = None,
) -> ValidationResult:
    """Close a consultation. Requires a checked-in patient and a recent enough slot."""
    action = AdmissionAction.COMPLETE
    rules, current, scheduled, override = _prepare(appointment, now, context, rules)
    window = rules.config.completion_window_after_minutes

    if appointment.status != AppointmentStatus.CHECKED_IN:
        return _deny(
            action,
            f"Cannot complete an appointment that is {appointment.status.label}; "
            "the patient must be checked in",
        )
    if override:
        return ValidationResult.ok()

    if is_after(current, shift(scheduled, window)):
        elapsed = minutes_since(scheduled, current)
        return _deny(
            action,
            f"Completion window of {_minutes(window)} closed; {_minutes(elapsed)} have passed "
            "since the scheduled time. Consider rescheduling",
        )
    return ValidationResult.ok()


def can_cancel_appointment(
    appointment: Appointment,
    now: dt.datetime | None = None,
    context: BusinessRuleContext | None = None,
    *,
    rules: RuleSet | None = None,
) -> ValidationResult:
    action = AdmissionAction.CANCEL
    rules, current, scheduled, override = _prepare(appointment, now, context, rules)

    if appointment.status not in ACTIVE_STATUSES:
        return _deny(action, f"Cannot cancel an appointment that is {appointment.status.label}")
    if override:
        return ValidationResult.ok()

    if is_before(scheduled, current):
        return _deny(action, "Appointments in the past cannot be cancelled")
    return ValidationResult.ok()


def can_mark_no_show(
    appointment: Appointment,
    now: dt.datetime | None = None,
    context: BusinessRuleContext | None = None,
    *,
    rules: RuleSet | None = None,
) -> ValidationResult:
    """Record that the patient never arrived, once the grace period is over."""
    action = AdmissionAction.NO_SHOW
    rules, current, scheduled, override = _prepare(appointment, now, context, rules)

    if appointment.status not in ACTIVE_STATUSES:
        return _deny(
            action, f"Cannot mark as no-show an appointment that is {appointment.status.label}"
        )
    if override:
        return ValidationResult.ok()

    threshold = shift(scheduled, rules.config.no_show_window_after_minutes)
    if is_before(current, threshold):
        wait = minutes_until(threshold, current)
        return _deny(action, f"Wait {_minutes(wait)} more before marking as no-show")
    return ValidationResult.ok()


def can_reschedule_appointment(
    appointment: Appointment,
    now: dt.datetime | None = None,
    context: BusinessRuleContext | None = None,
    *,
    rules: RuleSet | None = None,
) -> ValidationResult:
    """Move an appointment to another time.

    Cancelled and no-show appointments can be rescheduled at any time. Live
    ones only up to the reschedule deadline before they start.
    """
    action = AdmissionAction.RESCHEDULE
    rules, current, scheduled, override = _prepare(appointment, now, context, rules)
    hours = rules.config.reschedule_deadline_hours

    if appointment.status not in RESCHEDULABLE_STATUSES:
        return _deny(
            action, f"Cannot reschedule an appointment that is {appointment.status.label}"
        )
    if override or appointment.status not in ACTIVE_STATUSES:
        return ValidationResult.ok()

    if is_after(current, scheduled):
        return _deny(
            action, "Appointment time has passed. Mark it as no-show before rescheduling"
        )
    if is_after(current, shift(scheduled, -hours * 60)):
        unit = "hour" if hours == 1 else "hours"
        return _deny(action, f"Cannot reschedule with less than {hours} {unit} notice")
    return ValidationResult.ok()


def can_view_history(
    appointment: Appointment,
    now: dt.datetime | None = None,
    context: BusinessRuleContext | None = None,
    *,
    rules: RuleSet | None = None,
) -> ValidationResult:
    return ValidationResult.ok()


VALIDATORS: dict[AdmissionAction, Validator] = {
    AdmissionAction.CHECK_IN: can_check_in,
    AdmissionAction.COMPLETE: can_complete_appointment,
    AdmissionAction.CANCEL: can_cancel_appointment,
    AdmissionAction.NO_SHOW: can_mark_no_show,
    AdmissionAction.RESCHEDULE: can_reschedule_appointment,
    AdmissionAction.VIEW_HISTORY: can_view_history,
}


def validate_action(
    action: AdmissionAction | str,
    appointment: Appointment,
    context: BusinessRuleContext | None = None,
    *,
    now: dt.datetime | None = None,
    rules: RuleSet | None = None,
) -> ValidationResult:
    """Run the validator registered for ``action``. Unknown actions are rejected."""
    try:
        action = AdmissionAction(action)
    except ValueError:
        return ValidationResult.fail(f"Unknown action: {action}")
    return VALIDATORS[action](appointment, now, context, rules=rules)


def validate_new_appointment_time(
    instant: dt.datetime | str,
    context: BusinessRuleContext | None = None,
    *,
    rules: RuleSet | None = None,
) -> ValidationResult:
    """Check the time picked in a new-appointment form."""
    rules = rules or default_rules()
    calendar = rules.calendar

    parsed = parse_instant(instant)
    if parsed is None:
        return ValidationResult.fail("Invalid date/time")
    candidate = calendar.localize(parsed)
    current = resolve_now(None, context, calendar)

    if is_before(candidate, current):
        return ValidationResult.fail("Appointments cannot be scheduled in the past")
    if not calendar.is_work_day(candidate):
        return ValidationResult.fail(
            f"Appointments can only be scheduled on clinic work days "
            f"({calendar.work_days_label()})"
        )
    if not calendar.within_work_hours(candidate):
        return ValidationResult.fail(
            f"Appointments can only be scheduled during working hours "
            f"({calendar.work_hours_label()})"
        )
    if calendar.is_lunch_time(candidate):
        return ValidationResult.fail(
            f"Appointments cannot be scheduled during the lunch break ({calendar.lunch_label()})"
        )
    return ValidationResult.ok()
