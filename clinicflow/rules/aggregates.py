import datetime as dt

from clinicflow.domain.models import (
    ActionAvailability,
    ActionTiming,
    AdmissionAction,
    Appointment,
    AppointmentStatus,
    BusinessRuleContext,
    Severity,
    UrgencyAssessment,
)
from clinicflow.rules.validators import ACTIVE_STATUSES, VALIDATORS
from clinicflow.rules.windows import (
    RuleSet,
    default_rules,
    is_before,
    minutes_since,
    minutes_until,
    resolve_now,
    shift,
)

ACTION_ORDER: tuple[AdmissionAction, ...] = (
    AdmissionAction.CHECK_IN,
    AdmissionAction.COMPLETE,
    AdmissionAction.CANCEL,
    AdmissionAction.NO_SHOW,
    AdmissionAction.RESCHEDULE,
    AdmissionAction.VIEW_HISTORY,
)

# Only the forward path of a visit is ever suggested
SUGGESTION_PRIORITY: tuple[AdmissionAction, ...] = (
    AdmissionAction.CHECK_IN,
    AdmissionAction.COMPLETE,
)


def available_actions(
    appointment: Appointment,
    now: dt.datetime | None = None,
    context: BusinessRuleContext | None = None,
    *,
    rules: RuleSet | None = None,
) -> list[ActionAvailability]:
    """Evaluate every action so the UI can render enabled and disabled buttons."""
    rules = rules or default_rules()
    current = resolve_now(now, context, rules.calendar)

    availability = []
    for action in ACTION_ORDER:
        result = VALIDATORS[action](appointment, current, context, rules=rules)
        availability.append(
            ActionAvailability(action=action, valid=result.valid, reason=result.reason)
        )
    return availability


def suggest_next_action(
    appointment: Appointment,
    now: dt.datetime | None = None,
    context: BusinessRuleContext | None = None,
    *,
    rules: RuleSet | None = None,
) -> AdmissionAction | None:
    valid = {
        entry.action
        for entry in available_actions(appointment, now, context, rules=rules)
        if entry.valid
    }
    for action in SUGGESTION_PRIORITY:
        if action in valid:
            return action
    return None


def needs_urgent_attention(
    appointment: Appointment,
    now: dt.datetime | None = None,
    *,
    rules: RuleSet | None = None,
) -> UrgencyAssessment:
    """Flag appointments the front desk should look at.

    Three situations are highlighted:

    * a checked-in patient still waiting well past the scheduled time;
    * a scheduled or confirmed appointment long past its time with no
      check-in, which is a likely no-show;
    * an unconfirmed appointment starting soon.
    """
    rules = rules or default_rules()
    cfg = rules.config
    current = resolve_now(now, None, rules.calendar)
    scheduled = rules.calendar.localize(appointment.scheduled_at)
    status = appointment.status

    if status == AppointmentStatus.CHECKED_IN:
        waiting = minutes_since(scheduled, current)
        if is_before(shift(scheduled, cfg.waiting_warning_minutes), current):
            severity = (
                Severity.HIGH
                if is_before(shift(scheduled, cfg.waiting_critical_minutes), current)
                else Severity.MEDIUM
            )
            return UrgencyAssessment(
                urgent=True,
                severity=severity,
                reason=f"Patient has been waiting {waiting} minutes",
            )

    if status in ACTIVE_STATUSES and is_before(shift(scheduled, cfg.late_arrival_minutes), current):
        late = minutes_since(scheduled, current)
        return UrgencyAssessment(
            urgent=True,
            severity=Severity.MEDIUM,
            reason=f"Patient is {late} minutes late without check-in; consider marking as no-show",
        )

    if status == AppointmentStatus.SCHEDULED and is_before(current, scheduled):
        remaining = minutes_until(scheduled, current)
        if remaining <= cfg.unconfirmed_lookahead_minutes:
            return UrgencyAssessment(
                urgent=True,
                severity=Severity.LOW,
                reason=f"Appointment starts in {remaining} minutes and is not confirmed",
            )

    return UrgencyAssessment(urgent=False)


def time_until_action(
    appointment: Appointment,
    action: AdmissionAction,
    now: dt.datetime | None = None,
    *,
    rules: RuleSet | None = None,
) -> ActionTiming:
    """Countdown for time-gated actions (check-in and no-show).

    Only the opening of the window is considered; status rules are left to
    the validators.
    """
    rules = rules or default_rules()
    cfg = rules.config
    current = resolve_now(now, None, rules.calendar)
    scheduled = rules.calendar.localize(appointment.scheduled_at)

    if action == AdmissionAction.CHECK_IN:
        opens_at = shift(scheduled, -cfg.check_in_window_before_minutes)
        message = "Check-in available in"
    elif action == AdmissionAction.NO_SHOW:
        opens_at = shift(scheduled, cfg.no_show_window_after_minutes)
        message = "No-show available in"
    else:
        return ActionTiming(available=True)

    if is_before(current, opens_at):
        return ActionTiming(
            available=False, minutes_until=minutes_until(opens_at, current), message=message
        )
    return ActionTiming(available=True)
