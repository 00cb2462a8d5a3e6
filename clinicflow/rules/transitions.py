from types import MappingProxyType

from clinicflow.domain.models import (
    AdmissionAction,
    AppointmentStatus,
    BusinessRuleContext,
    ValidationResult,
)

_S = AppointmentStatus

STATUS_TRANSITIONS: MappingProxyType[AppointmentStatus, frozenset[AppointmentStatus]]
STATUS_TRANSITIONS = MappingProxyType(
    {
        _S.SCHEDULED: frozenset(
            {_S.CONFIRMED, _S.CHECKED_IN, _S.CANCELLED, _S.NO_SHOW, _S.RESCHEDULED}
        ),
        _S.CONFIRMED: frozenset({_S.CHECKED_IN, _S.CANCELLED, _S.NO_SHOW, _S.RESCHEDULED}),
        _S.CHECKED_IN: frozenset({_S.COMPLETED, _S.CANCELLED}),
        _S.COMPLETED: frozenset({_S.RESCHEDULED}),
        _S.CANCELLED: frozenset({_S.RESCHEDULED}),
        _S.NO_SHOW: frozenset({_S.RESCHEDULED}),
        _S.RESCHEDULED: frozenset({_S.SCHEDULED, _S.CONFIRMED}),
    }
)

ACTION_TO_STATUS: MappingProxyType[AdmissionAction, AppointmentStatus | None]
ACTION_TO_STATUS = MappingProxyType(
    {
        AdmissionAction.CHECK_IN: _S.CHECKED_IN,
        AdmissionAction.COMPLETE: _S.COMPLETED,
        AdmissionAction.CANCEL: _S.CANCELLED,
        AdmissionAction.NO_SHOW: _S.NO_SHOW,
        AdmissionAction.RESCHEDULE: _S.RESCHEDULED,
        AdmissionAction.VIEW_HISTORY: None,
    }
)

STATUS_TO_ACTION: MappingProxyType[AppointmentStatus, AdmissionAction]
STATUS_TO_ACTION = MappingProxyType(
    {status: action for action, status in ACTION_TO_STATUS.items() if status is not None}
)


def allowed_transitions(status: AppointmentStatus) -> frozenset[AppointmentStatus]:
    return STATUS_TRANSITIONS[AppointmentStatus(status)]


def target_status(action: AdmissionAction) -> AppointmentStatus | None:
    """Status an action moves the appointment into, or ``None`` for read-only actions."""
    return ACTION_TO_STATUS[AdmissionAction(action)]


def action_for_status(status: AppointmentStatus) -> AdmissionAction | None:
    """Admission action whose rules govern entering ``status``, if any."""
    return STATUS_TO_ACTION.get(AppointmentStatus(status))


def can_transition(
    current: AppointmentStatus,
    target: AppointmentStatus,
    context: BusinessRuleContext | None = None,
) -> ValidationResult:
    """Check a status change against the transition table.

    Purely structural: timing is the job of the action validators.
    ``allow_override`` permits any change.
    """
    current = AppointmentStatus(current)
    target = AppointmentStatus(target)

    if context is not None and context.allow_override:
        return ValidationResult.ok()
    if target in STATUS_TRANSITIONS[current]:
        return ValidationResult.ok()
    return ValidationResult.fail(
        f"Transition from {current.label} to {target.label} is not allowed"
    )
