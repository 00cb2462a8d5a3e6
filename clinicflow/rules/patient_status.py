"""Patient status rules applied when an appointment is completed.

Completing a visit moves the patient into follow-up, except when the
patient already reached a terminal status, which is never overwritten
automatically.
"""

import datetime as dt
from enum import Enum

from pydantic import BaseModel, ConfigDict

from clinicflow.scheduling.calendar import ClinicCalendar


class PatientStatus(str, Enum):
    POTENTIAL = "potential"
    ACTIVE = "active"
    FOLLOW_UP = "follow_up"
    OPERATED = "operated"
    NOT_OPERATED = "not_operated"
    DISCHARGED = "discharged"
    INACTIVE = "inactive"


TERMINAL_PATIENT_STATUSES = frozenset(
    {
        PatientStatus.OPERATED,
        PatientStatus.NOT_OPERATED,
        PatientStatus.DISCHARGED,
        PatientStatus.INACTIVE,
    }
)

# Non-terminal statuses only move forward along this ladder
_PROGRESSION = {
    PatientStatus.POTENTIAL: 0,
    PatientStatus.ACTIVE: 1,
    PatientStatus.FOLLOW_UP: 2,
}


class ChangeCode(str, Enum):
    OK = "OK"
    NO_CHANGE = "NO_CHANGE"
    BLOCKED_TERMINAL = "BLOCKED_TERMINAL"
    DOWNGRADE_NOT_ALLOWED = "DOWNGRADE_NOT_ALLOWED"
    INVALID_STATUS = "INVALID_STATUS"


class PatientStatusChange(BaseModel):
    model_config = ConfigDict(frozen=True)

    allowed: bool
    code: ChangeCode
    reason: str | None = None


class FollowUpPlan(BaseModel):
    """Patient fields to write after a completed appointment."""

    model_config = ConfigDict(frozen=True)

    last_visit_date: dt.date
    new_status: PatientStatus | None = None
    changed: bool
    reason: str | None = None


def normalize_patient_status(value: str | PatientStatus | None) -> PatientStatus | None:
    """Map ``"FOLLOW UP"``, ``"follow-up"`` or ``"follow_up"`` to the enum. ``None`` if unknown."""
    if value is None:
        return None
    if isinstance(value, PatientStatus):
        return value
    key = value.strip().lower().replace(" ", "_").replace("-", "_")
    try:
        return PatientStatus(key)
    except ValueError:
        return None


def is_valid_patient_status(value: str | None) -> bool:
    return normalize_patient_status(value) is not None


def is_terminal_patient_status(value: str | PatientStatus | None) -> bool:
    return normalize_patient_status(value) in TERMINAL_PATIENT_STATUSES


def can_set_follow_up_from(value: str | PatientStatus | None) -> bool:
    return not is_terminal_patient_status(value)


def validate_patient_status_change(
    current: str | PatientStatus | None, target: str | PatientStatus
) -> PatientStatusChange:
    new = normalize_patient_status(target)
    if new is None:
        return PatientStatusChange(
            allowed=False,
            code=ChangeCode.INVALID_STATUS,
            reason=f"Unknown patient status: {target}",
        )

    old = normalize_patient_status(current)
    if old == new:
        return PatientStatusChange(allowed=True, code=ChangeCode.NO_CHANGE)
    if old in TERMINAL_PATIENT_STATUSES:
        return PatientStatusChange(
            allowed=False,
            code=ChangeCode.BLOCKED_TERMINAL,
            reason=f"Terminal status {old.value} cannot be changed",
        )
    if old in _PROGRESSION and new in _PROGRESSION and _PROGRESSION[new] < _PROGRESSION[old]:
        return PatientStatusChange(
            allowed=False,
            code=ChangeCode.DOWNGRADE_NOT_ALLOWED,
            reason=f"Cannot move patient back from {old.value} to {new.value}",
        )
    return PatientStatusChange(allowed=True, code=ChangeCode.OK)


def plan_update_on_appointment_completed(
    current: str | PatientStatus | None,
    completed_at: dt.datetime,
    calendar: ClinicCalendar | None = None,
) -> FollowUpPlan:
    """Plan the patient update that follows a completed appointment.

    The last-visit date is the clinic-local calendar day of ``completed_at``.
    """
    calendar = calendar or ClinicCalendar()
    visit_date = calendar.localize(completed_at).date()

    if is_terminal_patient_status(current):
        return FollowUpPlan(
            last_visit_date=visit_date,
            changed=False,
            reason="Terminal status is kept; only the last visit date is updated",
        )
    changed = normalize_patient_status(current) != PatientStatus.FOLLOW_UP
    return FollowUpPlan(
        last_visit_date=visit_date, new_status=PatientStatus.FOLLOW_UP, changed=changed
    )
