import datetime as dt
from enum import Enum

from pydantic import BaseModel, ConfigDict, model_validator


class AppointmentStatus(str, Enum):
    """Possible states of an appointment in the clinic."""

    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked_in"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"
    RESCHEDULED = "rescheduled"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ")


class AdmissionAction(str, Enum):
    """Actions the front desk can take on an appointment."""

    CHECK_IN = "check_in"
    COMPLETE = "complete"
    CANCEL = "cancel"
    NO_SHOW = "no_show"
    RESCHEDULE = "reschedule"
    VIEW_HISTORY = "view_history"


class Severity(str, Enum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Appointment(BaseModel):
    """Snapshot of an appointment as loaded by the caller.

    ISO-8601 strings are accepted for the timestamps. Naive timestamps are
    read as clinic-local wall time.
    """

    model_config = ConfigDict(frozen=True)

    scheduled_at: dt.datetime
    status: AppointmentStatus
    updated_at: dt.datetime | None = None
    appointment_id: str | None = None
    patient_id: str | None = None


class BusinessRuleContext(BaseModel):
    """Per-call evaluation context.

    ``allow_override`` bypasses timing and calendar rules, never status rules.
    ``user_role`` is carried for callers and not enforced here.
    """

    model_config = ConfigDict(frozen=True)

    current_time: dt.datetime | None = None
    allow_override: bool = False
    user_role: str | None = None


class ValidationResult(BaseModel):
    """Outcome of a rule check. ``reason`` is set iff the check failed."""

    model_config = ConfigDict(frozen=True)

    valid: bool
    reason: str | None = None

    @model_validator(mode="after")
    def _reason_iff_invalid(self) -> "ValidationResult":
        if self.valid and self.reason is not None:
            raise ValueError("a valid result carries no reason")
        if not self.valid and not self.reason:
            raise ValueError("an invalid result needs a reason")
        return self

    @classmethod
    def ok(cls) -> "ValidationResult":
        return cls(valid=True)

    @classmethod
    def fail(cls, reason: str) -> "ValidationResult":
        return cls(valid=False, reason=reason)


class ActionAvailability(BaseModel):
    model_config = ConfigDict(frozen=True)

    action: AdmissionAction
    valid: bool
    reason: str | None = None


class UrgencyAssessment(BaseModel):
    """Dashboard highlight for an appointment. Heuristic, never a state change."""

    model_config = ConfigDict(frozen=True)

    urgent: bool
    severity: Severity = Severity.NONE
    reason: str | None = None


class ActionTiming(BaseModel):
    """How long until a time-gated action opens up."""

    model_config = ConfigDict(frozen=True)

    available: bool
    minutes_until: int | None = None
    message: str | None = None


class HistoryField(str, Enum):
    STATUS = "status"
    SCHEDULED_AT = "scheduled_at"


class HistoryEntry(BaseModel):
    """One audited change to an appointment field, values stored as text."""

    model_config = ConfigDict(frozen=True)

    appointment_id: str
    field_changed: HistoryField
    value_before: str | None = None
    value_after: str | None = None
    change_reason: str
    changed_at: dt.datetime
