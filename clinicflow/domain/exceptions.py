class ClinicFlowError(Exception):
    """Base exception for all appointment lifecycle errors."""


class AppointmentNotFoundError(ClinicFlowError):
    """Raised when the requested appointment does not exist."""

    def __init__(self, appointment_id: str) -> None:
        self.appointment_id = appointment_id
        super().__init__(f"Appointment not found: {appointment_id}")


class ActionNotAllowedError(ClinicFlowError):
    """Raised when the business rules reject a requested action."""

    def __init__(
        self, reason: str, action: str | None = None, appointment_id: str | None = None
    ) -> None:
        self.reason = reason
        self.action = action
        self.appointment_id = appointment_id
        super().__init__(f"Action not allowed: {reason}")


class ConcurrentModificationError(ClinicFlowError):
    """Raised when an appointment changed between read and write."""

    def __init__(self, appointment_id: str) -> None:
        self.appointment_id = appointment_id
        super().__init__(f"Appointment {appointment_id} was modified by another request")


class AppointmentStoreError(ClinicFlowError):
    """Raised when the appointment store fails unexpectedly."""
