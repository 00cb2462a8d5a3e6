import datetime as dt
from abc import ABC, abstractmethod
from typing import Protocol

from clinicflow.domain.models import (
    ActionAvailability,
    AdmissionAction,
    Appointment,
    AppointmentStatus,
    BusinessRuleContext,
    HistoryEntry,
)


class AbstractLifecycleService(ABC):
    """Abstract base class for appointment lifecycle operations."""

    @abstractmethod
    async def list_actions(
        self, appointment_id: str, context: BusinessRuleContext | None = None
    ) -> list[ActionAvailability]:
        """Evaluate every admission action for an appointment.

        Args:
            appointment_id: The appointment's unique ID.
            context: Evaluation time and override flag.

        Returns:
            One entry per action, with the reason for each disabled one.

        Raises:
            AppointmentNotFoundError: If the appointment does not exist.
            AppointmentStoreError: If the store fails.
        """

    @abstractmethod
    async def perform_action(
        self,
        appointment_id: str,
        action: AdmissionAction,
        context: BusinessRuleContext | None = None,
        new_scheduled_at: dt.datetime | None = None,
        reason: str | None = None,
    ) -> Appointment:
        """Validate and apply an admission action, then record it in the history.

        Args:
            appointment_id: The appointment's unique ID.
            action: The action requested by the user.
            context: Evaluation time and override flag.
            new_scheduled_at: Target time, required for ``reschedule``.
            reason: Why the change is made. Required for ``cancel``.

        Returns:
            The updated appointment. For ``reschedule``, the new appointment.

        Raises:
            ActionNotAllowedError: If the business rules reject the action.
            AppointmentNotFoundError: If the appointment does not exist.
            ConcurrentModificationError: If the appointment changed meanwhile.
            AppointmentStoreError: If the store fails.
        """

    @abstractmethod
    async def change_status(
        self,
        appointment_id: str,
        target: AppointmentStatus,
        context: BusinessRuleContext | None = None,
        reason: str | None = None,
    ) -> Appointment:
        """Move an appointment to ``target`` outside the action buttons.

        Statuses owned by an admission action are held to that action's rules;
        others, such as ``confirmed``, are checked against the transition table
        only. ``rescheduled`` needs a new time and goes through
        :meth:`perform_action`.

        Raises:
            ActionNotAllowedError: If the transition is not permitted.
            AppointmentNotFoundError: If the appointment does not exist.
            ConcurrentModificationError: If the appointment changed meanwhile.
            AppointmentStoreError: If the store fails.
        """

    @abstractmethod
    async def get_history(self, appointment_id: str) -> list[HistoryEntry]:
        """Recorded changes for an appointment, oldest first.

        Raises:
            AppointmentNotFoundError: If the appointment does not exist.
            AppointmentStoreError: If the store fails.
        """


class AppointmentStoreProtocol(Protocol):
    """Low-level interface for appointment persistence.

    Writes take the ``updated_at`` the caller read and must be rejected with
    ``ConcurrentModificationError`` when it no longer matches.
    """

    async def get_appointment(self, appointment_id: str) -> Appointment | None:
        """Load an appointment, or ``None`` when it does not exist."""
        ...

    async def update_status(
        self,
        appointment_id: str,
        status: AppointmentStatus,
        expected_updated_at: dt.datetime | None,
    ) -> Appointment:
        """Write a new status."""
        ...

    async def reschedule_appointment(
        self,
        appointment_id: str,
        new_scheduled_at: dt.datetime,
        expected_updated_at: dt.datetime | None,
    ) -> Appointment:
        """Mark the appointment as rescheduled and create its replacement."""
        ...

    async def record_history(self, entries: list[HistoryEntry]) -> None:
        """Append audit rows."""
        ...

    async def get_history(self, appointment_id: str) -> list[HistoryEntry]:
        """Audit rows for an appointment, oldest first."""
        ...
