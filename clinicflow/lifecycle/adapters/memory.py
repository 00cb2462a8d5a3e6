import datetime as dt
from typing import Callable

from clinicflow.domain.exceptions import AppointmentNotFoundError, ConcurrentModificationError
from clinicflow.domain.models import Appointment, AppointmentStatus, HistoryEntry


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class InMemoryAppointmentStore:
    """In-memory implementation of the AppointmentStoreProtocol protocol.

    Pre-load appointments with :meth:`add`. Set ``get_error``,
    ``write_error`` or ``history_error`` to make the corresponding methods
    raise on the next call.

    Every write stamps ``updated_at`` from ``clock`` and is refused when the
    caller's ``expected_updated_at`` is stale. After calls, inspect
    ``writes`` and ``history`` to see what was persisted.
    """

    def __init__(self, clock: Callable[[], dt.datetime] | None = None) -> None:
        self.appointments: dict[str, Appointment] = {}
        self.writes: list[tuple[str, AppointmentStatus]] = []
        self.rescheduled_from: dict[str, str] = {}
        self.history: dict[str, list[HistoryEntry]] = {}
        self._clock = clock or _utcnow
        self._next_id = 1

        self.get_error: Exception | None = None
        self.write_error: Exception | None = None
        self.history_error: Exception | None = None

    def add(self, appointment: Appointment) -> Appointment:
        if appointment.appointment_id is None:
            appointment = appointment.model_copy(update={"appointment_id": self._new_id()})
        self.appointments[appointment.appointment_id] = appointment  # type: ignore[index]
        return appointment

    def _new_id(self) -> str:
        appointment_id = f"appt-{self._next_id}"
        self._next_id += 1
        return appointment_id

    def _check_version(
        self, appointment_id: str, expected_updated_at: dt.datetime | None
    ) -> Appointment:
        current = self.appointments.get(appointment_id)
        if current is None:
            raise AppointmentNotFoundError(appointment_id)
        if current.updated_at != expected_updated_at:
            raise ConcurrentModificationError(appointment_id)
        return current

    async def get_appointment(self, appointment_id: str) -> Appointment | None:
        if self.get_error:
            raise self.get_error
        return self.appointments.get(appointment_id)

    async def update_status(
        self,
        appointment_id: str,
        status: AppointmentStatus,
        expected_updated_at: dt.datetime | None,
    ) -> Appointment:
        if self.write_error:
            raise self.write_error
        current = self._check_version(appointment_id, expected_updated_at)
        updated = current.model_copy(update={"status": status, "updated_at": self._clock()})
        self.appointments[appointment_id] = updated
        self.writes.append((appointment_id, status))
        return updated

    async def reschedule_appointment(
        self,
        appointment_id: str,
        new_scheduled_at: dt.datetime,
        expected_updated_at: dt.datetime | None,
    ) -> Appointment:
        if self.write_error:
            raise self.write_error
        current = self._check_version(appointment_id, expected_updated_at)
        now = self._clock()
        self.appointments[appointment_id] = current.model_copy(
            update={"status": AppointmentStatus.RESCHEDULED, "updated_at": now}
        )
        self.writes.append((appointment_id, AppointmentStatus.RESCHEDULED))

        replacement = Appointment(
            appointment_id=self._new_id(),
            patient_id=current.patient_id,
            scheduled_at=new_scheduled_at,
            status=AppointmentStatus.SCHEDULED,
            updated_at=now,
        )
        self.appointments[replacement.appointment_id] = replacement  # type: ignore[index]
        self.rescheduled_from[replacement.appointment_id] = appointment_id  # type: ignore[index]
        return replacement

    async def record_history(self, entries: list[HistoryEntry]) -> None:
        if self.history_error:
            raise self.history_error
        for entry in entries:
            self.history.setdefault(entry.appointment_id, []).append(entry)

    async def get_history(self, appointment_id: str) -> list[HistoryEntry]:
        if self.get_error:
            raise self.get_error
        return list(self.history.get(appointment_id, []))
