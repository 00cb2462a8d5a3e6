import datetime as dt
from zoneinfo import ZoneInfo

import pytest

from clinicflow.domain.exceptions import (
    ActionNotAllowedError,
    AppointmentNotFoundError,
    AppointmentStoreError,
    ConcurrentModificationError,
)
from clinicflow.domain.models import (
    AdmissionAction,
    Appointment,
    AppointmentStatus,
    BusinessRuleContext,
    HistoryField,
)
from clinicflow.lifecycle.adapters.memory import InMemoryAppointmentStore
from clinicflow.lifecycle.service import AppointmentLifecycleService
from clinicflow.rules.windows import RuleSet

# Fixtures (store, rules) provided by tests/conftest.py

TZ = ZoneInfo("America/Mexico_City")
S = AppointmentStatus
A = AdmissionAction


def _at(hour: int, minute: int = 0, day: int = 15) -> dt.datetime:
    return dt.datetime(2025, 1, day, hour, minute, tzinfo=TZ)


class FrozenClock:
    def __init__(self, now: dt.datetime) -> None:
        self.now = now

    def __call__(self) -> dt.datetime:
        return self.now


class StaleReadStore(InMemoryAppointmentStore):
    """Serves the snapshot taken at ``add`` time, as a lagging replica would."""

    def __init__(self) -> None:
        super().__init__()
        self.snapshots: dict[str, Appointment] = {}

    def add(self, appointment: Appointment) -> Appointment:
        stored = super().add(appointment)
        self.snapshots[stored.appointment_id] = stored  # type: ignore[index]
        return stored

    async def get_appointment(self, appointment_id: str) -> Appointment | None:
        return self.snapshots.get(appointment_id)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(_at(9, 45))


@pytest.fixture
def service(
    store: InMemoryAppointmentStore, rules: RuleSet, clock: FrozenClock
) -> AppointmentLifecycleService:
    return AppointmentLifecycleService(store, rules=rules, clock=clock)


@pytest.fixture
def appointment(store: InMemoryAppointmentStore) -> Appointment:
    return store.add(
        Appointment(
            appointment_id="a1",
            patient_id="p1",
            scheduled_at=_at(10),
            status=S.CONFIRMED,
        )
    )


class TestListActions:
    @pytest.mark.asyncio
    async def test_evaluates_at_clock_time(
        self, service: AppointmentLifecycleService, appointment: Appointment
    ) -> None:
        actions = {entry.action: entry.valid for entry in await service.list_actions("a1")}

        assert len(actions) == 6
        assert actions[A.CHECK_IN] is True
        assert actions[A.NO_SHOW] is False

    @pytest.mark.asyncio
    async def test_context_time_wins_over_clock(
        self, service: AppointmentLifecycleService, appointment: Appointment
    ) -> None:
        context = BusinessRuleContext(current_time=_at(10, 30))

        actions = {entry.action: entry.valid for entry in await service.list_actions("a1", context)}

        assert actions[A.CHECK_IN] is False
        assert actions[A.NO_SHOW] is True

    @pytest.mark.asyncio
    async def test_missing_appointment(self, service: AppointmentLifecycleService) -> None:
        with pytest.raises(AppointmentNotFoundError, match="missing"):
            await service.list_actions("missing")


class TestPerformAction:
    @pytest.mark.asyncio
    async def test_check_in_writes_status(
        self,
        service: AppointmentLifecycleService,
        store: InMemoryAppointmentStore,
        appointment: Appointment,
    ) -> None:
        updated = await service.perform_action("a1", A.CHECK_IN)

        assert updated.status == S.CHECKED_IN
        assert store.writes == [("a1", S.CHECKED_IN)]

    @pytest.mark.asyncio
    async def test_rejected_action_is_not_written(
        self,
        service: AppointmentLifecycleService,
        store: InMemoryAppointmentStore,
        clock: FrozenClock,
        appointment: Appointment,
    ) -> None:
        clock.now = _at(9, 0)

        with pytest.raises(ActionNotAllowedError, match="Check-in available in 30 minutes") as info:
            await service.perform_action("a1", A.CHECK_IN)

        assert info.value.action == "check_in"
        assert info.value.appointment_id == "a1"
        assert store.writes == []

    @pytest.mark.asyncio
    async def test_second_check_in_is_rejected(
        self, service: AppointmentLifecycleService, appointment: Appointment
    ) -> None:
        await service.perform_action("a1", A.CHECK_IN)

        with pytest.raises(ActionNotAllowedError, match="Cannot check in"):
            await service.perform_action("a1", A.CHECK_IN)

    @pytest.mark.asyncio
    async def test_visit_flow(
        self,
        service: AppointmentLifecycleService,
        store: InMemoryAppointmentStore,
        clock: FrozenClock,
        appointment: Appointment,
    ) -> None:
        await service.perform_action("a1", A.CHECK_IN)
        clock.now = _at(11, 0)
        completed = await service.perform_action("a1", A.COMPLETE)

        assert completed.status == S.COMPLETED
        assert store.writes == [("a1", S.CHECKED_IN), ("a1", S.COMPLETED)]

    @pytest.mark.asyncio
    async def test_view_history_does_not_write(
        self,
        service: AppointmentLifecycleService,
        store: InMemoryAppointmentStore,
        appointment: Appointment,
    ) -> None:
        result = await service.perform_action("a1", A.VIEW_HISTORY)

        assert result == appointment
        assert store.writes == []

    @pytest.mark.asyncio
    async def test_override_bypasses_timing(
        self,
        service: AppointmentLifecycleService,
        clock: FrozenClock,
        appointment: Appointment,
    ) -> None:
        clock.now = _at(6, 0)

        updated = await service.perform_action(
            "a1", A.NO_SHOW, BusinessRuleContext(allow_override=True)
        )

        assert updated.status == S.NO_SHOW

    @pytest.mark.asyncio
    async def test_lost_race_raises_concurrent_modification(self, rules: RuleSet) -> None:
        store = StaleReadStore()
        store.add(Appointment(appointment_id="a1", scheduled_at=_at(10), status=S.CONFIRMED))
        service = AppointmentLifecycleService(store, rules=rules, clock=FrozenClock(_at(9, 45)))

        await service.perform_action("a1", A.CHECK_IN)

        with pytest.raises(ConcurrentModificationError):
            await service.perform_action("a1", A.CANCEL, reason="Patient called to cancel")

    @pytest.mark.asyncio
    async def test_wraps_unexpected_read_error(
        self, service: AppointmentLifecycleService, store: InMemoryAppointmentStore
    ) -> None:
        store.get_error = RuntimeError("connection reset")

        with pytest.raises(AppointmentStoreError, match="connection reset"):
            await service.perform_action("a1", A.CHECK_IN)

    @pytest.mark.asyncio
    async def test_wraps_unexpected_write_error(
        self,
        service: AppointmentLifecycleService,
        store: InMemoryAppointmentStore,
        appointment: Appointment,
    ) -> None:
        store.write_error = RuntimeError("disk full")

        with pytest.raises(AppointmentStoreError, match="disk full"):
            await service.perform_action("a1", A.CHECK_IN)

    @pytest.mark.asyncio
    async def test_propagates_known_write_error(
        self,
        service: AppointmentLifecycleService,
        store: InMemoryAppointmentStore,
        appointment: Appointment,
    ) -> None:
        store.write_error = ConcurrentModificationError("a1")

        with pytest.raises(ConcurrentModificationError):
            await service.perform_action("a1", A.CHECK_IN)


class TestReschedule:
    @pytest.fixture
    def early(self, clock: FrozenClock) -> FrozenClock:
        clock.now = _at(7, 0)
        return clock

    @pytest.mark.asyncio
    async def test_creates_replacement(
        self,
        service: AppointmentLifecycleService,
        store: InMemoryAppointmentStore,
        early: FrozenClock,
        appointment: Appointment,
    ) -> None:
        replacement = await service.perform_action(
            "a1", A.RESCHEDULE, new_scheduled_at=_at(10, 30, day=16)
        )

        assert replacement.status == S.SCHEDULED
        assert replacement.patient_id == "p1"
        assert replacement.scheduled_at == _at(10, 30, day=16)
        assert store.appointments["a1"].status == S.RESCHEDULED
        assert store.rescheduled_from[replacement.appointment_id] == "a1"  # type: ignore[index]

    @pytest.mark.asyncio
    async def test_requires_new_time(
        self, service: AppointmentLifecycleService, early: FrozenClock, appointment: Appointment
    ) -> None:
        with pytest.raises(ActionNotAllowedError, match="new date and time is required"):
            await service.perform_action("a1", A.RESCHEDULE)

    @pytest.mark.asyncio
    async def test_rejects_lunch_slot(
        self,
        service: AppointmentLifecycleService,
        store: InMemoryAppointmentStore,
        early: FrozenClock,
        appointment: Appointment,
    ) -> None:
        with pytest.raises(ActionNotAllowedError, match="lunch break"):
            await service.perform_action("a1", A.RESCHEDULE, new_scheduled_at=_at(12, 30, day=16))

        assert store.writes == []

    @pytest.mark.asyncio
    async def test_override_accepts_any_slot(
        self, service: AppointmentLifecycleService, early: FrozenClock, appointment: Appointment
    ) -> None:
        replacement = await service.perform_action(
            "a1",
            A.RESCHEDULE,
            BusinessRuleContext(allow_override=True),
            new_scheduled_at=_at(12, 10, day=18),
        )

        assert replacement.scheduled_at == _at(12, 10, day=18)

    @pytest.mark.asyncio
    async def test_short_notice_rejected(
        self, service: AppointmentLifecycleService, appointment: Appointment
    ) -> None:
        with pytest.raises(ActionNotAllowedError, match="less than 2 hours"):
            await service.perform_action("a1", A.RESCHEDULE, new_scheduled_at=_at(10, 30, day=16))


class TestChangeStatus:
    @pytest.mark.asyncio
    async def test_confirms_scheduled(
        self, service: AppointmentLifecycleService, store: InMemoryAppointmentStore
    ) -> None:
        store.add(Appointment(appointment_id="a2", scheduled_at=_at(10), status=S.SCHEDULED))

        updated = await service.change_status("a2", S.CONFIRMED)

        assert updated.status == S.CONFIRMED

    @pytest.mark.asyncio
    async def test_rejects_unlisted_transition(
        self, service: AppointmentLifecycleService, store: InMemoryAppointmentStore
    ) -> None:
        store.add(Appointment(appointment_id="a3", scheduled_at=_at(10), status=S.COMPLETED))

        with pytest.raises(ActionNotAllowedError, match="completed to scheduled"):
            await service.change_status("a3", S.SCHEDULED)

    @pytest.mark.asyncio
    async def test_override_allows_any_transition(
        self, service: AppointmentLifecycleService, store: InMemoryAppointmentStore
    ) -> None:
        store.add(Appointment(appointment_id="a3", scheduled_at=_at(10), status=S.COMPLETED))

        updated = await service.change_status(
            "a3", S.SCHEDULED, BusinessRuleContext(allow_override=True)
        )

        assert updated.status == S.SCHEDULED

    @pytest.mark.asyncio
    async def test_action_status_is_held_to_action_rules(
        self,
        service: AppointmentLifecycleService,
        store: InMemoryAppointmentStore,
        clock: FrozenClock,
        appointment: Appointment,
    ) -> None:
        clock.now = _at(6, 0)

        with pytest.raises(ActionNotAllowedError, match="Check-in available in"):
            await service.change_status("a1", S.CHECKED_IN)

        assert store.appointments["a1"].status == S.CONFIRMED
        assert store.writes == []

    @pytest.mark.asyncio
    async def test_cannot_cancel_past_appointment(
        self,
        service: AppointmentLifecycleService,
        store: InMemoryAppointmentStore,
        clock: FrozenClock,
        appointment: Appointment,
    ) -> None:
        clock.now = _at(15, 0)

        with pytest.raises(ActionNotAllowedError, match="in the past cannot be cancelled"):
            await service.change_status("a1", S.CANCELLED, reason="Patient never came")

        assert store.appointments["a1"].status == S.CONFIRMED

    @pytest.mark.asyncio
    async def test_check_in_inside_window(
        self, service: AppointmentLifecycleService, appointment: Appointment
    ) -> None:
        updated = await service.change_status("a1", S.CHECKED_IN)

        assert updated.status == S.CHECKED_IN

    @pytest.mark.asyncio
    async def test_cancel_requires_reason(
        self,
        service: AppointmentLifecycleService,
        store: InMemoryAppointmentStore,
        appointment: Appointment,
    ) -> None:
        with pytest.raises(ActionNotAllowedError, match="reason is required"):
            await service.change_status("a1", S.CANCELLED, reason="   ")

        assert store.writes == []

    @pytest.mark.asyncio
    async def test_rescheduled_needs_reschedule_action(
        self, service: AppointmentLifecycleService, appointment: Appointment
    ) -> None:
        with pytest.raises(ActionNotAllowedError, match="use the reschedule action"):
            await service.change_status(
                "a1", S.RESCHEDULED, BusinessRuleContext(allow_override=True)
            )


class TestHistory:
    @pytest.mark.asyncio
    async def test_status_change_is_recorded(
        self, service: AppointmentLifecycleService, appointment: Appointment
    ) -> None:
        await service.perform_action("a1", A.CHECK_IN)

        (entry,) = await service.get_history("a1")

        assert entry.field_changed == HistoryField.STATUS
        assert (entry.value_before, entry.value_after) == ("confirmed", "checked_in")
        assert entry.change_reason == "Status change: confirmed -> checked_in"
        assert entry.changed_at == _at(9, 45)

    @pytest.mark.asyncio
    async def test_cancel_reason_is_recorded(
        self,
        service: AppointmentLifecycleService,
        store: InMemoryAppointmentStore,
        appointment: Appointment,
    ) -> None:
        await service.perform_action("a1", A.CANCEL, reason="Patient has the flu")

        assert store.appointments["a1"].status == S.CANCELLED
        assert [entry.change_reason for entry in store.history["a1"]] == ["Patient has the flu"]

    @pytest.mark.asyncio
    async def test_cancel_without_reason_is_rejected(
        self,
        service: AppointmentLifecycleService,
        store: InMemoryAppointmentStore,
        appointment: Appointment,
    ) -> None:
        with pytest.raises(ActionNotAllowedError, match="reason is required"):
            await service.perform_action("a1", A.CANCEL)

        assert store.writes == []
        assert store.history == {}

    @pytest.mark.asyncio
    async def test_reschedule_records_new_time(
        self,
        service: AppointmentLifecycleService,
        clock: FrozenClock,
        appointment: Appointment,
    ) -> None:
        clock.now = _at(7, 0)

        await service.perform_action("a1", A.RESCHEDULE, new_scheduled_at=_at(10, 30, day=16))
        status, scheduled = await service.get_history("a1")

        assert status.value_after == "rescheduled"
        assert scheduled.field_changed == HistoryField.SCHEDULED_AT
        assert scheduled.value_before == _at(10).isoformat()
        assert scheduled.value_after == _at(10, 30, day=16).isoformat()

    @pytest.mark.asyncio
    async def test_view_history_leaves_no_row(
        self, service: AppointmentLifecycleService, appointment: Appointment
    ) -> None:
        await service.perform_action("a1", A.VIEW_HISTORY)

        assert await service.get_history("a1") == []

    @pytest.mark.asyncio
    async def test_history_failure_keeps_the_write(
        self,
        service: AppointmentLifecycleService,
        store: InMemoryAppointmentStore,
        appointment: Appointment,
    ) -> None:
        store.history_error = RuntimeError("audit table locked")

        updated = await service.perform_action("a1", A.CHECK_IN)

        assert updated.status == S.CHECKED_IN
        assert store.history == {}

    @pytest.mark.asyncio
    async def test_history_of_missing_appointment(
        self, service: AppointmentLifecycleService
    ) -> None:
        with pytest.raises(AppointmentNotFoundError):
            await service.get_history("missing")
