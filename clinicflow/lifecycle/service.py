import datetime as dt
from typing import Callable

from loguru import logger

from clinicflow.domain.exceptions import (
    ActionNotAllowedError,
    AppointmentNotFoundError,
    AppointmentStoreError,
    ClinicFlowError,
)
from clinicflow.domain.models import (
    ActionAvailability,
    AdmissionAction,
    Appointment,
    AppointmentStatus,
    BusinessRuleContext,
    HistoryEntry,
    HistoryField,
)
from clinicflow.lifecycle.ports import AbstractLifecycleService, AppointmentStoreProtocol
from clinicflow.rules.aggregates import available_actions
from clinicflow.rules.transitions import action_for_status, can_transition, target_status
from clinicflow.rules.validators import validate_action
from clinicflow.rules.windows import RuleSet, default_rules


class AppointmentLifecycleService(AbstractLifecycleService):
    """Lifecycle service that runs the business rules before writing to the store.

    The rules decide on the snapshot that was read; the store's optimistic
    lock on ``updated_at`` decides which of two concurrent writes wins.
    Every successful write is followed by history rows. A failure to record
    history is logged and does not undo the write.
    """

    def __init__(
        self,
        store: AppointmentStoreProtocol,
        rules: RuleSet | None = None,
        clock: Callable[[], dt.datetime] | None = None,
    ) -> None:
        self._store = store
        self._rules = rules or default_rules()
        self._clock = clock or self._rules.calendar.now

    def _with_time(self, context: BusinessRuleContext | None) -> BusinessRuleContext:
        context = context or BusinessRuleContext()
        if context.current_time is None:
            context = context.model_copy(update={"current_time": self._clock()})
        return context

    async def _load(self, appointment_id: str) -> Appointment:
        try:
            appointment = await self._store.get_appointment(appointment_id)
        except ClinicFlowError:
            raise
        except Exception as exc:
            raise AppointmentStoreError(f"Appointment lookup failed: {exc}") from exc

        if appointment is None:
            raise AppointmentNotFoundError(appointment_id)
        return appointment

    def _reject(self, reason: str, action: str, appointment_id: str) -> ActionNotAllowedError:
        logger.warning("Rejected {} on appointment {}: {}", action, appointment_id, reason)
        return ActionNotAllowedError(reason=reason, action=action, appointment_id=appointment_id)

    def _check_action(
        self,
        action: AdmissionAction,
        appointment: Appointment,
        context: BusinessRuleContext,
        reason: str | None,
        appointment_id: str,
    ) -> None:
        if action == AdmissionAction.CANCEL and not (reason or "").strip():
            raise self._reject(
                "A reason is required to cancel an appointment", action.value, appointment_id
            )
        result = validate_action(action, appointment, context, rules=self._rules)
        if not result.valid:
            raise self._reject(result.reason or "Not allowed", action.value, appointment_id)

    def _check_transition(
        self,
        appointment: Appointment,
        target: AppointmentStatus,
        context: BusinessRuleContext,
        action: str,
        appointment_id: str,
    ) -> None:
        transition = can_transition(appointment.status, target, context)
        if not transition.valid:
            raise self._reject(
                transition.reason or "Transition not allowed", action, appointment_id
            )

    async def _write(
        self,
        appointment_id: str,
        appointment: Appointment,
        target: AppointmentStatus,
        new_scheduled_at: dt.datetime | None = None,
    ) -> Appointment:
        try:
            if new_scheduled_at is not None:
                return await self._store.reschedule_appointment(
                    appointment_id, new_scheduled_at, appointment.updated_at
                )
            return await self._store.update_status(
                appointment_id, target, appointment.updated_at
            )
        except ClinicFlowError:
            raise
        except Exception as exc:
            raise AppointmentStoreError(f"Failed to save appointment: {exc}") from exc

    async def _record_history(
        self,
        appointment_id: str,
        before: Appointment,
        target: AppointmentStatus,
        changed_at: dt.datetime,
        reason: str | None,
        new_scheduled_at: dt.datetime | None = None,
    ) -> None:
        entries = [
            HistoryEntry(
                appointment_id=appointment_id,
                field_changed=HistoryField.STATUS,
                value_before=before.status.value,
                value_after=target.value,
                change_reason=(reason or "").strip()
                or f"Status change: {before.status.value} -> {target.value}",
                changed_at=changed_at,
            )
        ]
        if new_scheduled_at is not None and new_scheduled_at != before.scheduled_at:
            entries.append(
                HistoryEntry(
                    appointment_id=appointment_id,
                    field_changed=HistoryField.SCHEDULED_AT,
                    value_before=before.scheduled_at.isoformat(),
                    value_after=new_scheduled_at.isoformat(),
                    change_reason="Appointment rescheduled",
                    changed_at=changed_at,
                )
            )

        try:
            await self._store.record_history(entries)
        except Exception as exc:
            logger.warning("Could not record history for appointment {}: {}", appointment_id, exc)

    async def list_actions(
        self, appointment_id: str, context: BusinessRuleContext | None = None
    ) -> list[ActionAvailability]:
        appointment = await self._load(appointment_id)
        context = self._with_time(context)
        return available_actions(appointment, context=context, rules=self._rules)

    async def perform_action(
        self,
        appointment_id: str,
        action: AdmissionAction,
        context: BusinessRuleContext | None = None,
        new_scheduled_at: dt.datetime | None = None,
        reason: str | None = None,
    ) -> Appointment:
        """Validate the action, check the transition, write, then record history."""
        action = AdmissionAction(action)
        appointment = await self._load(appointment_id)
        context = self._with_time(context)
        logger.info(
            "Performing {} on appointment {} (status={}, override={})",
            action.value,
            appointment_id,
            appointment.status.value,
            context.allow_override,
        )

        self._check_action(action, appointment, context, reason, appointment_id)

        target = target_status(action)
        if target is None:
            return appointment

        if action == AdmissionAction.RESCHEDULE:
            if new_scheduled_at is None:
                raise self._reject(
                    "A new date and time is required to reschedule", action.value, appointment_id
                )
            if not context.allow_override:
                slot = self._rules.calendar.validate_reschedule_instant(
                    new_scheduled_at, context.current_time
                )
                if not slot.valid:
                    raise self._reject(slot.reason or "Invalid slot", action.value, appointment_id)
        else:
            new_scheduled_at = None

        self._check_transition(appointment, target, context, action.value, appointment_id)
        updated = await self._write(appointment_id, appointment, target, new_scheduled_at)
        await self._record_history(
            appointment_id,
            appointment,
            target,
            context.current_time,  # type: ignore[arg-type]
            reason,
            new_scheduled_at,
        )

        logger.info(
            "Appointment {} moved to {} via {}", appointment_id, target.value, action.value
        )
        return updated

    async def change_status(
        self,
        appointment_id: str,
        target: AppointmentStatus,
        context: BusinessRuleContext | None = None,
        reason: str | None = None,
    ) -> Appointment:
        """Apply a status change, holding action-owned statuses to their action's rules."""
        target = AppointmentStatus(target)
        appointment = await self._load(appointment_id)
        context = self._with_time(context)

        if target == AppointmentStatus.RESCHEDULED:
            raise self._reject(
                "Rescheduling needs a new date and time; use the reschedule action",
                "change_status",
                appointment_id,
            )
        action = action_for_status(target)
        if action is not None:
            self._check_action(action, appointment, context, reason, appointment_id)

        self._check_transition(appointment, target, context, "change_status", appointment_id)
        updated = await self._write(appointment_id, appointment, target)
        await self._record_history(
            appointment_id,
            appointment,
            target,
            context.current_time,  # type: ignore[arg-type]
            reason,
        )

        logger.info(
            "Appointment {} status changed: {} -> {}",
            appointment_id,
            appointment.status.value,
            target.value,
        )
        return updated

    async def get_history(self, appointment_id: str) -> list[HistoryEntry]:
        await self._load(appointment_id)
        try:
            return await self._store.get_history(appointment_id)
        except ClinicFlowError:
            raise
        except Exception as exc:
            raise AppointmentStoreError(f"History lookup failed: {exc}") from exc
