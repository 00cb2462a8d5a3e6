import datetime as dt

import pytest

from clinicflow.config import BusinessRulesConfig, ClinicScheduleConfig
from clinicflow.lifecycle.adapters.memory import InMemoryAppointmentStore
from clinicflow.rules.windows import RuleSet
from clinicflow.scheduling.calendar import ClinicCalendar

CLINIC_TZ = "America/Mexico_City"


@pytest.fixture
def schedule() -> ClinicScheduleConfig:
    return ClinicScheduleConfig(
        timezone=CLINIC_TZ,
        start_hour=8,
        end_hour=18,
        lunch_start=12,
        lunch_end=13,
        slot_duration_minutes=30,
        max_advance_days=60,
        work_days=frozenset({0, 1, 2, 3, 4}),
    )


@pytest.fixture
def calendar(schedule: ClinicScheduleConfig) -> ClinicCalendar:
    return ClinicCalendar(schedule)


@pytest.fixture
def rules(schedule: ClinicScheduleConfig) -> RuleSet:
    return RuleSet(BusinessRulesConfig(schedule=schedule))


@pytest.fixture
def store() -> InMemoryAppointmentStore:
    return InMemoryAppointmentStore(
        clock=lambda: dt.datetime(2025, 1, 15, 7, 0, tzinfo=dt.timezone.utc)
    )
