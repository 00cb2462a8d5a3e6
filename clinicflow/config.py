from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ClinicScheduleConfig(BaseSettings):
    """Working calendar of the clinic. Hours are clinic-local, end exclusive."""

    model_config = SettingsConfigDict(env_prefix="CLINIC_", env_file=".env", extra="ignore")

    timezone: str = "America/Mexico_City"
    start_hour: int = Field(default=8, ge=0, le=24)
    end_hour: int = Field(default=18, ge=0, le=24)
    lunch_start: int = Field(default=12, ge=0, le=24)
    lunch_end: int = Field(default=13, ge=0, le=24)
    slot_duration_minutes: int = Field(default=30, gt=0, le=60)
    max_advance_days: int = Field(default=60, gt=0)
    # Monday == 0, as returned by ``datetime.weekday()``
    work_days: frozenset[int] = frozenset({0, 1, 2, 3, 4})

    @field_validator("work_days")
    @classmethod
    def _check_work_days(cls, value: frozenset[int]) -> frozenset[int]:
        if any(day < 0 or day > 6 for day in value):
            raise ValueError("work_days must contain weekday indices between 0 and 6")
        return value

    @field_validator("slot_duration_minutes")
    @classmethod
    def _check_slot_divides_hour(cls, value: int) -> int:
        if 60 % value:
            raise ValueError("slot_duration_minutes must divide 60")
        return value

    @model_validator(mode="after")
    def _check_hours(self) -> "ClinicScheduleConfig":
        if self.start_hour >= self.end_hour:
            raise ValueError("start_hour must be earlier than end_hour")
        if not self.start_hour <= self.lunch_start <= self.lunch_end <= self.end_hour:
            raise ValueError("lunch break must fall inside working hours")
        return self


class BusinessRulesConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="RULES_", env_file=".env", extra="ignore")

    check_in_window_before_minutes: int = 30
    check_in_window_after_minutes: int = 15
    completion_window_after_minutes: int = 120
    no_show_window_after_minutes: int = 15
    reschedule_deadline_hours: int = 2
    rapid_change_cooldown_minutes: int = 2

    waiting_warning_minutes: int = 30
    waiting_critical_minutes: int = 60
    late_arrival_minutes: int = 30
    unconfirmed_lookahead_minutes: int = 60

    schedule: ClinicScheduleConfig = Field(default_factory=lambda: ClinicScheduleConfig())


class AppConfig(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    log_level: str = "INFO"
    rules: BusinessRulesConfig = Field(default_factory=lambda: BusinessRulesConfig())
