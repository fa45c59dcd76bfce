"""Scheduler 모듈 - 반복 트리거 등록 및 발화"""

from scheduler.main import Scheduler
from scheduler.dispatcher import RecurringDispatcher
from scheduler.triggers import DEFAULT_TRIGGERS, register_recurring_triggers
from scheduler.model.scheduler import SchedulerConfig, TriggerDefinition
from scheduler.exception import (
    SchedulerError,
    CronParseError,
    CronIntervalTooShortError,
    RegistrationError,
)

__all__ = [
    "Scheduler",
    "RecurringDispatcher",
    "DEFAULT_TRIGGERS",
    "register_recurring_triggers",
    "SchedulerConfig",
    "TriggerDefinition",
    "SchedulerError",
    "CronParseError",
    "CronIntervalTooShortError",
    "RegistrationError",
]
