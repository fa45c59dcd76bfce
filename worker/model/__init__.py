from worker.model.handler import (
    HandlerParams,
    AutoRecordParams,
    CalendarSyncParams,
    WeeklyDigestParams,
    EmailParams,
    WebhookParams,
    CleanupParams,
    RunOutcome,
)

__all__ = [
    'HandlerParams',
    'AutoRecordParams',
    'CalendarSyncParams',
    'WeeklyDigestParams',
    'EmailParams',
    'WebhookParams',
    'CleanupParams',
    'RunOutcome',
]
