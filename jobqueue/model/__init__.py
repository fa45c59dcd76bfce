from jobqueue.model.queue import (
    QueueName,
    JobState,
    TERMINAL_STATES,
    JobPriority,
    BackoffType,
    BackoffPolicy,
    JobOptions,
    Job,
    RecurringJob,
    QueueCounts,
)

__all__ = [
    'QueueName',
    'JobState',
    'TERMINAL_STATES',
    'JobPriority',
    'BackoffType',
    'BackoffPolicy',
    'JobOptions',
    'Job',
    'RecurringJob',
    'QueueCounts',
]
