"""Job Queue 모듈 - SQLite 기반 영속 잡 큐"""

from jobqueue.main import JobQueue
from jobqueue.producer import JobProducer
from jobqueue.registry import QueueRegistry, get_queue
from jobqueue.model.queue import (
    QueueName,
    Job,
    JobOptions,
    JobState,
    JobPriority,
    BackoffPolicy,
    BackoffType,
    RecurringJob,
    QueueCounts,
)
from jobqueue.exception import (
    QueueError,
    QueueNotFoundError,
    JobNotFoundError,
    JobStateError,
    InvalidPatternError,
)

__all__ = [
    "JobQueue",
    "JobProducer",
    "QueueRegistry",
    "get_queue",
    "QueueName",
    "Job",
    "JobOptions",
    "JobState",
    "JobPriority",
    "BackoffPolicy",
    "BackoffType",
    "RecurringJob",
    "QueueCounts",
    "QueueError",
    "QueueNotFoundError",
    "JobNotFoundError",
    "JobStateError",
    "InvalidPatternError",
]
