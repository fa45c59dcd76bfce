"""Admin API 모델 패키지"""

from admin.api.model.common import PageResponse
from admin.api.model.queue import (
    QueueCountsResponse,
    QueueListResponse,
    JobResponse,
    JobListResponse,
    RecurringResponse,
    RecurringListResponse,
)

__all__ = [
    'PageResponse',
    'QueueCountsResponse',
    'QueueListResponse',
    'JobResponse',
    'JobListResponse',
    'RecurringResponse',
    'RecurringListResponse',
]
