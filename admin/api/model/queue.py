"""큐/잡 관련 모델 정의"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict

from admin.api.model.common import PageResponse


class QueueCountsResponse(BaseModel):
    """큐별 상태 카운트"""
    queue_name: str
    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0


class QueueListResponse(BaseModel):
    items: list[QueueCountsResponse]


class JobResponse(BaseModel):
    """잡 응답 모델"""
    model_config = ConfigDict(from_attributes=True)

    id: int
    queue_name: str
    name: str
    state: str
    payload: dict[str, Any] = {}
    job_key: str | None = None
    repeat_key: str | None = None
    priority: int = 0
    attempts: int = 1
    attempts_made: int = 0
    run_at: datetime | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    result: Any = None
    error: str | None = None
    created_at: datetime | None = None


class JobListResponse(PageResponse[JobResponse]):
    """잡 목록 응답"""
    pass


class RecurringResponse(BaseModel):
    """반복 등록 응답 모델"""
    model_config = ConfigDict(from_attributes=True)

    key: str
    queue_name: str
    name: str
    pattern: str
    job_id: str | None = None
    payload: dict[str, Any] = {}
    next_run_at: datetime


class RecurringListResponse(BaseModel):
    items: list[RecurringResponse]
