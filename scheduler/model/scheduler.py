"""
스케줄러 설정 및 트리거 정의 모델
"""

from typing import Any

from pydantic import BaseModel, Field


class SchedulerConfig(BaseModel):
    """Scheduler / RecurringDispatcher 설정"""
    database: str = Field(default="default", description="database.yaml에 정의된 DB 이름")
    poll_interval_seconds: float = Field(default=10, ge=0.1, le=600)
    max_sleep_seconds: float = Field(default=60, ge=1, le=600)
    min_cron_interval_seconds: int = Field(default=60, ge=60, le=3600)
    cadences: dict[str, str] = Field(default_factory=dict, description="트리거 이름별 크론 재정의")


class TriggerDefinition(BaseModel):
    """반복 트리거 정의 (큐당 이름 유일)"""
    queue_name: str
    name: str
    cadence: str
    payload: dict[str, Any] = Field(default_factory=dict)
    job_id: str | None = None
