"""
잡 큐 모델 정의

잡, 잡 옵션(재시도/백오프/우선순위/지연/보관 개수), 반복 등록, 큐 통계.
"""

import json
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any

from pydantic import BaseModel, Field

from common.timeutil import from_db_time


class QueueName:
    """큐 이름"""
    AUTO_RECORD = "auto-record"
    CALENDAR_SYNC = "calendar-sync"
    WEEKLY_DIGEST = "weekly-digest"
    EMAIL = "email"
    WEBHOOK = "webhook"
    CLEANUP = "cleanup"

    ALL = (AUTO_RECORD, CALENDAR_SYNC, WEEKLY_DIGEST, EMAIL, WEBHOOK, CLEANUP)


class JobState(str, Enum):
    """잡 상태"""
    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATES = (JobState.COMPLETED, JobState.FAILED)


class JobPriority(IntEnum):
    """우선순위 (낮을수록 먼저, 0은 우선순위 없음)"""
    HIGH = 1
    NORMAL = 5
    LOW = 10


class BackoffType(str, Enum):
    EXPONENTIAL = "exponential"
    FIXED = "fixed"


class BackoffPolicy(BaseModel):
    """재시도 간격 정책 (delay 단위: ms)"""
    type: BackoffType = BackoffType.EXPONENTIAL
    delay: int = Field(default=1000, ge=0)

    def delay_for(self, attempts_made: int) -> int:
        """
        attempts_made번째 실패 후 다음 시도까지 대기 시간(ms)

        exponential: delay * 2^(attempts_made - 1) -> 1000, 2000, 4000, ...
        fixed: 항상 delay
        """
        if self.type == BackoffType.FIXED:
            return self.delay
        return self.delay * (2 ** max(attempts_made - 1, 0))


class JobOptions(BaseModel):
    """잡 옵션"""
    attempts: int = Field(default=3, ge=1, description="첫 시도를 포함한 최대 시도 횟수")
    backoff: BackoffPolicy = Field(default_factory=BackoffPolicy)
    priority: int = Field(default=0, ge=0)
    delay: int = Field(default=0, ge=0, description="최초 실행 지연 (ms)")
    job_id: str | None = Field(default=None, description="미완료 잡 기준 중복 방지 키")
    remove_on_complete: int | None = Field(default=None, ge=0, description="보관할 완료 잡 수 (None: 전부)")
    remove_on_fail: int | None = Field(default=None, ge=0, description="보관할 실패 잡 수 (None: 전부)")

    def merge(self, override: "JobOptions | dict | None") -> "JobOptions":
        """명시적으로 지정된 필드만 덮어쓴 새 옵션 반환"""
        if override is None:
            return self.model_copy()
        if isinstance(override, dict):
            override = JobOptions(**override)
        return JobOptions(**{**self.model_dump(), **override.model_dump(exclude_unset=True)})


class Job(BaseModel):
    """잡 엔티티"""
    id: int
    queue_name: str
    name: str
    payload: dict[str, Any] = Field(default_factory=dict)
    options: JobOptions = Field(default_factory=JobOptions)
    job_key: str | None = None
    repeat_key: str | None = None
    state: JobState = JobState.WAITING
    priority: int = 0
    attempts: int = 1
    attempts_made: int = 0
    run_at: datetime | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    result: Any = None
    error: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @classmethod
    def from_row(cls, row) -> "Job":
        """DB row -> Job"""
        data = dict(row)
        return cls(
            id=data["id"],
            queue_name=data["queue_name"],
            name=data["name"],
            payload=json.loads(data["payload"] or "{}"),
            options=JobOptions(**json.loads(data["options"] or "{}")),
            job_key=data.get("job_key"),
            repeat_key=data.get("repeat_key"),
            state=JobState(data["state"]),
            priority=data["priority"],
            attempts=data["attempts"],
            attempts_made=data["attempts_made"],
            run_at=from_db_time(data.get("run_at")),
            started_at=from_db_time(data.get("started_at")),
            finished_at=from_db_time(data.get("finished_at")),
            result=json.loads(data["result"]) if data.get("result") else None,
            error=data.get("error"),
            created_at=from_db_time(data.get("created_at")),
            updated_at=from_db_time(data.get("updated_at")),
        )


class RecurringJob(BaseModel):
    """반복 등록 (크론 패턴마다 잡을 자동 생성)"""
    queue_name: str
    key: str
    name: str
    pattern: str
    job_id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    next_run_at: datetime
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @staticmethod
    def make_key(name: str, job_id: str | None, pattern: str) -> str:
        """등록 키: 이름, job_id, 패턴이 같으면 같은 등록"""
        return f"{name}:{job_id or ''}:{pattern}"

    @classmethod
    def from_row(cls, row) -> "RecurringJob":
        data = dict(row)
        return cls(
            queue_name=data["queue_name"],
            key=data["key"],
            name=data["name"],
            pattern=data["pattern"],
            job_id=data.get("job_id"),
            payload=json.loads(data["payload"] or "{}"),
            next_run_at=from_db_time(data["next_run_at"]),
            created_at=from_db_time(data.get("created_at")),
            updated_at=from_db_time(data.get("updated_at")),
        )


class QueueCounts(BaseModel):
    """큐 상태별 잡 수"""
    queue_name: str
    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0
