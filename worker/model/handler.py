"""
핸들러 입출력 모델

잡 payload는 큐별 파라미터 모델로 검증하고, 결과는 RunOutcome 카운터로 반환합니다.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class HandlerParams(BaseModel):
    """핸들러 입력 파라미터 (공통)"""
    model_config = ConfigDict(extra='allow')  # 정의 안 된 필드도 허용


class AutoRecordParams(HandlerParams):
    type: str = "check"


class CalendarSyncParams(HandlerParams):
    sync_type: str = "all"
    connection_id: str | None = None
    user_id: str | None = None
    organization_id: str | None = None


class WeeklyDigestParams(HandlerParams):
    send_all: bool = False
    user_id: str | None = None


class EmailParams(HandlerParams):
    to: str
    subject: str
    html: str
    text: str | None = None


class WebhookParams(HandlerParams):
    webhook_id: str
    event: str
    data: dict[str, Any] = Field(default_factory=dict)
    delivery_id: str


class CleanupParams(HandlerParams):
    task: str


class RunOutcome(BaseModel):
    """
    스캔 결과 카운터

    잡 결과(result JSON)로 저장되고 완료 이벤트 로그에 요약됩니다.
    """
    processed: int = 0
    created: int = 0
    updated: int = 0
    deployed: int = 0
    skipped: int = 0
    sent: int = 0
    errors: int = 0

    def record_processed(self, n: int = 1) -> None:
        self.processed += n

    def record_created(self, n: int = 1) -> None:
        self.created += n

    def record_updated(self, n: int = 1) -> None:
        self.updated += n

    def record_deployed(self, n: int = 1) -> None:
        self.deployed += n

    def record_skipped(self, n: int = 1) -> None:
        self.skipped += n

    def record_sent(self, n: int = 1) -> None:
        self.sent += n

    def record_error(self, n: int = 1) -> None:
        self.errors += n

    def merge(self, other: "RunOutcome") -> "RunOutcome":
        """other의 카운터를 더함 (self 반환)"""
        for field in type(self).model_fields:
            setattr(self, field, getattr(self, field) + getattr(other, field))
        return self

    def summary(self) -> str:
        """0이 아닌 카운터만 'key=value' 형태로"""
        parts = [f"{k}={v}" for k, v in self.model_dump().items() if v]
        return ", ".join(parts) if parts else "no-op"
