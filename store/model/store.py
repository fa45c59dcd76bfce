"""
테넌트 데이터 모델

잡이 읽고 쓰는 엔티티만 정의합니다.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from common.timeutil import from_db_time


class MeetingStatus(str, Enum):
    """미팅(작업 단위) 상태"""
    PENDING = "pending"          # 캘린더에서 동기화됨, 봇 없음
    SCHEDULED = "scheduled"
    JOINING = "joining"
    IN_PROGRESS = "in_progress"
    RECORDING = "recording"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# 봇이 배정되어 진행 중인 상태
BOT_ACTIVE_STATUSES = (
    MeetingStatus.SCHEDULED,
    MeetingStatus.JOINING,
    MeetingStatus.IN_PROGRESS,
    MeetingStatus.RECORDING,
)

TERMINAL_STATUSES = (
    MeetingStatus.COMPLETED,
    MeetingStatus.FAILED,
    MeetingStatus.CANCELLED,
)


class WebhookStatus(str, Enum):
    ACTIVE = "active"
    DISABLED = "disabled"


class User(BaseModel):
    id: str
    email: str
    name: str | None = None
    organization_id: str | None = None
    digest_enabled: bool = True
    last_digest_sent_at: datetime | None = None

    @classmethod
    def from_row(cls, row) -> "User":
        data = dict(row)
        return cls(
            id=data["id"],
            email=data["email"],
            name=data.get("name"),
            organization_id=data.get("organization_id"),
            digest_enabled=bool(data.get("digest_enabled", 1)),
            last_digest_sent_at=from_db_time(data.get("last_digest_sent_at")),
        )


class CalendarConnection(BaseModel):
    """캘린더 연결 (소유 사용자의 조직 포함)"""
    id: str
    user_id: str
    organization_id: str | None = None
    user_email: str | None = None
    provider: str = "google"
    access_token: str | None = None
    auto_record: bool = False
    sync_enabled: bool = True
    last_synced_at: datetime | None = None

    @classmethod
    def from_row(cls, row) -> "CalendarConnection":
        data = dict(row)
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            organization_id=data.get("organization_id"),
            user_email=data.get("user_email"),
            provider=data.get("provider") or "google",
            access_token=data.get("access_token"),
            auto_record=bool(data.get("auto_record", 0)),
            sync_enabled=bool(data.get("sync_enabled", 1)),
            last_synced_at=from_db_time(data.get("last_synced_at")),
        )


class Meeting(BaseModel):
    """미팅 = 봇 배치의 작업 단위"""
    id: int
    organization_id: str
    created_by_id: str | None = None
    calendar_event_id: str | None = None
    title: str = ""
    platform: str | None = None
    meeting_url: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    status: MeetingStatus = MeetingStatus.PENDING
    bot_id: str | None = None
    join_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def has_active_bot(self) -> bool:
        return self.bot_id is not None or self.status in BOT_ACTIVE_STATUSES

    @classmethod
    def from_row(cls, row) -> "Meeting":
        data = dict(row)
        return cls(
            id=data["id"],
            organization_id=data["organization_id"],
            created_by_id=data.get("created_by_id"),
            calendar_event_id=data.get("calendar_event_id"),
            title=data.get("title") or "",
            platform=data.get("platform"),
            meeting_url=data.get("meeting_url"),
            start_time=from_db_time(data.get("start_time")),
            end_time=from_db_time(data.get("end_time")),
            status=MeetingStatus(data["status"]),
            bot_id=data.get("bot_id"),
            join_at=from_db_time(data.get("join_at")),
            metadata=json.loads(data.get("metadata") or "{}"),
            created_at=from_db_time(data.get("created_at")),
            updated_at=from_db_time(data.get("updated_at")),
        )


class Webhook(BaseModel):
    id: str
    organization_id: str
    url: str
    secret: str
    events: list[str] = Field(default_factory=list)
    status: WebhookStatus = WebhookStatus.ACTIVE
    failure_count: int = 0
    last_triggered_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status == WebhookStatus.ACTIVE

    def subscribes_to(self, event: str) -> bool:
        """구독 이벤트 목록이 비어 있거나 '*'이면 전체 구독"""
        return not self.events or "*" in self.events or event in self.events

    @classmethod
    def from_row(cls, row) -> "Webhook":
        data = dict(row)
        return cls(
            id=data["id"],
            organization_id=data["organization_id"],
            url=data["url"],
            secret=data["secret"],
            events=json.loads(data.get("events") or "[]"),
            status=WebhookStatus(data.get("status") or "active"),
            failure_count=data.get("failure_count") or 0,
            last_triggered_at=from_db_time(data.get("last_triggered_at")),
        )


class WebhookDelivery(BaseModel):
    webhook_id: str
    delivery_id: str
    event: str
    status_code: int | None = None
    success: bool = False
    response_body: str | None = None
    error: str | None = None
    duration_ms: int | None = None
    attempt: int = 1
