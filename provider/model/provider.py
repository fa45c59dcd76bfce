"""
Provider 입출력 및 설정 모델
"""

from datetime import datetime

from pydantic import BaseModel, Field


class CalendarEvent(BaseModel):
    """캘린더 이벤트 (회의 링크 추출 완료)"""
    id: str
    summary: str = "Untitled Event"
    start: datetime
    end: datetime | None = None
    meeting_link: str | None = None
    platform: str | None = None


class EmailMessage(BaseModel):
    to: str
    subject: str
    html: str
    text: str | None = None


class DeliveryResult(BaseModel):
    """웹훅 1회 전송 결과"""
    success: bool
    status_code: int | None = None
    response_body: str | None = None
    error: str | None = None
    duration_ms: int = 0


class CalendarSettings(BaseModel):
    base_url: str = "https://www.googleapis.com/calendar/v3"
    timeout_seconds: float = Field(default=10.0, gt=0)


class BotSettings(BaseModel):
    api_key: str | None = None
    region: str = "us-west-2"
    bot_name: str = "Meeting Notetaker"
    timeout_seconds: float = Field(default=30.0, gt=0)


class EmailSettings(BaseModel):
    api_key: str | None = None
    from_address: str = "notifications@example.com"
    base_url: str = "https://api.resend.com"
    timeout_seconds: float = Field(default=10.0, gt=0)


class WebhookSettings(BaseModel):
    timeout_seconds: float = Field(default=30.0, gt=0)
    user_agent: str = "meetjob-webhooks/1.0"


class ProviderConfig(BaseModel):
    """provider.yaml"""
    calendar: CalendarSettings = Field(default_factory=CalendarSettings)
    bot: BotSettings = Field(default_factory=BotSettings)
    email: EmailSettings = Field(default_factory=EmailSettings)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
