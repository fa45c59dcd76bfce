"""
잡별 시간 창 및 임계값 (worker.yaml의 jobs 섹션)
"""

from pydantic import BaseModel, Field


class AutoRecordSettings(BaseModel):
    lookback_minutes: int = Field(default=2, ge=0)
    lookahead_minutes: int = Field(default=10, gt=0)
    join_lead_seconds: int = Field(default=60, ge=0)


class CalendarSyncSettings(BaseModel):
    lookahead_days: int = Field(default=14, gt=0)
    stale_after_minutes: int = Field(default=15, gt=0)


class WeeklyDigestSettings(BaseModel):
    period_days: int = Field(default=7, gt=0)
    resend_after_days: int = Field(default=6, gt=0)


class WebhookJobSettings(BaseModel):
    disable_after_failures: int = Field(default=10, gt=0)


class CleanupSettings(BaseModel):
    orphaned_bot_hours: int = Field(default=2, gt=0)
    processed_event_days: int = Field(default=7, gt=0)


class JobSettings(BaseModel):
    auto_record: AutoRecordSettings = Field(default_factory=AutoRecordSettings)
    calendar_sync: CalendarSyncSettings = Field(default_factory=CalendarSyncSettings)
    weekly_digest: WeeklyDigestSettings = Field(default_factory=WeeklyDigestSettings)
    webhook: WebhookJobSettings = Field(default_factory=WebhookJobSettings)
    cleanup: CleanupSettings = Field(default_factory=CleanupSettings)
