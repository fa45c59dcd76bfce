"""DB 저장용 시각 변환 유틸리티 (모든 시각은 UTC)"""

from datetime import datetime, timezone

DB_TIME_FORMAT = "%Y-%m-%d %H:%M:%S.%f"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_db_time(value: datetime | None) -> str | None:
    """datetime -> 'YYYY-MM-DD HH:MM:SS.ffffff' (UTC, 사전순 비교 가능)"""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(DB_TIME_FORMAT)


def from_db_time(value: str | datetime | None) -> datetime | None:
    """DB 문자열 -> aware datetime (UTC)"""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    try:
        parsed = datetime.strptime(value, DB_TIME_FORMAT)
    except ValueError:
        parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
