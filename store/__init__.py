"""테넌트 데이터 저장소 모듈 - 잡이 사용하는 리포지토리"""

from store.repository import (
    ConnectionRepository,
    MeetingRepository,
    UserRepository,
    WebhookRepository,
    ProcessedEventRepository,
)

__all__ = [
    "ConnectionRepository",
    "MeetingRepository",
    "UserRepository",
    "WebhookRepository",
    "ProcessedEventRepository",
]
