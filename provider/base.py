"""
외부 연동 인터페이스

잡 핸들러는 이 추상 클래스에만 의존하고, 실제 구현(HTTP 클라이언트)은 시작 시 주입합니다.
"""

from abc import ABC, abstractmethod
from datetime import datetime

from provider.model.provider import CalendarEvent, DeliveryResult, EmailMessage
from store.model.store import CalendarConnection


class CalendarProvider(ABC):
    """캘린더 이벤트 조회"""

    @abstractmethod
    async def list_events(
        self,
        connection: CalendarConnection,
        time_min: datetime,
        time_max: datetime,
    ) -> list[CalendarEvent]:
        """[time_min, time_max] 구간 이벤트 (반복 일정은 회차별로 펼침)"""


class BotProvider(ABC):
    """회의 녹화 봇"""

    @abstractmethod
    async def create_bot(
        self,
        meeting_url: str,
        join_at: datetime | None = None,
        metadata: dict | None = None,
    ) -> str:
        """
        봇 생성

        Args:
            meeting_url: 참가할 회의 URL
            join_at: 참가 예정 시각 (None이면 즉시)
            metadata: 봇에 붙일 식별 정보 (meeting_id, organization_id)

        Returns:
            봇 ID

        Raises:
            ProviderError: 생성 실패
        """

    @abstractmethod
    async def stop_bot(self, bot_id: str) -> None:
        """봇 퇴장"""


class EmailProvider(ABC):
    """이메일 발송"""

    @abstractmethod
    async def send(self, message: EmailMessage) -> str | None:
        """
        Returns:
            발송 ID

        Raises:
            ProviderNotConfiguredError: API 키 없음
            ProviderError: 발송 실패
        """


class WebhookSender(ABC):
    """서명된 웹훅 전송"""

    @abstractmethod
    async def deliver(
        self,
        url: str,
        secret: str,
        event: str,
        payload: dict,
        delivery_id: str,
    ) -> DeliveryResult:
        """전송 결과 반환 (HTTP 에러도 예외 대신 DeliveryResult로)"""
