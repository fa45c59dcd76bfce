"""
핸들러 의존성 컨테이너

외부 Provider, 리포지토리, 후속 잡을 넣을 큐를 시작 시 한 번 만들어 핸들러에 주입합니다.
테스트에서는 가짜 Provider로 Dependencies를 직접 구성합니다.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from common.timeutil import utcnow
from jobqueue import JobProducer, JobQueue
from provider import (
    BotProvider,
    CalendarProvider,
    EmailProvider,
    WebhookSender,
    GoogleCalendarProvider,
    RecallBotProvider,
    ResendEmailProvider,
    HttpWebhookSender,
    ProviderConfig,
)
from store import (
    ConnectionRepository,
    MeetingRepository,
    UserRepository,
    WebhookRepository,
    ProcessedEventRepository,
)
from worker.model.settings import JobSettings


@dataclass
class Dependencies:
    calendar: CalendarProvider
    bot: BotProvider
    email: EmailProvider
    webhook_sender: WebhookSender
    clock: Callable[[], datetime] = utcnow
    connections: ConnectionRepository | None = None
    meetings: MeetingRepository | None = None
    users: UserRepository | None = None
    webhooks: WebhookRepository | None = None
    processed_events: ProcessedEventRepository | None = None
    settings: JobSettings = field(default_factory=JobSettings)
    queues: dict[str, JobQueue] = field(default_factory=dict)
    producer: JobProducer | None = None

    def __post_init__(self):
        # 리포지토리는 같은 clock을 공유
        self.connections = self.connections or ConnectionRepository(self.clock)
        self.meetings = self.meetings or MeetingRepository(self.clock)
        self.users = self.users or UserRepository(self.clock)
        self.webhooks = self.webhooks or WebhookRepository(self.clock)
        self.processed_events = self.processed_events or ProcessedEventRepository(self.clock)
        self.producer = self.producer or JobProducer(self.queues)

    def now(self) -> datetime:
        return self.clock()


def build_dependencies(
    config: dict[str, Any],
    queues: dict[str, JobQueue],
    clock: Callable[[], datetime] | None = None,
) -> Dependencies:
    """provider.yaml 설정으로 실제 Provider 구성, 후속 잡은 queues로 생성"""
    provider_config = ProviderConfig(**(config.get("provider") or {}))
    return Dependencies(
        calendar=GoogleCalendarProvider(provider_config.calendar),
        bot=RecallBotProvider(provider_config.bot),
        email=ResendEmailProvider(provider_config.email),
        webhook_sender=HttpWebhookSender(provider_config.webhook),
        clock=clock or utcnow,
        settings=JobSettings(**(config.get("jobs") or {})),
        queues=queues,
    )
