"""
Dedup Guard - 외부 작업 중복 방지

새 봇 배치 전에 자연 키(캘린더 이벤트 ID, 조직 + 회의 URL)로
진행 중인 작업 단위가 있는지 확인합니다.

동시에 여러 워커가 같은 키를 검사하면 원자적이지 않으므로
auto-record 큐는 concurrency 1로 운영하고,
meetings의 부분 유니크 인덱스가 다중 프로세스에서의 마지막 방어선입니다.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta

from store import MeetingRepository, ProcessedEventRepository
from store.model.store import Meeting

logger = logging.getLogger(__name__)


@dataclass
class DedupDecision:
    skip: bool
    reason: str | None = None
    meeting: Meeting | None = None  # skip=False면 재사용할 미완료 미팅 (없으면 None)


class DedupGuard:

    def __init__(self, meetings: MeetingRepository, processed_events: ProcessedEventRepository):
        self._meetings = meetings
        self._processed_events = processed_events

    async def find_existing_deployment(
        self,
        organization_id: str,
        calendar_event_id: str | None,
        meeting_url: str | None,
    ) -> DedupDecision:
        """
        진행 중인 봇 배치 확인

        조회 순서:
            1. 조직 내 같은 calendar_event_id의 미완료 미팅 (봇 ID가 있거나 봇 진행 상태면 skip)
            2. 조직 내 같은 meeting_url로 봇이 진행 중인 미팅 (다른 이벤트가 같은 회의를 가리키는 경우)
        """
        existing = None
        if calendar_event_id:
            existing = await self._meetings.find_open_by_calendar_event(organization_id, calendar_event_id)
            if existing and existing.has_active_bot:
                logger.debug(
                    f"Bot already deployed for event: org={organization_id}, "
                    f"event={calendar_event_id}, meeting={existing.id}"
                )
                return DedupDecision(skip=True, reason="calendar_event", meeting=existing)

        if meeting_url:
            same_target = await self._meetings.find_active_bot_by_url(organization_id, meeting_url)
            if same_target and (existing is None or same_target.id != existing.id):
                logger.debug(
                    f"Bot already deployed for url: org={organization_id}, "
                    f"url={meeting_url}, meeting={same_target.id}"
                )
                return DedupDecision(skip=True, reason="meeting_url", meeting=same_target)

        return DedupDecision(skip=False, meeting=existing)

    async def check_and_mark_processed(self, provider: str, event_id: str, event_type: str | None = None) -> bool:
        """
        인바운드 이벤트 최초 처리 여부

        Recall.ai/캘린더 푸시 같은 프로바이더 웹훅 수신 엔드포인트가 처리 전에 호출하는
        라이브러리 API입니다. 워커 핸들러는 호출하지 않으며, 기록은
        cleanup 잡(task=processed_events)이 cleanup_processed_events로 정리합니다.

        Returns:
            True: 처음 본 이벤트 (기록 완료), False: 중복
        """
        first_seen = await self._processed_events.insert_if_absent(provider, event_id, event_type)
        if not first_seen:
            logger.debug(f"Duplicate event skipped: provider={provider}, event={event_id}")
        return first_seen

    async def cleanup_processed_events(self, now, days: int = 7) -> int:
        """days일 지난 처리 기록 삭제"""
        deleted = await self._processed_events.delete_older_than(now - timedelta(days=days))
        if deleted:
            logger.info(f"Cleaned up {deleted} processed event(s) older than {days} days")
        return deleted
