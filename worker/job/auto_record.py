"""Auto-record Handler - 곧 시작하는 회의에 녹화 봇 배치

자동 녹화가 켜진 캘린더 연결을 돌며 [now - 2분, now + 10분] 구간의 이벤트마다
Dedup Guard를 거쳐 봇을 하나만 배치합니다.
이벤트/연결 단위 에러는 카운트만 하고 스캔은 계속합니다.
"""

import logging
from datetime import datetime, timedelta

from jobqueue import QueueName
from provider import CalendarEvent
from store.model.store import CalendarConnection, MeetingStatus
from worker.base import BaseHandler, handler
from worker.job.service.dedup import DedupGuard
from worker.job.service.webhook_dispatcher import dispatch_webhook_event
from worker.model.handler import AutoRecordParams, RunOutcome

logger = logging.getLogger(__name__)


@handler(QueueName.AUTO_RECORD)
class AutoRecordHandler(BaseHandler):
    params_model = AutoRecordParams

    def __init__(self, deps):
        super().__init__(deps)
        self._dedup = DedupGuard(deps.meetings, deps.processed_events)
        self._settings = deps.settings.auto_record

    async def execute(self, params: AutoRecordParams) -> RunOutcome:
        outcome = RunOutcome()
        now = self.deps.now()

        connections = await self.deps.connections.find_auto_record_connections()
        logger.info(f"Auto-record check: {len(connections)} connection(s)")

        for connection in connections:
            if not connection.organization_id:
                logger.warning(f"Skipping connection without organization: connection={connection.id}")
                outcome.record_skipped()
                continue
            try:
                outcome.merge(await self._scan_connection(connection, now))
            except Exception as e:
                logger.error(f"Auto-record scan failed: connection={connection.id}, error={e}")
                outcome.record_error()

        logger.info(f"Auto-record check finished: {outcome.summary()}")
        return outcome

    async def _scan_connection(self, connection: CalendarConnection, now: datetime) -> RunOutcome:
        outcome = RunOutcome()
        events = await self.deps.calendar.list_events(
            connection,
            now - timedelta(minutes=self._settings.lookback_minutes),
            now + timedelta(minutes=self._settings.lookahead_minutes),
        )

        for event in events:
            outcome.record_processed()
            if not event.meeting_link:
                outcome.record_skipped()
                continue
            try:
                await self._deploy(connection, event, now, outcome)
            except Exception as e:
                logger.error(
                    f"Bot deployment failed: connection={connection.id}, event={event.id}, error={e}"
                )
                outcome.record_error()
        return outcome

    def join_time(self, start: datetime, now: datetime) -> datetime | None:
        """시작 전이면 시작 1분 전, 이미 시작했으면 None (즉시 참가)"""
        if start <= now:
            return None
        join_at = start - timedelta(seconds=self._settings.join_lead_seconds)
        return join_at if join_at > now else None

    async def _deploy(
        self,
        connection: CalendarConnection,
        event: CalendarEvent,
        now: datetime,
        outcome: RunOutcome,
    ) -> None:
        organization_id = connection.organization_id
        decision = await self._dedup.find_existing_deployment(organization_id, event.id, event.meeting_link)
        if decision.skip:
            outcome.record_skipped()
            return

        meeting = decision.meeting
        if meeting is None:
            meeting = await self.deps.meetings.create(
                organization_id=organization_id,
                created_by_id=connection.user_id,
                calendar_event_id=event.id,
                title=event.summary,
                platform=event.platform,
                meeting_url=event.meeting_link,
                start_time=event.start,
                end_time=event.end,
                status=MeetingStatus.PENDING,
            )
            outcome.record_created()

        join_at = self.join_time(event.start, now)
        bot_id = await self.deps.bot.create_bot(
            event.meeting_link,
            join_at,
            {"meeting_id": meeting.id, "organization_id": organization_id},
        )
        await self.deps.meetings.update_bot(meeting.id, bot_id, MeetingStatus.SCHEDULED, join_at)
        outcome.record_deployed()
        logger.info(
            f"Bot scheduled: meeting={meeting.id}, event={event.id}, bot={bot_id}, "
            f"join_at={join_at.isoformat() if join_at else 'now'}"
        )

        # 봇은 이미 배치됨, 팬아웃 실패는 로그만
        try:
            await dispatch_webhook_event(
                self.deps.webhooks,
                self.deps.producer,
                organization_id,
                "meeting.scheduled",
                {
                    "meeting_id": meeting.id,
                    "calendar_event_id": event.id,
                    "title": event.summary,
                    "bot_id": bot_id,
                    "join_at": join_at.isoformat() if join_at else None,
                },
            )
        except Exception as e:
            logger.warning(f"Webhook fan-out failed: meeting={meeting.id}, error={e}")
