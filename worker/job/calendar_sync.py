"""Calendar Sync Handler - 캘린더 이벤트를 미팅으로 동기화

sync_type:
    single: connection_id 하나
    user: 사용자의 동기화 활성 연결 전체
    all: 마지막 동기화가 오래된(또는 없는) 연결 전체
"""

import logging
from datetime import datetime, timedelta

from jobqueue import QueueName
from store.model.store import CalendarConnection, MeetingStatus
from worker.base import BaseHandler, handler
from worker.exception import InvalidJobPayloadError
from worker.model.handler import CalendarSyncParams, RunOutcome

logger = logging.getLogger(__name__)

SYNC_TYPES = ("single", "user", "all")


@handler(QueueName.CALENDAR_SYNC)
class CalendarSyncHandler(BaseHandler):
    params_model = CalendarSyncParams

    async def execute(self, params: CalendarSyncParams) -> RunOutcome:
        now = self.deps.now()
        connections = await self._resolve_connections(params, now)

        outcome = RunOutcome()
        for connection in connections:
            organization_id = connection.organization_id or params.organization_id
            if not organization_id:
                logger.warning(f"Skipping connection without organization: connection={connection.id}")
                outcome.record_skipped()
                continue
            try:
                outcome.merge(await self._sync_connection(connection, organization_id, now))
            except Exception as e:
                logger.error(f"Calendar sync failed: connection={connection.id}, error={e}")
                outcome.record_error()

        logger.info(f"Calendar sync ({params.sync_type}) finished: {outcome.summary()}")
        return outcome

    async def _resolve_connections(self, params: CalendarSyncParams, now: datetime) -> list[CalendarConnection]:
        if params.sync_type not in SYNC_TYPES:
            raise InvalidJobPayloadError(self.queue_name, f"Unknown sync type: {params.sync_type}")

        if params.sync_type == "single":
            if not params.connection_id:
                raise InvalidJobPayloadError(self.queue_name, "connection_id is required for single sync")
            connection = await self.deps.connections.get(params.connection_id)
            if connection is None or not connection.sync_enabled:
                logger.warning(f"Connection not found or sync disabled: {params.connection_id}")
                return []
            return [connection]

        if params.sync_type == "user":
            if not params.user_id:
                raise InvalidJobPayloadError(self.queue_name, "user_id is required for user sync")
            return await self.deps.connections.find_sync_enabled_by_user(params.user_id)

        stale_before = now - timedelta(minutes=self.deps.settings.calendar_sync.stale_after_minutes)
        return await self.deps.connections.find_stale_connections(stale_before)

    async def _sync_connection(
        self,
        connection: CalendarConnection,
        organization_id: str,
        now: datetime,
    ) -> RunOutcome:
        outcome = RunOutcome()
        events = await self.deps.calendar.list_events(
            connection,
            now,
            now + timedelta(days=self.deps.settings.calendar_sync.lookahead_days),
        )

        for event in events:
            outcome.record_processed()
            if not event.meeting_link:
                outcome.record_skipped()
                continue
            try:
                existing = await self.deps.meetings.find_latest_by_calendar_event(organization_id, event.id)
                if existing:
                    await self.deps.meetings.update_from_event(
                        existing.id,
                        title=event.summary,
                        start_time=event.start,
                        end_time=event.end,
                        meeting_url=event.meeting_link,
                        platform=event.platform,
                    )
                    outcome.record_updated()
                else:
                    await self.deps.meetings.create(
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
            except Exception as e:
                logger.error(f"Failed to sync event: connection={connection.id}, event={event.id}, error={e}")
                outcome.record_error()

        await self.deps.connections.update_last_synced(connection.id)
        logger.debug(f"Synced connection {connection.id}: {outcome.summary()}")
        return outcome
