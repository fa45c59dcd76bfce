"""
테넌트 데이터 리포지토리

각 메서드는 자체 트랜잭션으로 실행되며, 바깥 트랜잭션이 있으면 거기에 참여합니다.
"""

import json
import logging
from datetime import datetime
from functools import lru_cache
from pathlib import Path
from typing import Callable

import aiosql
from aiosql.queries import Queries

from common.timeutil import utcnow, to_db_time
from database import get_connection, transactional, transactional_readonly
from store.model.store import (
    CalendarConnection,
    Meeting,
    MeetingStatus,
    User,
    Webhook,
    WebhookDelivery,
)

logger = logging.getLogger(__name__)

SQL_DIR = Path(__file__).parent / "sql"


@lru_cache(maxsize=None)
def _load_queries(name: str) -> Queries:
    return aiosql.from_path(str(SQL_DIR / f"{name}.sql"), "aiosqlite")


class _Repository:
    sql_name: str = ""

    def __init__(self, clock: Callable[[], datetime] | None = None):
        self._queries = _load_queries(self.sql_name)
        self._clock = clock or utcnow

    def _now(self) -> str:
        return to_db_time(self._clock())


class ConnectionRepository(_Repository):
    """캘린더 연결"""
    sql_name = "connection"

    @transactional_readonly
    async def find_auto_record_connections(self) -> list[CalendarConnection]:
        """자동 녹화 + 동기화가 켜진 연결"""
        ctx = get_connection()
        rows = await self._queries.find_auto_record_connections(ctx.connection)
        return [CalendarConnection.from_row(row) for row in rows]

    @transactional_readonly
    async def get(self, connection_id: str) -> CalendarConnection | None:
        ctx = get_connection()
        row = await self._queries.get_connection(ctx.connection, connection_id=connection_id)
        return CalendarConnection.from_row(row) if row else None

    @transactional_readonly
    async def find_sync_enabled_by_user(self, user_id: str) -> list[CalendarConnection]:
        ctx = get_connection()
        rows = await self._queries.find_sync_enabled_by_user(ctx.connection, user_id=user_id)
        return [CalendarConnection.from_row(row) for row in rows]

    @transactional_readonly
    async def find_stale_connections(self, stale_before: datetime) -> list[CalendarConnection]:
        ctx = get_connection()
        rows = await self._queries.find_stale_connections(
            ctx.connection, stale_before=to_db_time(stale_before)
        )
        return [CalendarConnection.from_row(row) for row in rows]

    @transactional
    async def update_last_synced(self, connection_id: str) -> None:
        ctx = get_connection()
        await self._queries.update_last_synced(
            ctx.connection, connection_id=connection_id, synced_at=self._now()
        )


class MeetingRepository(_Repository):
    """미팅 (봇 배치 작업 단위)"""
    sql_name = "meeting"

    @transactional_readonly
    async def get(self, meeting_id: int) -> Meeting | None:
        ctx = get_connection()
        row = await self._queries.get_meeting(ctx.connection, meeting_id=meeting_id)
        return Meeting.from_row(row) if row else None

    @transactional_readonly
    async def find_open_by_calendar_event(self, organization_id: str, calendar_event_id: str) -> Meeting | None:
        ctx = get_connection()
        row = await self._queries.find_open_by_calendar_event(
            ctx.connection, organization_id=organization_id, calendar_event_id=calendar_event_id
        )
        return Meeting.from_row(row) if row else None

    @transactional_readonly
    async def find_latest_by_calendar_event(self, organization_id: str, calendar_event_id: str) -> Meeting | None:
        ctx = get_connection()
        row = await self._queries.find_latest_by_calendar_event(
            ctx.connection, organization_id=organization_id, calendar_event_id=calendar_event_id
        )
        return Meeting.from_row(row) if row else None

    @transactional_readonly
    async def find_active_bot_by_url(self, organization_id: str, meeting_url: str) -> Meeting | None:
        ctx = get_connection()
        row = await self._queries.find_active_bot_by_url(
            ctx.connection, organization_id=organization_id, meeting_url=meeting_url
        )
        return Meeting.from_row(row) if row else None

    @transactional
    async def create(
        self,
        organization_id: str,
        created_by_id: str | None,
        calendar_event_id: str | None,
        title: str,
        platform: str | None,
        meeting_url: str | None,
        start_time: datetime | None,
        end_time: datetime | None,
        status: MeetingStatus = MeetingStatus.PENDING,
    ) -> Meeting:
        ctx = get_connection()
        meeting_id = await self._queries.create_meeting(
            ctx.connection,
            organization_id=organization_id,
            created_by_id=created_by_id,
            calendar_event_id=calendar_event_id,
            title=title,
            platform=platform,
            meeting_url=meeting_url,
            start_time=to_db_time(start_time),
            end_time=to_db_time(end_time),
            status=status.value,
            now=self._now(),
        )
        row = await self._queries.get_meeting(ctx.connection, meeting_id=meeting_id)
        return Meeting.from_row(row)

    @transactional
    async def update_bot(
        self,
        meeting_id: int,
        bot_id: str,
        status: MeetingStatus,
        join_at: datetime | None,
    ) -> None:
        ctx = get_connection()
        await self._queries.update_bot(
            ctx.connection,
            meeting_id=meeting_id,
            bot_id=bot_id,
            status=status.value,
            join_at=to_db_time(join_at),
            now=self._now(),
        )

    @transactional
    async def update_from_event(
        self,
        meeting_id: int,
        title: str,
        start_time: datetime | None,
        end_time: datetime | None,
        meeting_url: str | None,
        platform: str | None,
    ) -> None:
        ctx = get_connection()
        await self._queries.update_from_event(
            ctx.connection,
            meeting_id=meeting_id,
            title=title,
            start_time=to_db_time(start_time),
            end_time=to_db_time(end_time),
            meeting_url=meeting_url,
            platform=platform,
            now=self._now(),
        )

    @transactional
    async def update_status(self, meeting_id: int, status: MeetingStatus) -> None:
        ctx = get_connection()
        await self._queries.update_status(
            ctx.connection, meeting_id=meeting_id, status=status.value, now=self._now()
        )

    @transactional_readonly
    async def find_orphaned_bots(self, updated_before: datetime) -> list[Meeting]:
        ctx = get_connection()
        rows = await self._queries.find_orphaned_bots(
            ctx.connection, updated_before=to_db_time(updated_before)
        )
        return [Meeting.from_row(row) for row in rows]

    @transactional
    async def mark_failed(self, meeting: Meeting, reason: str) -> bool:
        """미완료 미팅을 failed로 (metadata.failureReason 기록)"""
        ctx = get_connection()
        metadata = {**meeting.metadata, "failureReason": reason}
        affected = await self._queries.mark_failed(
            ctx.connection,
            meeting_id=meeting.id,
            metadata=json.dumps(metadata),
            now=self._now(),
        )
        return affected > 0

    @transactional_readonly
    async def count_for_user_between(self, user_id: str, start: datetime, end: datetime) -> int:
        ctx = get_connection()
        count = await self._queries.count_for_user_between(
            ctx.connection, user_id=user_id, start=to_db_time(start), end=to_db_time(end)
        )
        return count or 0

    @transactional_readonly
    async def list_for_user_between(self, user_id: str, start: datetime, end: datetime) -> list[Meeting]:
        ctx = get_connection()
        rows = await self._queries.list_for_user_between(
            ctx.connection, user_id=user_id, start=to_db_time(start), end=to_db_time(end)
        )
        return [Meeting.from_row(row) for row in rows]


class UserRepository(_Repository):
    """사용자"""
    sql_name = "user"

    @transactional_readonly
    async def get(self, user_id: str) -> User | None:
        ctx = get_connection()
        row = await self._queries.get_user(ctx.connection, user_id=user_id)
        return User.from_row(row) if row else None

    @transactional_readonly
    async def find_digest_recipients(self, sent_before: datetime) -> list[User]:
        ctx = get_connection()
        rows = await self._queries.find_digest_recipients(
            ctx.connection, sent_before=to_db_time(sent_before)
        )
        return [User.from_row(row) for row in rows]

    @transactional
    async def mark_digest_sent(self, user_id: str) -> None:
        ctx = get_connection()
        await self._queries.mark_digest_sent(ctx.connection, user_id=user_id, sent_at=self._now())


class WebhookRepository(_Repository):
    """웹훅 및 전송 이력"""
    sql_name = "webhook"

    @transactional_readonly
    async def get(self, webhook_id: str) -> Webhook | None:
        ctx = get_connection()
        row = await self._queries.get_webhook(ctx.connection, webhook_id=webhook_id)
        return Webhook.from_row(row) if row else None

    @transactional_readonly
    async def find_subscribed(self, organization_id: str, event: str) -> list[Webhook]:
        """조직의 활성 웹훅 중 event를 구독하는 것"""
        ctx = get_connection()
        rows = await self._queries.find_active_by_organization(ctx.connection, organization_id=organization_id)
        return [w for w in (Webhook.from_row(row) for row in rows) if w.subscribes_to(event)]

    @transactional
    async def record_delivery(self, delivery: WebhookDelivery) -> None:
        ctx = get_connection()
        await self._queries.insert_delivery(
            ctx.connection,
            webhook_id=delivery.webhook_id,
            delivery_id=delivery.delivery_id,
            event=delivery.event,
            status_code=delivery.status_code,
            success=1 if delivery.success else 0,
            response_body=delivery.response_body,
            error=delivery.error,
            duration_ms=delivery.duration_ms,
            attempt=delivery.attempt,
            now=self._now(),
        )

    @transactional_readonly
    async def find_deliveries(self, webhook_id: str, limit: int = 50) -> list[WebhookDelivery]:
        ctx = get_connection()
        rows = await self._queries.find_deliveries(ctx.connection, webhook_id=webhook_id, limit=limit)
        return [
            WebhookDelivery(
                webhook_id=row["webhook_id"],
                delivery_id=row["delivery_id"],
                event=row["event"],
                status_code=row["status_code"],
                success=bool(row["success"]),
                response_body=row["response_body"],
                error=row["error"],
                duration_ms=row["duration_ms"],
                attempt=row["attempt"],
            )
            for row in rows
        ]

    @transactional
    async def record_success(self, webhook_id: str) -> None:
        """연속 실패 횟수 초기화"""
        ctx = get_connection()
        await self._queries.record_success(ctx.connection, webhook_id=webhook_id, now=self._now())

    @transactional
    async def record_failure(self, webhook_id: str, disable_after: int) -> int:
        """
        연속 실패 횟수 증가, disable_after 이상이면 비활성화

        Returns:
            증가된 연속 실패 횟수
        """
        ctx = get_connection()
        failure_count = await self._queries.increment_failure(
            ctx.connection, webhook_id=webhook_id, now=self._now()
        ) or 0
        if failure_count >= disable_after:
            await self._queries.disable_webhook(ctx.connection, webhook_id=webhook_id)
            logger.warning(f"Webhook disabled after {failure_count} consecutive failures: {webhook_id}")
        return failure_count


class ProcessedEventRepository(_Repository):
    """인바운드 이벤트 처리 기록"""
    sql_name = "processed_event"

    @transactional
    async def insert_if_absent(self, provider: str, event_id: str, event_type: str | None) -> bool:
        """처음 보는 이벤트면 기록하고 True, 이미 있으면 False"""
        ctx = get_connection()
        affected = await self._queries.insert_if_absent(
            ctx.connection,
            provider=provider,
            event_id=event_id,
            event_type=event_type,
            now=self._now(),
        )
        return affected > 0

    @transactional
    async def delete_older_than(self, cutoff: datetime) -> int:
        ctx = get_connection()
        return await self._queries.delete_older_than(ctx.connection, cutoff=to_db_time(cutoff))
