"""
Calendar Sync 핸들러 테스트

테스트 항목:
1. single / user / all 대상 선택
2. 이벤트 -> 미팅 생성, 재동기화 시 갱신
3. last_synced_at 갱신 및 오래된 연결만 periodic 동기화
4. 잘못된 payload
5. 연결 단위 실패 격리

실행: python -m pytest test/calendar_sync_test.py -v
"""

import logging
import sys
from datetime import timedelta
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from common.timeutil import from_db_time
from fakes import (
    FakeBot,
    FakeCalendar,
    FakeClock,
    FakeEmail,
    FakeWebhookSender,
    fetch_all,
    make_event,
    seed_connection,
    seed_user,
)
from worker.deps import Dependencies
from worker.exception import InvalidJobPayloadError
from worker.job.calendar_sync import CalendarSyncHandler
from worker.model import CalendarSyncParams

logging.basicConfig(
    level=logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


def make_handler(clock: FakeClock, calendar: FakeCalendar) -> CalendarSyncHandler:
    return CalendarSyncHandler(Dependencies(calendar, FakeBot(), FakeEmail(), FakeWebhookSender(), clock=clock))


class TestSingleSync:
    """sync_type=single"""

    @pytest.mark.asyncio
    async def test_creates_then_updates_meetings(self, database):
        clock, calendar = FakeClock(), FakeCalendar()
        await seed_user("u1")
        await seed_connection("c1", "u1")
        start = clock.now + timedelta(days=2)
        calendar.events["c1"] = [
            make_event("evt-1", start, summary="Kickoff"),
            make_event("evt-2", start + timedelta(hours=1), link=None),
        ]
        handler = make_handler(clock, calendar)

        first = await handler.execute(CalendarSyncParams(sync_type="single", connection_id="c1"))
        assert first.created == 1
        assert first.skipped == 1

        calendar.events["c1"][0] = make_event("evt-1", start + timedelta(minutes=30), summary="Kickoff (moved)")
        second = await handler.execute(CalendarSyncParams(sync_type="single", connection_id="c1"))
        assert second.updated == 1
        assert second.created == 0

        meetings = await fetch_all("SELECT * FROM meetings")
        assert len(meetings) == 1
        assert meetings[0]["title"] == "Kickoff (moved)"
        assert meetings[0]["status"] == "pending"
        assert meetings[0]["created_by_id"] == "u1"
        assert from_db_time(meetings[0]["start_time"]) == start + timedelta(minutes=30)

    @pytest.mark.asyncio
    async def test_sync_window_and_last_synced(self, database):
        clock, calendar = FakeClock(), FakeCalendar()
        await seed_user("u1")
        await seed_connection("c1", "u1")

        await make_handler(clock, calendar).execute(CalendarSyncParams(sync_type="single", connection_id="c1"))

        _, time_min, time_max = calendar.calls[0]
        assert time_min == clock.now
        assert time_max == clock.now + timedelta(days=14)
        rows = await fetch_all("SELECT last_synced_at FROM calendar_connections WHERE id = 'c1'")
        assert from_db_time(rows[0]["last_synced_at"]) == clock.now

    @pytest.mark.asyncio
    async def test_missing_or_disabled_connection_is_noop(self, database):
        clock, calendar = FakeClock(), FakeCalendar()
        await seed_user("u1")
        await seed_connection("c-off", "u1", sync_enabled=False)
        handler = make_handler(clock, calendar)

        for connection_id in ("missing", "c-off"):
            outcome = await handler.execute(CalendarSyncParams(sync_type="single", connection_id=connection_id))
            assert outcome.processed == 0
        assert calendar.calls == []


class TestUserAndPeriodicSync:
    """sync_type=user / all"""

    @pytest.mark.asyncio
    async def test_user_sync_covers_only_that_user(self, database):
        clock, calendar = FakeClock(), FakeCalendar()
        await seed_user("u1")
        await seed_user("u2")
        await seed_connection("c1", "u1")
        await seed_connection("c2", "u1")
        await seed_connection("c3", "u2")

        await make_handler(clock, calendar).execute(CalendarSyncParams(sync_type="user", user_id="u1"))

        assert sorted(call[0] for call in calendar.calls) == ["c1", "c2"]

    @pytest.mark.asyncio
    async def test_periodic_sync_picks_stale_connections(self, database):
        clock, calendar = FakeClock(), FakeCalendar()
        await seed_user("u1")
        await seed_connection("never", "u1")
        await seed_connection("stale", "u1", last_synced_at=clock.now - timedelta(minutes=30))
        await seed_connection("fresh", "u1", last_synced_at=clock.now - timedelta(minutes=5))
        await seed_connection("disabled", "u1", sync_enabled=False)

        await make_handler(clock, calendar).execute(CalendarSyncParams(sync_type="all"))

        assert [call[0] for call in calendar.calls] == ["never", "stale"]

    @pytest.mark.asyncio
    async def test_failure_isolated_per_connection(self, database):
        clock, calendar = FakeClock(), FakeCalendar()
        await seed_user("u1")
        await seed_connection("c1", "u1")
        await seed_connection("c2", "u1")
        calendar.failing.add("c1")
        calendar.events["c2"] = [make_event("evt-1", clock.now + timedelta(hours=3))]

        outcome = await make_handler(clock, calendar).execute(CalendarSyncParams(sync_type="all"))

        assert outcome.errors == 1
        assert outcome.created == 1
        # 실패한 연결은 last_synced_at이 갱신되지 않아 다음 주기에 다시 대상이 됨
        rows = await fetch_all("SELECT id FROM calendar_connections WHERE last_synced_at IS NULL")
        assert [r["id"] for r in rows] == ["c1"]


class TestInvalidPayload:
    """잘못된 sync 요청"""

    @pytest.mark.asyncio
    async def test_unknown_sync_type(self, database):
        with pytest.raises(InvalidJobPayloadError):
            await make_handler(FakeClock(), FakeCalendar()).execute(CalendarSyncParams(sync_type="everything"))

    @pytest.mark.asyncio
    async def test_missing_target_ids(self, database):
        handler = make_handler(FakeClock(), FakeCalendar())
        with pytest.raises(InvalidJobPayloadError):
            await handler.execute(CalendarSyncParams(sync_type="single"))
        with pytest.raises(InvalidJobPayloadError):
            await handler.execute(CalendarSyncParams(sync_type="user"))
