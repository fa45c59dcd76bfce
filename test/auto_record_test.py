"""
Auto-record 핸들러 / Dedup Guard 테스트

테스트 항목:
1. 봇 참가 시각 (시작 1분 전, 이미 시작했으면 즉시)
2. 같은 이벤트를 다시 스캔해도 봇은 하나
3. 다른 이벤트가 같은 회의 URL을 가리키면 봇 하나
4. 조직 없는 연결 / 링크 없는 이벤트 건너뛰기
5. 이벤트/연결 단위 실패 격리 및 재시도 시 미팅 재사용
6. meeting.scheduled 웹훅 팬아웃
7. 인바운드 이벤트 중복 처리 방지

실행: python -m pytest test/auto_record_test.py -v
"""

import logging
import sys
from datetime import timedelta
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

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
    seed_webhook,
)
from jobqueue import JobQueue, QueueName
from store import MeetingRepository, ProcessedEventRepository
from store.model.store import MeetingStatus
from worker.deps import Dependencies
from worker.job.auto_record import AutoRecordHandler
from worker.job.service.dedup import DedupGuard
from worker.model import AutoRecordParams

logging.basicConfig(
    level=logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

MEET_URL = "https://meet.google.com/abc-defg-hij"
ZOOM_URL = "https://us02web.zoom.us/j/123456789"


def make_handler(clock: FakeClock, calendar: FakeCalendar, bot: FakeBot,
                 webhook_queue: JobQueue | None = None) -> AutoRecordHandler:
    queues = {QueueName.WEBHOOK: webhook_queue} if webhook_queue is not None else {}
    deps = Dependencies(calendar, bot, FakeEmail(), FakeWebhookSender(), clock=clock, queues=queues)
    return AutoRecordHandler(deps)


async def run(handler: AutoRecordHandler):
    return await handler.execute(AutoRecordParams())


# ============================================================
# 참가 시각
# ============================================================

class TestJoinTime:
    """join_time()"""

    def test_future_meeting_joins_one_minute_early(self):
        clock = FakeClock()
        handler = make_handler(clock, FakeCalendar(), FakeBot())
        start = clock.now + timedelta(minutes=5)
        assert handler.join_time(start, clock.now) == start - timedelta(minutes=1)

    def test_meeting_within_lead_time_joins_now(self):
        clock = FakeClock()
        handler = make_handler(clock, FakeCalendar(), FakeBot())
        assert handler.join_time(clock.now + timedelta(seconds=30), clock.now) is None

    def test_started_meeting_joins_now(self):
        clock = FakeClock()
        handler = make_handler(clock, FakeCalendar(), FakeBot())
        assert handler.join_time(clock.now - timedelta(minutes=1), clock.now) is None


# ============================================================
# 스캔 / 배치
# ============================================================

class TestAutoRecordScan:
    """execute()"""

    @pytest.mark.asyncio
    async def test_deploys_bot_for_upcoming_meeting(self, database):
        clock, calendar, bot = FakeClock(), FakeCalendar(), FakeBot()
        await seed_user("u1")
        await seed_connection("c1", "u1")
        start = clock.now + timedelta(minutes=5)
        calendar.events["c1"] = [make_event("evt-1", start, MEET_URL, summary="Planning")]

        outcome = await run(make_handler(clock, calendar, bot))

        assert outcome.processed == 1
        assert outcome.created == 1
        assert outcome.deployed == 1
        assert bot.created[0]["join_at"] == start - timedelta(minutes=1)
        assert bot.created[0]["meeting_url"] == MEET_URL

        meetings = await fetch_all("SELECT * FROM meetings")
        assert len(meetings) == 1
        assert meetings[0]["status"] == MeetingStatus.SCHEDULED.value
        assert meetings[0]["bot_id"] == "bot-1"
        assert meetings[0]["platform"] == "meet"
        assert meetings[0]["title"] == "Planning"
        assert bot.created[0]["metadata"] == {"meeting_id": meetings[0]["id"], "organization_id": "org-1"}

    @pytest.mark.asyncio
    async def test_rescan_does_not_deploy_twice(self, database):
        clock, calendar, bot = FakeClock(), FakeCalendar(), FakeBot()
        await seed_user("u1")
        await seed_connection("c1", "u1")
        calendar.events["c1"] = [make_event("evt-1", clock.now + timedelta(minutes=8), MEET_URL)]
        handler = make_handler(clock, calendar, bot)

        await run(handler)
        clock.advance(minutes=5)
        second = await run(handler)

        assert second.deployed == 0
        assert second.skipped == 1
        assert len(bot.created) == 1

    @pytest.mark.asyncio
    async def test_same_event_on_two_calendars(self, database):
        """같은 조직의 두 참석자 캘린더에 같은 이벤트"""
        clock, calendar, bot = FakeClock(), FakeCalendar(), FakeBot()
        await seed_user("u1")
        await seed_user("u2")
        await seed_connection("c1", "u1")
        await seed_connection("c2", "u2")
        event = make_event("shared-evt", clock.now + timedelta(minutes=5), ZOOM_URL)
        calendar.events["c1"] = [event]
        calendar.events["c2"] = [event]

        outcome = await run(make_handler(clock, calendar, bot))

        assert outcome.deployed == 1
        assert outcome.skipped == 1
        assert len(bot.created) == 1

    @pytest.mark.asyncio
    async def test_different_events_same_url(self, database):
        """이벤트 ID는 다르지만 같은 회의 URL"""
        clock, calendar, bot = FakeClock(), FakeCalendar(), FakeBot()
        await seed_user("u1")
        await seed_user("u2")
        await seed_connection("c1", "u1")
        await seed_connection("c2", "u2")
        start = clock.now + timedelta(minutes=5)
        calendar.events["c1"] = [make_event("evt-a", start, MEET_URL)]
        calendar.events["c2"] = [make_event("evt-b", start, MEET_URL)]

        outcome = await run(make_handler(clock, calendar, bot))

        assert outcome.deployed == 1
        assert outcome.skipped == 1
        assert len(await fetch_all("SELECT * FROM meetings")) == 1

    @pytest.mark.asyncio
    async def test_same_url_in_other_organization_is_separate(self, database):
        clock, calendar, bot = FakeClock(), FakeCalendar(), FakeBot()
        await seed_user("u1", organization_id="org-1")
        await seed_user("u2", organization_id="org-2")
        await seed_connection("c1", "u1")
        await seed_connection("c2", "u2")
        start = clock.now + timedelta(minutes=5)
        calendar.events["c1"] = [make_event("evt-a", start, MEET_URL)]
        calendar.events["c2"] = [make_event("evt-b", start, MEET_URL)]

        outcome = await run(make_handler(clock, calendar, bot))
        assert outcome.deployed == 2

    @pytest.mark.asyncio
    async def test_skips_connection_without_organization(self, database):
        clock, calendar, bot = FakeClock(), FakeCalendar(), FakeBot()
        await seed_user("u1", organization_id=None)
        await seed_connection("c1", "u1")
        calendar.events["c1"] = [make_event("evt-1", clock.now + timedelta(minutes=5))]

        outcome = await run(make_handler(clock, calendar, bot))

        assert outcome.skipped == 1
        assert calendar.calls == []
        assert bot.created == []

    @pytest.mark.asyncio
    async def test_skips_event_without_link_and_outside_window(self, database):
        clock, calendar, bot = FakeClock(), FakeCalendar(), FakeBot()
        await seed_user("u1")
        await seed_connection("c1", "u1")
        calendar.events["c1"] = [
            make_event("no-link", clock.now + timedelta(minutes=5), link=None),
            make_event("too-late", clock.now + timedelta(minutes=30)),
        ]

        outcome = await run(make_handler(clock, calendar, bot))

        assert outcome.processed == 1
        assert outcome.skipped == 1
        assert bot.created == []
        _, time_min, time_max = calendar.calls[0]
        assert time_min == clock.now - timedelta(minutes=2)
        assert time_max == clock.now + timedelta(minutes=10)

    @pytest.mark.asyncio
    async def test_ignores_connections_without_auto_record(self, database):
        clock, calendar, bot = FakeClock(), FakeCalendar(), FakeBot()
        await seed_user("u1")
        await seed_connection("c1", "u1", auto_record=False)
        calendar.events["c1"] = [make_event("evt-1", clock.now + timedelta(minutes=5))]

        outcome = await run(make_handler(clock, calendar, bot))
        assert outcome.processed == 0
        assert bot.created == []


class TestAutoRecordFailures:
    """부분 실패 격리"""

    @pytest.mark.asyncio
    async def test_bot_failure_does_not_stop_scan(self, database):
        clock, calendar, bot = FakeClock(), FakeCalendar(), FakeBot()
        await seed_user("u1")
        await seed_connection("c1", "u1")
        start = clock.now + timedelta(minutes=5)
        calendar.events["c1"] = [
            make_event("evt-bad", start, ZOOM_URL),
            make_event("evt-good", start, MEET_URL),
        ]
        bot.failing_urls.add(ZOOM_URL)
        handler = make_handler(clock, calendar, bot)

        outcome = await run(handler)
        assert outcome.errors == 1
        assert outcome.deployed == 1

        # 실패한 이벤트는 pending 미팅으로 남고, 다음 스캔에서 재사용
        pending = await fetch_all("SELECT * FROM meetings WHERE status = 'pending'")
        assert [m["calendar_event_id"] for m in pending] == ["evt-bad"]

        bot.failing_urls.clear()
        retry = await run(handler)
        assert retry.deployed == 1
        assert retry.created == 0
        assert len(await fetch_all("SELECT * FROM meetings")) == 2

    @pytest.mark.asyncio
    async def test_calendar_failure_isolated_per_connection(self, database):
        clock, calendar, bot = FakeClock(), FakeCalendar(), FakeBot()
        await seed_user("u1")
        await seed_user("u2")
        await seed_connection("c1", "u1")
        await seed_connection("c2", "u2")
        calendar.failing.add("c1")
        calendar.events["c2"] = [make_event("evt-2", clock.now + timedelta(minutes=5))]

        outcome = await run(make_handler(clock, calendar, bot))

        assert outcome.errors == 1
        assert outcome.deployed == 1


class TestAutoRecordWebhooks:
    """meeting.scheduled 팬아웃"""

    @pytest.mark.asyncio
    async def test_scheduled_event_queued_for_subscribers(self, database):
        clock, calendar, bot = FakeClock(), FakeCalendar(), FakeBot()
        webhook_queue = JobQueue(QueueName.WEBHOOK, clock=clock)
        await seed_user("u1")
        await seed_connection("c1", "u1")
        await seed_webhook("wh-1", events='["meeting.scheduled"]')
        await seed_webhook("wh-2", events='["meeting.completed"]')
        calendar.events["c1"] = [make_event("evt-1", clock.now + timedelta(minutes=5))]

        await run(make_handler(clock, calendar, bot, webhook_queue))

        jobs, total = await webhook_queue.get_jobs()
        assert total == 1
        assert jobs[0].payload["webhook_id"] == "wh-1"
        assert jobs[0].payload["event"] == "meeting.scheduled"
        assert jobs[0].payload["data"]["calendar_event_id"] == "evt-1"
        assert jobs[0].payload["data"]["bot_id"] == "bot-1"

    @pytest.mark.asyncio
    async def test_fan_out_failure_keeps_deployment(self, database):
        """웹훅 큐가 없어도 봇 배치는 성공으로 집계"""
        clock, calendar, bot = FakeClock(), FakeCalendar(), FakeBot()
        await seed_user("u1")
        await seed_connection("c1", "u1")
        await seed_webhook("wh-1")
        calendar.events["c1"] = [make_event("evt-1", clock.now + timedelta(minutes=5))]

        outcome = await run(make_handler(clock, calendar, bot))

        assert outcome.deployed == 1
        assert outcome.errors == 0


# ============================================================
# Dedup Guard
# ============================================================

class TestDedupGuard:
    """find_existing_deployment / check_and_mark_processed"""

    @pytest.mark.asyncio
    async def test_pending_meeting_is_reused_not_skipped(self, database):
        clock = FakeClock()
        meetings = MeetingRepository(clock)
        guard = DedupGuard(meetings, ProcessedEventRepository(clock))
        pending = await meetings.create("org-1", None, "evt-1", "Sync", None, MEET_URL, clock.now, None)

        decision = await guard.find_existing_deployment("org-1", "evt-1", MEET_URL)
        assert decision.skip is False
        assert decision.meeting.id == pending.id

    @pytest.mark.asyncio
    async def test_finished_meeting_does_not_block(self, database):
        clock = FakeClock()
        meetings = MeetingRepository(clock)
        guard = DedupGuard(meetings, ProcessedEventRepository(clock))
        done = await meetings.create("org-1", None, "evt-1", "Sync", None, MEET_URL, clock.now, None)
        await meetings.update_bot(done.id, "bot-1", MeetingStatus.SCHEDULED, None)
        await meetings.update_status(done.id, MeetingStatus.COMPLETED)

        decision = await guard.find_existing_deployment("org-1", "evt-1", MEET_URL)
        assert decision.skip is False
        assert decision.meeting is None

    @pytest.mark.asyncio
    async def test_processed_events_marked_once(self, database):
        clock = FakeClock()
        guard = DedupGuard(MeetingRepository(clock), ProcessedEventRepository(clock))

        assert await guard.check_and_mark_processed("recall", "evt-1", "bot.done") is True
        assert await guard.check_and_mark_processed("recall", "evt-1", "bot.done") is False
        assert await guard.check_and_mark_processed("stripe", "evt-1") is True

    @pytest.mark.asyncio
    async def test_cleanup_processed_events(self, database):
        clock = FakeClock()
        repo = ProcessedEventRepository(clock)
        guard = DedupGuard(MeetingRepository(clock), repo)

        await guard.check_and_mark_processed("recall", "old")
        clock.advance(days=8)
        await guard.check_and_mark_processed("recall", "new")

        assert await guard.cleanup_processed_events(clock.now, days=7) == 1
        assert await guard.check_and_mark_processed("recall", "old") is True
        assert await guard.check_and_mark_processed("recall", "new") is False
