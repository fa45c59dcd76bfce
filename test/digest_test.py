"""
Weekly Digest 핸들러 테스트

테스트 항목:
1. 이메일 본문 렌더링 (Jinja2 템플릿)
2. 주차 단위 email job_id
3. send_all: 활동 있는 사용자만 발송, 재실행 시 중복 발송 없음
4. user_id: 수신 거부/없는 사용자 건너뛰기

실행: python -m pytest test/digest_test.py -v
"""

import logging
import sys
from datetime import timedelta
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from fakes import (
    BASE_TIME,
    FakeBot,
    FakeCalendar,
    FakeClock,
    FakeEmail,
    FakeWebhookSender,
    fetch_all,
    seed_user,
)
from jobqueue import JobQueue, QueueName
from store import MeetingRepository
from store.model.store import Meeting, MeetingStatus, User
from worker.deps import Dependencies
from worker.job.weekly_digest import WeeklyDigestHandler, build_digest_email, digest_job_id
from worker.model import WeeklyDigestParams

logging.basicConfig(
    level=logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


def make_handler(clock: FakeClock, email_queue: JobQueue | None = None) -> WeeklyDigestHandler:
    queues = {QueueName.EMAIL: email_queue} if email_queue is not None else {}
    return WeeklyDigestHandler(
        Dependencies(FakeCalendar(), FakeBot(), FakeEmail(), FakeWebhookSender(), clock=clock, queues=queues)
    )


async def seed_meeting(clock: FakeClock, user_id: str, days_ago: float, title: str = "Sync",
                       status: MeetingStatus = MeetingStatus.COMPLETED) -> Meeting:
    repo = MeetingRepository(clock)
    start = clock.now - timedelta(days=days_ago)
    meeting = await repo.create("org-1", user_id, None, title, "meet", None, start, start + timedelta(minutes=30))
    if status != MeetingStatus.PENDING:
        await repo.update_status(meeting.id, status)
    return meeting


class TestDigestContent:
    """build_digest_email / digest_job_id"""

    def test_subject_and_body(self):
        user = User(id="u1", email="ada@example.com", name="Ada")
        meetings = [
            Meeting(id=1, organization_id="org-1", title="Planning",
                    start_time=BASE_TIME, end_time=BASE_TIME + timedelta(minutes=90)),
            Meeting(id=2, organization_id="org-1", title="<Retro>",
                    start_time=BASE_TIME, end_time=BASE_TIME + timedelta(minutes=30)),
        ]

        subject, html, text = build_digest_email(user, meetings, 2)

        assert subject == "Your Week in Review - 2 meetings processed"
        assert "Hi Ada" in html
        assert "&lt;Retro&gt;" in html
        assert "Time Recorded: 2.0 hours" in text
        assert "- Planning" in text

    def test_name_falls_back_to_email(self):
        _, html, _ = build_digest_email(User(id="u1", email="bob@example.com"), [], 1)
        assert "Hi bob@example.com" in html

    def test_job_id_per_iso_week(self):
        # 2026-01-05 (월)은 ISO 2주차
        assert digest_job_id("u1", BASE_TIME) == "digest:u1:2026-W02"
        assert digest_job_id("u1", BASE_TIME + timedelta(days=6)) == "digest:u1:2026-W02"
        assert digest_job_id("u1", BASE_TIME + timedelta(days=7)) == "digest:u1:2026-W03"


class TestWeeklyDigest:
    """execute()"""

    @pytest.mark.asyncio
    async def test_send_all_only_active_users(self, database):
        clock = FakeClock()
        email_queue = JobQueue(QueueName.EMAIL, clock=clock)
        await seed_user("active", name="Ada")
        await seed_user("idle")
        await seed_user("opted-out", digest_enabled=False)
        await seed_meeting(clock, "active", days_ago=2, title="Planning")
        await seed_meeting(clock, "active", days_ago=3, title="Cancelled", status=MeetingStatus.CANCELLED)
        await seed_meeting(clock, "active", days_ago=10, title="Too old")
        await seed_meeting(clock, "opted-out", days_ago=1)

        outcome = await make_handler(clock, email_queue).execute(WeeklyDigestParams(send_all=True))

        assert outcome.processed == 2
        assert outcome.sent == 1
        assert outcome.skipped == 1

        jobs, total = await email_queue.get_jobs()
        assert total == 1
        assert jobs[0].payload["to"] == "active@example.com"
        assert jobs[0].payload["subject"] == "Your Week in Review - 1 meetings processed"
        assert jobs[0].job_key == "digest:active:2026-W02"

        rows = await fetch_all("SELECT id FROM users WHERE last_digest_sent_at IS NOT NULL")
        assert [r["id"] for r in rows] == ["active"]

    @pytest.mark.asyncio
    async def test_rerun_does_not_resend(self, database):
        clock = FakeClock()
        email_queue = JobQueue(QueueName.EMAIL, clock=clock)
        await seed_user("active")
        await seed_meeting(clock, "active", days_ago=2)
        handler = make_handler(clock, email_queue)

        await handler.execute(WeeklyDigestParams(send_all=True))
        clock.advance(hours=1)
        second = await handler.execute(WeeklyDigestParams(send_all=True))

        assert second.processed == 0
        _, total = await email_queue.get_jobs()
        assert total == 1

    @pytest.mark.asyncio
    async def test_single_user_same_week_queues_one_email(self, database):
        clock = FakeClock()
        email_queue = JobQueue(QueueName.EMAIL, clock=clock)
        await seed_user("active")
        await seed_meeting(clock, "active", days_ago=1)
        handler = make_handler(clock, email_queue)

        await handler.execute(WeeklyDigestParams(user_id="active"))
        await handler.execute(WeeklyDigestParams(user_id="active"))

        _, total = await email_queue.get_jobs()
        assert total == 1

    @pytest.mark.asyncio
    async def test_single_user_not_eligible(self, database):
        clock = FakeClock()
        await seed_user("opted-out", digest_enabled=False)
        handler = make_handler(clock)

        assert (await handler.execute(WeeklyDigestParams(user_id="opted-out"))).skipped == 1
        assert (await handler.execute(WeeklyDigestParams(user_id="missing"))).skipped == 1
        assert (await handler.execute(WeeklyDigestParams())).summary() == "no-op"
