"""Weekly Digest Handler - 주간 요약 이메일

다이제스트는 직접 보내지 않고 email 큐에 잡으로 넣습니다.
email 잡의 job_id는 digest:{user_id}:{ISO 주차}라서 같은 주에 두 번 실행되어도 한 통만 대기합니다.
"""

import logging
from datetime import datetime, timedelta
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

from jobqueue import QueueName
from store.model.store import Meeting, User
from worker.base import BaseHandler, handler
from worker.model.handler import RunOutcome, WeeklyDigestParams

logger = logging.getLogger(__name__)

_templates = Environment(
    loader=FileSystemLoader(str(Path(__file__).parent / "template")),
    autoescape=select_autoescape(["html"]),
    trim_blocks=True,
    lstrip_blocks=True,
)


def digest_job_id(user_id: str, now: datetime) -> str:
    year, week, _ = now.isocalendar()
    return f"digest:{user_id}:{year}-W{week:02d}"


def build_digest_email(user: User, meetings: list[Meeting], meeting_count: int) -> tuple[str, str, str]:
    """
    Returns:
        (subject, html, text)
    """
    seconds = sum(
        (m.end_time - m.start_time).total_seconds()
        for m in meetings
        if m.start_time and m.end_time and m.end_time > m.start_time
    )
    context = {
        "name": user.name or user.email,
        "meeting_count": meeting_count,
        "hours_recorded": round(seconds / 3600, 1),
        "meetings": meetings,
    }
    subject = f"Your Week in Review - {meeting_count} meetings processed"
    html = _templates.get_template("digest.html").render(**context)
    text = _templates.get_template("digest.txt").render(**context).strip()
    return subject, html, text


@handler(QueueName.WEEKLY_DIGEST)
class WeeklyDigestHandler(BaseHandler):
    params_model = WeeklyDigestParams

    async def execute(self, params: WeeklyDigestParams) -> RunOutcome:
        outcome = RunOutcome()
        now = self.deps.now()
        settings = self.deps.settings.weekly_digest

        if params.send_all:
            users = await self.deps.users.find_digest_recipients(now - timedelta(days=settings.resend_after_days))
            logger.info(f"Processing weekly digests for {len(users)} user(s)")
        elif params.user_id:
            user = await self.deps.users.get(params.user_id)
            if user is None or not user.digest_enabled:
                logger.warning(f"User not eligible for digest: {params.user_id}")
                outcome.record_skipped()
                return outcome
            users = [user]
        else:
            logger.warning("Weekly digest job without send_all or user_id")
            return outcome

        for user in users:
            outcome.record_processed()
            try:
                if await self._send_digest(user, now, settings.period_days):
                    outcome.record_sent()
                else:
                    outcome.record_skipped()
            except Exception as e:
                logger.error(f"Failed to send digest: user={user.id}, error={e}")
                outcome.record_error()

        logger.info(f"Weekly digest finished: {outcome.summary()}")
        return outcome

    async def _send_digest(self, user: User, now: datetime, period_days: int) -> bool:
        since = now - timedelta(days=period_days)
        meeting_count = await self.deps.meetings.count_for_user_between(user.id, since, now)
        if meeting_count == 0:
            logger.debug(f"Skipping digest - no activity this week: user={user.id}")
            return False

        meetings = await self.deps.meetings.list_for_user_between(user.id, since, now)
        subject, html, text = build_digest_email(user, meetings, meeting_count)
        job = await self.deps.producer.email(user.email, subject, html, text, job_id=digest_job_id(user.id, now))
        await self.deps.users.mark_digest_sent(user.id)
        logger.debug(f"Digest queued: user={user.id}, email_job={job.id}")
        return True
