"""Cleanup Handler - 정리 작업

task:
    orphaned_bots: 봇 상태 갱신이 오래 끊긴 미팅을 failed로 (자연 키 해제)
    processed_events: 오래된 인바운드 이벤트 처리 기록 삭제
"""

import logging
from datetime import timedelta

from jobqueue import QueueName
from provider import ProviderError
from worker.base import BaseHandler, handler
from worker.exception import InvalidJobPayloadError
from worker.job.service.dedup import DedupGuard
from worker.job.service.webhook_dispatcher import dispatch_webhook_event
from worker.model.handler import CleanupParams, RunOutcome

logger = logging.getLogger(__name__)

ORPHANED_BOT_REASON = "bot_timeout"


@handler(QueueName.CLEANUP)
class CleanupHandler(BaseHandler):
    params_model = CleanupParams

    async def execute(self, params: CleanupParams) -> RunOutcome:
        if params.task == "orphaned_bots":
            return await self._cleanup_orphaned_bots()
        if params.task == "processed_events":
            return await self._cleanup_processed_events()
        raise InvalidJobPayloadError(self.queue_name, f"Unknown cleanup task: {params.task}")

    async def _cleanup_orphaned_bots(self) -> RunOutcome:
        outcome = RunOutcome()
        settings = self.deps.settings.cleanup
        cutoff = self.deps.now() - timedelta(hours=settings.orphaned_bot_hours)

        for meeting in await self.deps.meetings.find_orphaned_bots(cutoff):
            outcome.record_processed()
            try:
                if meeting.bot_id:
                    try:
                        await self.deps.bot.stop_bot(meeting.bot_id)
                    except ProviderError as e:
                        logger.warning(f"Failed to stop orphaned bot: bot={meeting.bot_id}, error={e}")

                if await self.deps.meetings.mark_failed(meeting, ORPHANED_BOT_REASON):
                    outcome.record_updated()
                    logger.info(f"Orphaned bot cleaned up: meeting={meeting.id}, bot={meeting.bot_id}")
                    await dispatch_webhook_event(
                        self.deps.webhooks,
                        self.deps.producer,
                        meeting.organization_id,
                        "meeting.failed",
                        {"meeting_id": meeting.id, "reason": ORPHANED_BOT_REASON},
                    )
                else:
                    outcome.record_skipped()
            except Exception as e:
                logger.error(f"Orphaned bot cleanup failed: meeting={meeting.id}, error={e}")
                outcome.record_error()

        logger.info(f"Orphaned bot cleanup finished: {outcome.summary()}")
        return outcome

    async def _cleanup_processed_events(self) -> RunOutcome:
        guard = DedupGuard(self.deps.meetings, self.deps.processed_events)
        deleted = await guard.cleanup_processed_events(
            self.deps.now(), self.deps.settings.cleanup.processed_event_days
        )
        return RunOutcome(processed=deleted, updated=deleted)
