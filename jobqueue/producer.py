"""
온디맨드 잡 생성기

애플리케이션 코드(API 핸들러, 다른 잡 핸들러)에서 큐에 잡을 넣을 때 사용합니다.
큐는 생성 시 주입받으며, 자연 키를 job_id로 넘겨 같은 대상의 미완료 잡이 중복으로 쌓이지 않게 합니다.
"""

import logging
import uuid

from jobqueue.exception import QueueNotFoundError
from jobqueue.main import JobQueue
from jobqueue.model.queue import Job, JobOptions, JobPriority, QueueName

logger = logging.getLogger(__name__)


class JobProducer:

    def __init__(self, queues: dict[str, JobQueue]):
        self._queues = queues

    def _queue(self, name: str) -> JobQueue:
        queue = self._queues.get(name)
        if queue is None:
            raise QueueNotFoundError(name)
        return queue

    async def calendar_sync(
        self,
        sync_type: str,
        connection_id: str | None = None,
        user_id: str | None = None,
        organization_id: str | None = None,
        priority: int = JobPriority.NORMAL,
    ) -> Job:
        """캘린더 동기화 잡 (자연 키: 대상 + sync_type)"""
        target = connection_id or user_id or "all"
        payload = {
            "sync_type": sync_type,
            "connection_id": connection_id,
            "user_id": user_id,
            "organization_id": organization_id,
        }
        job = await self._queue(QueueName.CALENDAR_SYNC).add(
            f"sync-{sync_type}",
            payload,
            JobOptions(job_id=f"sync:{target}:{sync_type}", priority=int(priority)),
        )
        logger.info(f"Queued calendar sync: type={sync_type}, target={target}, job={job.id}")
        return job

    async def email(
        self,
        to: str,
        subject: str,
        html: str,
        text: str | None = None,
        job_id: str | None = None,
        priority: int = JobPriority.NORMAL,
    ) -> Job:
        payload = {"to": to, "subject": subject, "html": html, "text": text}
        return await self._queue(QueueName.EMAIL).add(
            "send-email", payload, JobOptions(job_id=job_id, priority=int(priority))
        )

    async def webhook_delivery(
        self,
        webhook_id: str,
        event: str,
        data: dict,
        delivery_id: str | None = None,
    ) -> Job:
        """웹훅 전송 잡 (delivery_id가 자연 키)"""
        delivery_id = delivery_id or str(uuid.uuid4())
        payload = {
            "webhook_id": webhook_id,
            "event": event,
            "data": data,
            "delivery_id": delivery_id,
        }
        return await self._queue(QueueName.WEBHOOK).add(
            "deliver", payload, JobOptions(job_id=f"delivery:{delivery_id}")
        )

    async def weekly_digest(self, user_id: str) -> Job:
        return await self._queue(QueueName.WEEKLY_DIGEST).add(
            "send", {"user_id": user_id}, JobOptions(job_id=f"digest:{user_id}")
        )

    async def all_weekly_digests(self) -> Job:
        return await self._queue(QueueName.WEEKLY_DIGEST).add("sendAll", {"send_all": True})
