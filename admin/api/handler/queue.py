"""큐/잡 조회 및 운영 핸들러"""

import logging

from jobqueue import Job, JobQueue, JobState, QueueRegistry, RecurringJob
from admin.api.model.queue import JobResponse, QueueCountsResponse, RecurringResponse
from admin.exception import InvalidStateFilterError, JobNotFoundError

logger = logging.getLogger(__name__)


class QueueHandler:
    """큐 핸들러 (QueueRegistry에 등록된 큐 대상)"""

    @staticmethod
    def _to_job_response(job: Job) -> JobResponse:
        return JobResponse(
            id=job.id,
            queue_name=job.queue_name,
            name=job.name,
            state=job.state.value,
            payload=job.payload,
            job_key=job.job_key,
            repeat_key=job.repeat_key,
            priority=job.priority,
            attempts=job.attempts,
            attempts_made=job.attempts_made,
            run_at=job.run_at,
            started_at=job.started_at,
            finished_at=job.finished_at,
            result=job.result,
            error=job.error,
            created_at=job.created_at,
        )

    @staticmethod
    def _to_recurring_response(recurring: RecurringJob) -> RecurringResponse:
        return RecurringResponse(
            key=recurring.key,
            queue_name=recurring.queue_name,
            name=recurring.name,
            pattern=recurring.pattern,
            job_id=recurring.job_id,
            payload=recurring.payload,
            next_run_at=recurring.next_run_at,
        )

    @staticmethod
    def _parse_state(state: str | None) -> JobState | None:
        if state is None:
            return None
        try:
            return JobState(state)
        except ValueError:
            raise InvalidStateFilterError(state, [s.value for s in JobState])

    async def get_queues(self) -> list[QueueCountsResponse]:
        """큐별 상태 카운트"""
        result = []
        for queue in QueueRegistry.get_all().values():
            counts = await queue.get_counts()
            result.append(QueueCountsResponse(**counts.model_dump()))
        return result

    async def get_jobs(
        self,
        queue_name: str,
        state: str | None = None,
        page: int = 1,
        size: int = 20,
    ) -> tuple[list[JobResponse], int]:
        """큐의 잡 목록 (최신순)"""
        queue = QueueRegistry.get(queue_name)
        jobs, total = await queue.get_jobs(self._parse_state(state), limit=size, offset=(page - 1) * size)
        return [self._to_job_response(job) for job in jobs], total

    async def get_recurring(self, queue_name: str) -> list[RecurringResponse]:
        queue = QueueRegistry.get(queue_name)
        return [self._to_recurring_response(r) for r in await queue.get_recurring()]

    async def _find(self, job_id: int) -> tuple[JobQueue, Job]:
        # 잡 ID는 큐 전체에서 유일
        for queue in QueueRegistry.get_all().values():
            job = await queue.get_job(job_id)
            if job is not None:
                return queue, job
        raise JobNotFoundError(job_id)

    async def get_job(self, job_id: int) -> JobResponse:
        _, job = await self._find(job_id)
        return self._to_job_response(job)

    async def retry(self, job_id: int) -> JobResponse:
        """failed 잡 재시도"""
        queue, _ = await self._find(job_id)
        job = await queue.retry_failed(job_id)
        logger.info(f"Job retried from admin: queue={queue.name}, id={job_id}")
        return self._to_job_response(job)
