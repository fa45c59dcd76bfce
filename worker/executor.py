"""
잡 실행기 모듈

claim된 잡 하나를 핸들러로 실행하고 결과를 큐에 반영합니다.
"""

import asyncio
import logging
import time

from common.logging import job_log_context
from database import (
    ConnectionPoolExhaustedError,
    TransactionError,
    QueryExecutionError,
)
from jobqueue import Job, JobQueue, JobState
from worker.base import BaseHandler
from worker.events import JobCompleted, JobFailed, WorkerEvents
from worker.exception import InvalidJobPayloadError

logger = logging.getLogger(__name__)


class Executor:
    """잡 실행기"""

    def __init__(self, queue: JobQueue, handler: BaseHandler, events: WorkerEvents):
        self._queue = queue
        self._handler = handler
        self._events = events

    async def execute(self, job: Job) -> bool:
        """
        잡 실행 (이미 active로 claim된 잡)

        실행 중 타임아웃은 적용하지 않습니다. 워커 종료로 취소되면 실패로 기록한 뒤
        CancelledError를 다시 올려, 잡이 active로 남지 않게 합니다.

        Returns:
            bool: 실행 성공 여부
        """
        with job_log_context(self._queue.name, job.id, job.name):
            return await self._run(job)

    async def _run(self, job: Job) -> bool:
        logger.info(
            f"Starting job: queue={self._queue.name}, id={job.id}, name={job.name}, "
            f"attempt={job.attempts_made}/{job.attempts}"
        )
        started = time.monotonic()

        # 1. payload 파싱
        try:
            params = self._handler.parse_params(job.payload)
        except InvalidJobPayloadError as e:
            logger.error(f"Invalid job payload: id={job.id}, error={e}")
            await self._fail(job, str(e))
            return False

        # 2. 핸들러 실행
        try:
            outcome = await self._handler.execute(params)

        except asyncio.CancelledError:
            logger.warning(f"Job cancelled: id={job.id}")
            try:
                await self._fail(job, "Job cancelled")
            except Exception as e:
                # 기록 실패 시 stalled 회수에 맡김
                logger.error(f"Failed to record cancelled job: id={job.id}, error={e}")
            raise

        except ConnectionPoolExhaustedError as e:
            logger.warning(f"Connection pool exhausted during job execution: id={job.id}, error={e}")
            await self._fail(job, f"Connection pool exhausted: {e}")
            return False

        except (TransactionError, QueryExecutionError) as e:
            logger.error(f"Database error during job execution: id={job.id}, error={e}")
            await self._fail(job, f"Database error: {e}")
            return False

        except Exception as e:
            logger.error(f"Job execution failed: id={job.id}, error={e}")
            await self._fail(job, str(e) or type(e).__name__)
            return False

        # 3. 성공 (RunOutcome -> JSON)
        result = outcome.model_dump() if outcome is not None else None
        await self._queue.complete(job, result)
        await self._events.emit(JobCompleted(
            queue_name=self._queue.name,
            job_id=job.id,
            job_name=job.name,
            result=result,
            duration_ms=int((time.monotonic() - started) * 1000),
        ))
        return True

    async def _fail(self, job: Job, error: str) -> None:
        updated = await self._queue.fail(job, error)
        await self._events.emit(JobFailed(
            queue_name=self._queue.name,
            job_id=job.id,
            job_name=job.name,
            error=error,
            attempts_made=updated.attempts_made,
            attempts=updated.attempts,
            will_retry=updated.state != JobState.FAILED,
        ))
