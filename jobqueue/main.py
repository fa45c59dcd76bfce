"""
JobQueue: SQLite 기반 영속 잡 큐

queue_jobs 테이블 하나에 큐 이름별로 잡을 보관합니다.

상태 전이:
    add        -> waiting (delay > 0 이면 delayed)
    claim_next -> active (attempts_made + 1)
    complete   -> completed
    fail       -> attempts_made < attempts 이면 backoff 후 delayed/waiting, 아니면 failed

모든 상태 변경은 BEGIN IMMEDIATE 트랜잭션 안에서 조건부 UPDATE로 처리하므로
여러 프로세스가 같은 DB를 폴링해도 하나의 잡은 한 번만 claim 됩니다.
"""

import json
import logging
from datetime import datetime, timedelta
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable

import aiosql
from croniter import croniter

from common.timeutil import utcnow, to_db_time
from database import get_connection, transactional, transactional_readonly
from jobqueue.exception import (
    JobNotFoundError,
    JobStateError,
    InvalidPatternError,
)
from jobqueue.model.queue import (
    Job,
    JobOptions,
    JobState,
    QueueCounts,
    RecurringJob,
)

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def _load_queries():
    sql_path = Path(__file__).parent / "sql" / "queue.sql"
    return aiosql.from_path(str(sql_path), "aiosqlite")


def _dumps(value: Any) -> str:
    return json.dumps(value if value is not None else {}, default=str, ensure_ascii=False)


class JobQueue:
    """
    이름 있는 영속 잡 큐

    Args:
        name: 큐 이름
        default_options: 잡 추가 시 기본 옵션 (add의 options로 필드 단위 덮어쓰기)
        clock: 현재 시각 함수 (테스트에서 교체)
    """

    def __init__(
        self,
        name: str,
        default_options: JobOptions | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._name = name
        self._default_options = default_options or JobOptions()
        self._clock = clock or utcnow
        self._queries = _load_queries()

    @property
    def name(self) -> str:
        return self._name

    @property
    def default_options(self) -> JobOptions:
        return self._default_options

    def now(self) -> datetime:
        return self._clock()

    # ============================================================
    # Producer
    # ============================================================

    @transactional
    async def add(
        self,
        name: str,
        payload: dict | None = None,
        options: JobOptions | dict | None = None,
    ) -> Job:
        """
        잡 추가

        options.job_id가 같은 미완료 잡이 이미 있으면 새로 만들지 않고 기존 잡을 반환합니다.
        """
        opts = self._default_options.merge(options)
        ctx = get_connection()
        now = self.now()

        if opts.job_id:
            existing = await self._queries.get_open_job_by_key(
                ctx.connection, queue_name=self._name, job_key=opts.job_id
            )
            if existing:
                logger.debug(f"Job already queued: queue={self._name}, job_key={opts.job_id}")
                return Job.from_row(existing)

        job_id = await self._insert_job(name, payload, opts, now, job_key=opts.job_id)
        row = await self._queries.get_job(ctx.connection, queue_name=self._name, job_id=job_id)
        job = Job.from_row(row)
        logger.debug(f"Job added: queue={self._name}, id={job.id}, name={name}, state={job.state.value}")
        return job

    async def _insert_job(
        self,
        name: str,
        payload: dict | None,
        opts: JobOptions,
        now: datetime,
        job_key: str | None = None,
        repeat_key: str | None = None,
    ) -> int:
        ctx = get_connection()
        state = JobState.DELAYED if opts.delay > 0 else JobState.WAITING
        run_at = now + timedelta(milliseconds=opts.delay)
        return await self._queries.insert_job(
            ctx.connection,
            queue_name=self._name,
            name=name,
            payload=_dumps(payload),
            options=opts.model_dump_json(),
            job_key=job_key,
            repeat_key=repeat_key,
            state=state.value,
            priority=opts.priority,
            attempts=opts.attempts,
            run_at=to_db_time(run_at),
            now=to_db_time(now),
        )

    # ============================================================
    # Recurring
    # ============================================================

    def _next_run(self, pattern: str, base: datetime) -> datetime:
        try:
            return croniter(pattern, base).get_next(datetime)
        except Exception as e:
            raise InvalidPatternError(pattern, str(e))

    @transactional
    async def add_recurring(
        self,
        name: str,
        payload: dict | None,
        pattern: str,
        job_id: str | None = None,
    ) -> RecurringJob:
        """
        반복 등록 추가

        키(name, job_id, pattern)가 같으면 기존 등록을 유지하고 payload만 갱신합니다.
        """
        now = self.now()
        next_run_at = self._next_run(pattern, now)
        key = RecurringJob.make_key(name, job_id, pattern)
        ctx = get_connection()

        await self._queries.upsert_recurring(
            ctx.connection,
            queue_name=self._name,
            key=key,
            name=name,
            pattern=pattern,
            job_id=job_id,
            payload=_dumps(payload),
            next_run_at=to_db_time(next_run_at),
            now=to_db_time(now),
        )
        row = await self._queries.get_recurring_by_key(ctx.connection, queue_name=self._name, key=key)
        return RecurringJob.from_row(row)

    @transactional_readonly
    async def get_recurring(self) -> list[RecurringJob]:
        """반복 등록 목록"""
        ctx = get_connection()
        rows = await self._queries.get_recurring(ctx.connection, queue_name=self._name)
        return [RecurringJob.from_row(row) for row in rows]

    @transactional
    async def remove_recurring_by_key(self, key: str) -> bool:
        """반복 등록 삭제 (키 기준)"""
        ctx = get_connection()
        affected = await self._queries.remove_recurring(ctx.connection, queue_name=self._name, key=key)
        return affected > 0

    @transactional_readonly
    async def get_due_recurring(self) -> list[RecurringJob]:
        """실행 시점이 지난 반복 등록"""
        ctx = get_connection()
        rows = await self._queries.get_due_recurring(
            ctx.connection, queue_name=self._name, now=to_db_time(self.now())
        )
        return [RecurringJob.from_row(row) for row in rows]

    @transactional
    async def fire_recurring(self, recurring: RecurringJob) -> Job | None:
        """
        반복 등록 1회 발화: 잡 생성 + next_run_at 전진을 한 트랜잭션으로 처리

        놓친 회차는 몰아서 만들지 않고 현재 시각 이후의 다음 회차로 건너뜁니다.

        Returns:
            생성된 잡 (다른 디스패처가 먼저 발화했거나 같은 회차 잡이 있으면 None)
        """
        ctx = get_connection()
        now = self.now()
        slot = recurring.next_run_at
        next_run_at = self._next_run(recurring.pattern, max(now, slot))

        advanced = await self._queries.advance_recurring(
            ctx.connection,
            queue_name=self._name,
            key=recurring.key,
            next_run_at=to_db_time(next_run_at),
            now=to_db_time(now),
            expected_run_at=to_db_time(slot),
        )
        if advanced == 0:
            logger.debug(f"Recurring already fired: queue={self._name}, key={recurring.key}")
            return None

        job_key = f"repeat:{recurring.key}:{int(slot.timestamp() * 1000)}"
        existing = await self._queries.get_open_job_by_key(
            ctx.connection, queue_name=self._name, job_key=job_key
        )
        if existing:
            return None

        job_id = await self._insert_job(
            recurring.name,
            recurring.payload,
            self._default_options,
            now,
            job_key=job_key,
            repeat_key=recurring.key,
        )
        row = await self._queries.get_job(ctx.connection, queue_name=self._name, job_id=job_id)
        return Job.from_row(row)

    # ============================================================
    # Consumer
    # ============================================================

    @transactional
    async def claim_next(self) -> Job | None:
        """실행 가능한 잡 하나를 active로 전환하여 반환"""
        ctx = get_connection()
        now = to_db_time(self.now())

        row = await self._queries.get_next_ready(ctx.connection, queue_name=self._name, now=now)
        if row is None:
            return None

        # aiosql의 ! 연산자는 affected rows (int)를 직접 반환
        affected = await self._queries.claim_job(ctx.connection, job_id=row["id"], now=now)
        if affected == 0:
            return None

        claimed = await self._queries.get_job(ctx.connection, queue_name=self._name, job_id=row["id"])
        return Job.from_row(claimed)

    @transactional
    async def complete(self, job: Job, result: Any = None) -> Job:
        """active -> completed, 완료 이력 정리"""
        ctx = get_connection()
        now = to_db_time(self.now())

        affected = await self._queries.complete_job(
            ctx.connection,
            job_id=job.id,
            result=json.dumps(result, default=str) if result is not None else None,
            now=now,
        )
        if affected == 0:
            raise JobStateError(job.id, await self._current_state(job.id), "complete")

        if job.options.remove_on_complete is not None:
            await self._trim(JobState.COMPLETED, job.options.remove_on_complete)

        row = await self._queries.get_job(ctx.connection, queue_name=self._name, job_id=job.id)
        return Job.from_row(row) if row else job.model_copy(update={"state": JobState.COMPLETED})

    @transactional
    async def fail(self, job: Job, error: str) -> Job:
        """
        시도 실패 처리

        attempts_made < attempts 이면 backoff 만큼 뒤로 재예약,
        아니면 failed로 전환하고 실패 이력을 정리합니다.
        """
        ctx = get_connection()
        now = self.now()
        row = await self._queries.get_job(ctx.connection, queue_name=self._name, job_id=job.id)
        if row is None:
            raise JobNotFoundError(self._name, job.id)

        current = Job.from_row(row)
        if current.state != JobState.ACTIVE:
            raise JobStateError(job.id, current.state.value, "fail")

        if current.attempts_made < current.attempts:
            delay_ms = current.options.backoff.delay_for(current.attempts_made)
            state = JobState.DELAYED if delay_ms > 0 else JobState.WAITING
            await self._queries.retry_job(
                ctx.connection,
                job_id=job.id,
                state=state.value,
                error=error,
                run_at=to_db_time(now + timedelta(milliseconds=delay_ms)),
                now=to_db_time(now),
            )
            logger.info(
                f"Job scheduled for retry: queue={self._name}, id={job.id}, "
                f"attempt={current.attempts_made}/{current.attempts}, delay={delay_ms}ms"
            )
        else:
            await self._queries.fail_job(ctx.connection, job_id=job.id, error=error, now=to_db_time(now))
            logger.warning(
                f"Job failed permanently: queue={self._name}, id={job.id}, "
                f"attempts={current.attempts_made}/{current.attempts}"
            )
            if current.options.remove_on_fail is not None:
                await self._trim(JobState.FAILED, current.options.remove_on_fail)

        updated = await self._queries.get_job(ctx.connection, queue_name=self._name, job_id=job.id)
        if updated is None:
            return current.model_copy(update={"state": JobState.FAILED, "error": error})
        return Job.from_row(updated)

    @transactional
    async def recover_stalled(self, stalled_after_seconds: float) -> int:
        """
        멈춘 active 잡 회수

        started_at 이후 stalled_after_seconds가 지나도 active인 잡은 실행하던 워커가
        사라진 것으로 보고 fail()로 넘깁니다. 남은 시도가 있으면 재예약, 없으면 failed.

        Returns:
            회수한 잡 수
        """
        ctx = get_connection()
        cutoff = to_db_time(self.now() - timedelta(seconds=stalled_after_seconds))
        rows = await self._queries.get_stalled_jobs(ctx.connection, queue_name=self._name, cutoff=cutoff)

        recovered = 0
        for row in rows:
            await self.fail(Job.from_row(row), f"Job stalled: no progress for {stalled_after_seconds}s")
            recovered += 1

        if recovered:
            logger.warning(f"Recovered stalled jobs: queue={self._name}, count={recovered}")
        return recovered

    async def _trim(self, state: JobState, keep: int) -> None:
        ctx = get_connection()
        removed = await self._queries.trim_jobs(
            ctx.connection, queue_name=self._name, state=state.value, keep=keep
        )
        if removed:
            logger.debug(f"Trimmed {removed} {state.value} job(s) from queue '{self._name}' (keep={keep})")

    async def _current_state(self, job_id: int) -> str:
        ctx = get_connection()
        row = await self._queries.get_job(ctx.connection, queue_name=self._name, job_id=job_id)
        return row["state"] if row else "missing"

    # ============================================================
    # Inspection / Ops
    # ============================================================

    @transactional_readonly
    async def get_job(self, job_id: int) -> Job | None:
        ctx = get_connection()
        row = await self._queries.get_job(ctx.connection, queue_name=self._name, job_id=job_id)
        return Job.from_row(row) if row else None

    @transactional_readonly
    async def get_counts(self) -> QueueCounts:
        """상태별 잡 수"""
        ctx = get_connection()
        rows = await self._queries.count_by_state(ctx.connection, queue_name=self._name)
        counts = {row["state"]: row["cnt"] for row in rows}
        return QueueCounts(queue_name=self._name, **{s.value: counts.get(s.value, 0) for s in JobState})

    @transactional_readonly
    async def get_jobs(
        self,
        state: JobState | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Job], int]:
        """잡 목록 (최신순) 및 전체 개수"""
        ctx = get_connection()
        conn = ctx.connection
        if state:
            rows = await self._queries.get_jobs_by_state(
                conn, queue_name=self._name, state=state.value, limit=limit, offset=offset
            )
            total = await self._queries.count_jobs_by_state(conn, queue_name=self._name, state=state.value)
        else:
            rows = await self._queries.get_jobs(conn, queue_name=self._name, limit=limit, offset=offset)
            total = await self._queries.count_jobs(conn, queue_name=self._name)
        return [Job.from_row(row) for row in rows], total or 0

    @transactional
    async def retry_failed(self, job_id: int) -> Job:
        """failed 잡을 waiting으로 되돌림 (시도 횟수 초기화)"""
        ctx = get_connection()
        row = await self._queries.get_job(ctx.connection, queue_name=self._name, job_id=job_id)
        if row is None:
            raise JobNotFoundError(self._name, job_id)
        if row["state"] != JobState.FAILED.value:
            raise JobStateError(job_id, row["state"], "retry")

        if row["job_key"]:
            duplicate = await self._queries.get_open_job_by_key(
                ctx.connection, queue_name=self._name, job_key=row["job_key"]
            )
            if duplicate:
                raise JobStateError(job_id, row["state"], "retry (open job with same key exists)")

        await self._queries.reset_failed_job(ctx.connection, job_id=job_id, now=to_db_time(self.now()))
        logger.info(f"Job reset for retry: queue={self._name}, id={job_id}")
        updated = await self._queries.get_job(ctx.connection, queue_name=self._name, job_id=job_id)
        return Job.from_row(updated)
