"""
WorkerPool 테스트

테스트 항목:
1. @handler 데코레이터 등록 / get_handler() (성공/실패)
2. Executor 성공 / 실패(retry) / 최종 실패 / 잘못된 payload
3. WorkerEvents 옵저버 (동기/비동기, 리스너 에러 격리)
4. WorkerPool 동시 실행 수 제한 (concurrency 1 / N)
5. RateLimiter 슬라이딩 윈도
6. WorkerPool graceful shutdown
7. build_worker_pools 설정
8. 취소/종료 타임아웃 시 실패 기록, 시작 시 멈춘 잡 회수

실행: python -m pytest test/worker_test.py -v
"""

import asyncio
import logging
import sys
import time
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from fakes import FakeBot, FakeCalendar, FakeClock, FakeEmail, FakeWebhookSender
from jobqueue import BackoffPolicy, JobOptions, JobQueue, JobState, QueueName
from worker.base import BaseHandler, get_handler, get_registered_handlers, handler
from worker.deps import Dependencies, build_dependencies
from worker.events import JobCompleted, JobFailed, WorkerEvents, default_events
from worker.exception import HandlerNotFoundError, InvalidJobPayloadError
from worker.executor import Executor
from worker.main import PoolConfig, WorkerConfig, WorkerPool, build_worker_pools, _load_handlers
from worker.model import HandlerParams, RunOutcome
from worker.ratelimit import RateLimiter

logging.basicConfig(
    level=logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


# ============================================================
# 테스트용 핸들러
# ============================================================

class EchoParams(HandlerParams):
    value: int


@handler("test-echo")
class EchoHandler(BaseHandler):
    """value를 processed로 돌려주고, 음수면 실패"""
    params_model = EchoParams

    async def execute(self, params: EchoParams) -> RunOutcome:
        if params.value < 0:
            raise ValueError(f"negative value: {params.value}")
        return RunOutcome(processed=params.value)


class SlowHandler(BaseHandler):
    """동시 실행 수와 시작 시각 기록"""

    def __init__(self, deps, delay: float = 0.2):
        super().__init__(deps)
        self.delay = delay
        self.active = 0
        self.max_active = 0
        self.started: list[float] = []

    async def execute(self, params) -> RunOutcome:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        self.started.append(time.monotonic())
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.active -= 1
        return RunOutcome(processed=1)


class HangingHandler(BaseHandler):
    """끝나지 않는 핸들러 (취소로만 종료)"""

    def __init__(self, deps):
        super().__init__(deps)
        self.started = asyncio.Event()

    async def execute(self, params) -> RunOutcome:
        self.started.set()
        await asyncio.Event().wait()
        return RunOutcome()


def make_deps() -> Dependencies:
    return Dependencies(FakeCalendar(), FakeBot(), FakeEmail(), FakeWebhookSender())


async def wait_until(predicate, timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if await predicate():
            return
        await asyncio.sleep(0.02)
    raise AssertionError("condition not met within timeout")


# ============================================================
# 레지스트리
# ============================================================

class TestHandlerRegistry:
    """@handler 등록"""

    def test_decorator_registers_by_queue_name(self):
        assert get_registered_handlers()["test-echo"] is EchoHandler
        assert EchoHandler.queue_name == "test-echo"

    def test_get_handler_injects_deps(self):
        deps = make_deps()
        instance = get_handler("test-echo", deps)
        assert isinstance(instance, EchoHandler)
        assert instance.deps is deps

    def test_get_handler_not_found(self):
        with pytest.raises(HandlerNotFoundError):
            get_handler("no-such-queue", make_deps())

    def test_all_queues_have_handlers(self):
        _load_handlers()
        registered = get_registered_handlers()
        for name in QueueName.ALL:
            assert name in registered, f"missing handler for {name}"

    def test_parse_params_invalid_payload(self):
        with pytest.raises(InvalidJobPayloadError):
            EchoHandler(make_deps()).parse_params({"value": "not-a-number"})


class TestRunOutcome:
    """RunOutcome 집계"""

    def test_merge_and_summary(self):
        total = RunOutcome(processed=2, created=1)
        total.merge(RunOutcome(processed=3, errors=1))
        assert total.processed == 5
        assert total.errors == 1
        assert total.summary() == "processed=5, created=1, errors=1"
        assert RunOutcome().summary() == "no-op"


# ============================================================
# Executor
# ============================================================

class TestExecutor:
    """잡 하나 실행 후 큐 반영"""

    @pytest.mark.asyncio
    async def test_success_completes_job(self, database):
        queue = JobQueue("test-echo")
        events = WorkerEvents()
        captured = []
        events.subscribe(captured.append)
        executor = Executor(queue, EchoHandler(make_deps()), events)

        await queue.add("echo", {"value": 3})
        job = await queue.claim_next()
        assert await executor.execute(job) is True

        done = await queue.get_job(job.id)
        assert done.state == JobState.COMPLETED
        assert done.result["processed"] == 3
        assert isinstance(captured[0], JobCompleted)
        assert captured[0].result["processed"] == 3

    @pytest.mark.asyncio
    async def test_failure_retries_then_fails(self, database):
        options = JobOptions(attempts=2, backoff=BackoffPolicy(type="fixed", delay=0))
        queue = JobQueue("test-echo", options)
        events = WorkerEvents()
        captured = []
        events.subscribe(captured.append)
        executor = Executor(queue, EchoHandler(make_deps()), events)

        await queue.add("echo", {"value": -1})

        assert await executor.execute(await queue.claim_next()) is False
        first = captured[-1]
        assert isinstance(first, JobFailed)
        assert first.will_retry is True
        assert "negative value" in first.error

        assert await executor.execute(await queue.claim_next()) is False
        second = captured[-1]
        assert second.will_retry is False
        assert second.attempts_made == 2

        failed = await queue.get_job(second.job_id)
        assert failed.state == JobState.FAILED

    @pytest.mark.asyncio
    async def test_invalid_payload_fails_job(self, database):
        queue = JobQueue("test-echo", JobOptions(attempts=1))
        executor = Executor(queue, EchoHandler(make_deps()), default_events())

        await queue.add("echo", {"wrong": True})
        job = await queue.claim_next()
        assert await executor.execute(job) is False

        failed = await queue.get_job(job.id)
        assert failed.state == JobState.FAILED
        assert "Invalid payload" in failed.error

    @pytest.mark.asyncio
    async def test_cancelled_job_recorded_then_reraised(self, database):
        queue = JobQueue("hang", JobOptions(attempts=2, backoff=BackoffPolicy(type="fixed", delay=0)))
        events = WorkerEvents()
        captured = []
        events.subscribe(captured.append)
        hanging = HangingHandler(make_deps())
        executor = Executor(queue, hanging, events)

        await queue.add("sync", options={"job_id": "sync:conn-1:single"})
        job = await queue.claim_next()
        task = asyncio.create_task(executor.execute(job))
        await asyncio.wait_for(hanging.started.wait(), timeout=5)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        # 남은 시도가 있으므로 재시도 대기로 돌아감
        recorded = await queue.get_job(job.id)
        assert recorded.state == JobState.WAITING
        assert recorded.error == "Job cancelled"
        assert isinstance(captured[-1], JobFailed)
        assert captured[-1].will_retry is True


class TestWorkerEvents:
    """옵저버 호출"""

    @pytest.mark.asyncio
    async def test_sync_and_async_listeners(self):
        events = WorkerEvents()
        seen = []

        async def async_listener(event):
            seen.append(("async", event.job_id))

        def broken_listener(event):
            raise RuntimeError("listener bug")

        events.subscribe(broken_listener)
        events.subscribe(lambda e: seen.append(("sync", e.job_id)))
        events.subscribe(async_listener)

        await events.emit(JobCompleted(queue_name="q", job_id=7, job_name="n", result=None, duration_ms=1))
        assert seen == [("sync", 7), ("async", 7)]

        events.unsubscribe(async_listener)
        await events.emit(JobCompleted(queue_name="q", job_id=8, job_name="n", result=None, duration_ms=1))
        assert seen[-1] == ("sync", 8)


# ============================================================
# WorkerPool
# ============================================================

class TestWorkerPool:
    """폴링 루프, 동시 실행 수, 종료"""

    async def _run_until_done(self, pool: WorkerPool, queue: JobQueue, expected: int) -> None:
        task = asyncio.create_task(pool.start())

        async def all_done():
            return (await queue.get_counts()).completed == expected

        try:
            await wait_until(all_done)
        finally:
            await pool.stop()
            await task

    @pytest.mark.asyncio
    async def test_concurrency_one_runs_serially(self, database):
        queue = JobQueue("slow")
        slow = SlowHandler(make_deps(), delay=0.05)
        pool = WorkerPool(queue, slow, PoolConfig(concurrency=1, poll_interval_seconds=0.05))

        for i in range(3):
            await queue.add(f"job-{i}")

        await self._run_until_done(pool, queue, 3)
        assert slow.max_active == 1

    @pytest.mark.asyncio
    async def test_concurrency_limit(self, database):
        queue = JobQueue("slow")
        slow = SlowHandler(make_deps(), delay=0.2)
        pool = WorkerPool(queue, slow, PoolConfig(concurrency=3, poll_interval_seconds=0.05))

        for i in range(6):
            await queue.add(f"job-{i}")

        await self._run_until_done(pool, queue, 6)
        assert 1 < slow.max_active <= 3

    @pytest.mark.asyncio
    async def test_rate_limiter_spaces_job_starts(self, database):
        queue = JobQueue("slow")
        slow = SlowHandler(make_deps(), delay=0.0)
        pool = WorkerPool(
            queue, slow, PoolConfig(concurrency=5, poll_interval_seconds=0.05),
            limiter=RateLimiter(max_jobs=2, duration_ms=300),
        )

        for i in range(4):
            await queue.add(f"job-{i}")

        await self._run_until_done(pool, queue, 4)
        starts = sorted(slow.started)
        # 3번째 시작은 첫 시작으로부터 윈도(300ms) 이후
        assert starts[2] - starts[0] >= 0.25

    @pytest.mark.asyncio
    async def test_stop_waits_for_running_jobs(self, database):
        queue = JobQueue("slow")
        slow = SlowHandler(make_deps(), delay=0.3)
        pool = WorkerPool(queue, slow, PoolConfig(concurrency=1, poll_interval_seconds=0.05))
        await queue.add("long")

        task = asyncio.create_task(pool.start())

        async def started():
            return slow.active == 1

        await wait_until(started)
        await pool.stop()
        await task

        assert pool.is_running is False
        assert (await queue.get_counts()).completed == 1

    @pytest.mark.asyncio
    async def test_shutdown_timeout_does_not_leave_job_active(self, database):
        queue = JobQueue("hang", JobOptions(attempts=1))
        hanging = HangingHandler(make_deps())
        pool = WorkerPool(queue, hanging, PoolConfig(poll_interval_seconds=0.05, shutdown_timeout_seconds=0.2))
        job = await queue.add("sync", options={"job_id": "sync:conn-1:single"})

        task = asyncio.create_task(pool.start())
        await asyncio.wait_for(hanging.started.wait(), timeout=5)
        await pool.stop()
        await task

        stopped = await queue.get_job(job.id)
        assert stopped.state == JobState.FAILED
        assert stopped.attempts_made == 1
        assert stopped.error == "Job cancelled"

        # 같은 키로 다시 요청하면 새 잡 생성
        fresh = await queue.add("sync", options={"job_id": "sync:conn-1:single"})
        assert fresh.id != job.id

    @pytest.mark.asyncio
    async def test_stalled_jobs_recovered_on_start(self, database):
        clock = FakeClock()
        queue = JobQueue("slow", JobOptions(attempts=2, backoff=BackoffPolicy(type="fixed", delay=0)), clock=clock)
        job = await queue.add("sync", options={"job_id": "sync:conn-1:single"})

        # 이전 워커가 claim한 뒤 사라진 상황
        await queue.claim_next()
        clock.advance(minutes=11)

        slow = SlowHandler(make_deps(), delay=0.0)
        pool = WorkerPool(queue, slow, PoolConfig(poll_interval_seconds=0.05, stalled_after_seconds=600))
        await self._run_until_done(pool, queue, 1)

        done = await queue.get_job(job.id)
        assert done.state == JobState.COMPLETED
        assert done.attempts_made == 2

    @pytest.mark.asyncio
    async def test_limiter_acquired_before_claim(self, database):
        queue = JobQueue("slow")
        slow = SlowHandler(make_deps(), delay=0.0)
        limiter = RateLimiter(max_jobs=1, duration_ms=60_000)
        pool = WorkerPool(queue, slow, PoolConfig(concurrency=2, poll_interval_seconds=0.05), limiter=limiter)

        task = asyncio.create_task(pool.start())
        try:
            # 빈 큐 폴링은 슬롯을 쓰지 않음
            await asyncio.sleep(0.2)
            assert limiter.in_window() == 0

            await queue.add("first")
            await queue.add("second")

            async def first_done():
                return (await queue.get_counts()).completed == 1

            await wait_until(first_done)
            await asyncio.sleep(0.2)

            # 슬롯을 기다리는 동안 두 번째 잡은 claim되지 않음
            counts = await queue.get_counts()
            assert counts.active == 0
            assert counts.waiting == 1
        finally:
            task.cancel()
            await task


class TestRateLimiter:
    """슬라이딩 윈도 처리율 제한"""

    def test_invalid_config(self):
        with pytest.raises(ValueError):
            RateLimiter(0, 1000)
        with pytest.raises(ValueError):
            RateLimiter(1, 0)

    @pytest.mark.asyncio
    async def test_window_expiry_with_fake_clock(self):
        now = [100.0]
        limiter = RateLimiter(2, 1000, clock=lambda: now[0])

        await limiter.acquire()
        await limiter.acquire()
        assert limiter.in_window() == 2

        now[0] += 1.0
        assert limiter.in_window() == 0
        await limiter.acquire()
        assert limiter.in_window() == 1

    @pytest.mark.asyncio
    async def test_release_returns_last_slot(self):
        now = [100.0]
        limiter = RateLimiter(1, 1000, clock=lambda: now[0])

        await limiter.acquire()
        limiter.release()
        assert limiter.in_window() == 0

        # 반납한 슬롯은 바로 다시 사용 가능
        await asyncio.wait_for(limiter.acquire(), timeout=1)
        assert limiter.in_window() == 1
        limiter.release()
        limiter.release()
        assert limiter.in_window() == 0


class TestBuildWorkerPools:
    """worker.yaml -> WorkerPool 목록"""

    def test_pool_config_from_dict(self):
        config = PoolConfig.from_dict(
            {"concurrency": 5, "limiter": {"max": 10, "duration": 1000}},
            WorkerConfig(poll_interval_seconds=0.5),
        )
        assert config.concurrency == 5
        assert config.limiter.max == 10
        assert config.poll_interval_seconds == 0.5
        assert config.stalled_after_seconds == 600
        assert PoolConfig.from_dict(None, WorkerConfig()).concurrency == 1

    @pytest.mark.asyncio
    async def test_build_dependencies_injects_queues(self, database):
        email_queue = JobQueue(QueueName.EMAIL)
        deps = build_dependencies({}, {QueueName.EMAIL: email_queue})

        assert deps.queues == {QueueName.EMAIL: email_queue}
        await deps.producer.email("a@example.com", "Hi", "<p>hi</p>")
        assert (await email_queue.get_counts()).waiting == 1

    def test_stalled_after_override_per_queue(self):
        worker_config = WorkerConfig(stalled_after_seconds=300, stalled_check_interval_seconds=5)
        config = PoolConfig.from_dict({"stalled_after_seconds": 3600}, worker_config)
        assert config.stalled_after_seconds == 3600
        assert config.stalled_check_interval_seconds == 5
        assert PoolConfig.from_dict({}, worker_config).stalled_after_seconds == 300

    def test_skips_queues_without_handler_or_queue(self):
        config = {
            "worker": {"poll_interval_seconds": 0.1},
            "queues": {
                QueueName.EMAIL: {"concurrency": 2},
                QueueName.WEBHOOK: {"concurrency": 10},
                "unknown": {"concurrency": 1},
            },
        }
        queues = {QueueName.EMAIL: JobQueue(QueueName.EMAIL), "unknown": JobQueue("unknown")}

        pools = build_worker_pools(config, queues, make_deps())
        assert [p.queue_name for p in pools] == [QueueName.EMAIL]
