"""
WorkerPool: 큐별 잡 실행 워커풀 모듈

큐 하나당 소비 루프 하나를 두고, 세마포어(concurrency)로 동시 실행 수를,
RateLimiter(선택)로 시간당 시작 수를 제한합니다.

실행 방법:
    python -m worker.main
    python main.py worker
"""

import asyncio
import importlib
import logging
import pkgutil
from dataclasses import dataclass
from typing import Any

from database import ConnectionPoolExhaustedError, TransactionError, QueryExecutionError
from jobqueue import JobQueue
from worker.base import BaseHandler, get_handler, get_registered_handlers
from worker.deps import Dependencies
from worker.events import WorkerErrored, WorkerEvents, default_events
from worker.executor import Executor
from worker.ratelimit import RateLimiter

logger = logging.getLogger(__name__)


@dataclass
class WorkerConfig:
    """워커 공통 설정 (worker.yaml의 worker 섹션)"""
    database: str = "default"  # 큐/테넌트 데이터 DB (database.yaml에 정의된 이름)
    poll_interval_seconds: float = 1.0
    shutdown_timeout_seconds: int = 30
    stalled_after_seconds: float = 600  # started_at 이후 이 시간이 지나도 active면 회수
    stalled_check_interval_seconds: float = 30


@dataclass
class LimiterConfig:
    max: int
    duration: int  # ms


@dataclass
class PoolConfig:
    """큐별 워커풀 설정 (worker.yaml의 queues.<name>)"""
    concurrency: int = 1
    limiter: LimiterConfig | None = None
    poll_interval_seconds: float = 1.0
    shutdown_timeout_seconds: int = 30
    stalled_after_seconds: float = 600
    stalled_check_interval_seconds: float = 30

    @classmethod
    def from_dict(cls, queue_cfg: dict[str, Any] | None, worker_config: WorkerConfig) -> "PoolConfig":
        queue_cfg = queue_cfg or {}
        limiter = queue_cfg.get("limiter")
        return cls(
            concurrency=int(queue_cfg.get("concurrency", 1)),
            limiter=LimiterConfig(**limiter) if limiter else None,
            poll_interval_seconds=worker_config.poll_interval_seconds,
            shutdown_timeout_seconds=worker_config.shutdown_timeout_seconds,
            stalled_after_seconds=float(
                queue_cfg.get("stalled_after_seconds", worker_config.stalled_after_seconds)
            ),
            stalled_check_interval_seconds=worker_config.stalled_check_interval_seconds,
        )


class WorkerPool:
    """
    큐 하나의 잡 실행 워커풀

    실행 가능한 잡을 claim하여 워커 태스크에 할당합니다.
    """

    def __init__(
        self,
        queue: JobQueue,
        handler: BaseHandler,
        config: PoolConfig | None = None,
        events: WorkerEvents | None = None,
        limiter: RateLimiter | None = None,
    ):
        self._queue = queue
        self._config = config or PoolConfig()
        self._events = events or default_events()
        self._executor = Executor(queue, handler, self._events)
        if limiter is None and self._config.limiter:
            limiter = RateLimiter(self._config.limiter.max, self._config.limiter.duration)
        self._limiter = limiter
        self._running = False
        self._stop_event: asyncio.Event | None = None
        self._running_tasks: set[asyncio.Task] = set()
        self._semaphore: asyncio.Semaphore | None = None
        self._next_stalled_check = 0.0

    @property
    def queue_name(self) -> str:
        return self._queue.name

    async def start(self) -> None:
        """워커풀 메인 루프 시작"""
        if self._running:
            logger.warning(f"WorkerPool '{self.queue_name}' is already running")
            return

        self._running = True
        self._stop_event = asyncio.Event()
        self._semaphore = asyncio.Semaphore(self._config.concurrency)

        limiter = (
            f"{self._limiter.max_jobs}/{self._limiter.duration_ms}ms" if self._limiter else "none"
        )
        logger.info(
            f"WorkerPool started (queue={self.queue_name}, concurrency={self._config.concurrency}, "
            f"limiter={limiter}, poll_interval={self._config.poll_interval_seconds}s, "
            f"stalled_after={self._config.stalled_after_seconds}s)"
        )

        try:
            await self._main_loop()
        except asyncio.CancelledError:
            logger.info(f"WorkerPool '{self.queue_name}' cancelled")
        except Exception as e:
            logger.error(f"WorkerPool '{self.queue_name}' error: {e}", exc_info=True)
            raise
        finally:
            await self._wait_running_tasks()
            self._running = False
            logger.info(f"WorkerPool '{self.queue_name}' stopped")

    async def stop(self) -> None:
        """WorkerPool graceful shutdown"""
        if not self._running:
            return

        logger.info(f"Stopping WorkerPool '{self.queue_name}'...")
        self._running = False
        if self._stop_event:
            self._stop_event.set()

    async def _main_loop(self) -> None:
        """메인 폴링 루프"""
        while self._running:
            try:
                await self._recover_stalled()
                assigned = await self._poll_and_assign()
            except ConnectionPoolExhaustedError as e:
                logger.warning(f"Connection pool exhausted: {e}. Retrying in 10s...")
                await self._emit_error(e)
                await self._sleep(10)
                continue
            except (TransactionError, QueryExecutionError) as e:
                logger.error(f"Database error in poll_and_assign: {e}")
                await self._emit_error(e)
                assigned = 0
            except Exception as e:
                logger.error(f"Error in poll_and_assign: {e}", exc_info=True)
                await self._emit_error(e)
                assigned = 0

            # 할당한 잡이 없으면 다음 폴링까지 대기 (stop 시 즉시 종료)
            if not assigned:
                await self._sleep(self._config.poll_interval_seconds)

    async def _recover_stalled(self) -> None:
        """시작 시 및 stalled_check_interval_seconds마다 멈춘 active 잡 회수"""
        now = asyncio.get_running_loop().time()
        if now < self._next_stalled_check:
            return
        self._next_stalled_check = now + self._config.stalled_check_interval_seconds
        await self._queue.recover_stalled(self._config.stalled_after_seconds)

    async def _sleep(self, seconds: float) -> None:
        """인터럽트 가능한 sleep"""
        if self._stop_event:
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
            except asyncio.TimeoutError:
                pass

    async def _poll_and_assign(self) -> int:
        """
        빈 워커 수만큼 잡을 claim하여 할당

        Returns:
            할당한 잡 수
        """
        assigned = 0
        while self._running and not self._semaphore.locked():
            # 세마포어로 동시 실행 수 제한 (claim 전에 슬롯 확보)
            await self._semaphore.acquire()
            limited = False
            try:
                # 처리율 슬롯도 claim 전에 확보 (대기 중인 잡은 active로 만들지 않음)
                if self._limiter:
                    await self._limiter.acquire()
                    limited = True
                job = await self._queue.claim_next()
            except BaseException:
                if limited:
                    self._limiter.release()
                self._semaphore.release()
                raise

            if job is None:
                if limited:
                    self._limiter.release()
                self._semaphore.release()
                break

            task = asyncio.create_task(self._execute_job(job))
            self._running_tasks.add(task)
            task.add_done_callback(self._on_task_done)
            assigned += 1

        if assigned:
            logger.debug(f"Assigned {assigned} job(s) on '{self.queue_name}'")
        return assigned

    async def _execute_job(self, job) -> None:
        """잡 실행 (워커 태스크)"""
        try:
            await self._executor.execute(job)
        except Exception as e:
            logger.error(f"Unexpected error executing job {job.id}: {e}", exc_info=True)
            await self._emit_error(e)
        finally:
            self._semaphore.release()

    def _on_task_done(self, task: asyncio.Task) -> None:
        """태스크 완료 콜백"""
        self._running_tasks.discard(task)
        if not task.cancelled() and task.exception():
            logger.error(f"Task exception: {task.exception()}")

    async def _emit_error(self, error: Exception) -> None:
        await self._events.emit(WorkerErrored(queue_name=self.queue_name, error=str(error) or type(error).__name__))

    async def _wait_running_tasks(self) -> None:
        """실행 중인 태스크 완료 대기 (graceful shutdown)"""
        if not self._running_tasks:
            return

        logger.info(f"Waiting for {len(self._running_tasks)} running tasks on '{self.queue_name}'...")

        try:
            await asyncio.wait_for(
                asyncio.gather(*self._running_tasks, return_exceptions=True),
                timeout=self._config.shutdown_timeout_seconds
            )
            logger.info("All tasks completed")
        except asyncio.TimeoutError:
            logger.warning(
                f"Shutdown timeout ({self._config.shutdown_timeout_seconds}s), "
                f"{len(self._running_tasks)} tasks still running"
            )
            # 강제 취소 후 Executor가 실패를 기록할 때까지 대기
            tasks = list(self._running_tasks)
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    @property
    def is_running(self) -> bool:
        """실행 중 여부"""
        return self._running

    @property
    def running_task_count(self) -> int:
        """실행 중인 태스크 수"""
        return len(self._running_tasks)


class WorkerManager:
    """큐별 WorkerPool 묶음 (함께 시작/종료)"""

    def __init__(self, pools: list[WorkerPool]):
        self._pools = pools

    @property
    def pools(self) -> list[WorkerPool]:
        return list(self._pools)

    async def start(self) -> None:
        if not self._pools:
            logger.warning("No worker pools configured")
            return
        await asyncio.gather(*(pool.start() for pool in self._pools))

    async def stop(self) -> None:
        await asyncio.gather(*(pool.stop() for pool in self._pools))


def build_worker_pools(
    config: dict[str, Any],
    queues: dict[str, JobQueue],
    deps: Dependencies,
    events: WorkerEvents | None = None,
) -> list[WorkerPool]:
    """worker.yaml의 queues 섹션 중 핸들러가 있는 큐마다 WorkerPool 생성"""
    _load_handlers()
    worker_config = WorkerConfig(**(config.get("worker") or {}))
    events = events or default_events()
    registered = get_registered_handlers()

    pools = []
    for name, queue_cfg in (config.get("queues") or {}).items():
        if name not in registered:
            logger.warning(f"No handler registered for queue '{name}', skipping")
            continue
        if name not in queues:
            logger.warning(f"Queue '{name}' is not registered, skipping")
            continue
        pools.append(WorkerPool(
            queues[name],
            get_handler(name, deps),
            PoolConfig.from_dict(queue_cfg, worker_config),
            events,
        ))
    return pools


def _load_handlers() -> None:
    """핸들러 모듈 로드 (데코레이터 등록을 위해, 하위 폴더 재귀 탐색)"""
    from worker import job as job_pkg

    def load_recursive(package, prefix: str):
        for _, module_name, is_pkg in pkgutil.iter_modules(package.__path__):
            full_name = f"{prefix}.{module_name}"
            module = importlib.import_module(full_name)
            logger.debug(f"Loaded handler module: {full_name}")
            if is_pkg:
                load_recursive(module, full_name)

    load_recursive(job_pkg, "worker.job")


if __name__ == "__main__":
    import signal

    from common.config import load_config
    from common.logging import setup_logging_from_config
    from database.registry import DatabaseRegistry
    from jobqueue import QueueRegistry
    from worker.deps import build_dependencies

    async def main():
        config = load_config()
        setup_logging_from_config(config)

        # 데이터베이스/큐 초기화
        worker_config = WorkerConfig(**(config.get("worker") or {}))
        await DatabaseRegistry.init_from_config(config, [worker_config.database])
        QueueRegistry.init_from_config(config)

        queues = QueueRegistry.get_all()
        manager = WorkerManager(build_worker_pools(config, queues, build_dependencies(config, queues)))

        # 시그널 핸들러 등록
        loop = asyncio.get_running_loop()

        def signal_handler():
            logger.info("Received shutdown signal")
            asyncio.create_task(manager.stop())

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, signal_handler)

        try:
            logger.info("Starting WorkerPools...")
            await manager.start()
        finally:
            await QueueRegistry.close_all()
            await DatabaseRegistry.close_all()

    asyncio.run(main())
