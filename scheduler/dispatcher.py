"""
RecurringDispatcher: 반복 등록 발화 루프

queue_recurring 테이블을 주기적으로 확인하여 next_run_at이 지난 등록마다
잡을 하나 생성하고 next_run_at을 다음 회차로 옮깁니다.

HA 구성 시 중복 생성 방지:
- next_run_at 조건부 UPDATE (먼저 전진시킨 디스패처만 잡 생성)
- 회차별 job_key (repeat:{key}:{slot})

실행 방법:
    python -m scheduler.dispatcher
    python main.py scheduler
"""

import asyncio
import logging
from datetime import datetime, timezone

from database import (
    ConnectionPoolExhaustedError,
    TransactionError,
    QueryExecutionError,
)
from jobqueue import JobQueue, RecurringJob
from scheduler.model.scheduler import SchedulerConfig

logger = logging.getLogger(__name__)


class RecurringDispatcher:
    """반복 등록 디스패처"""

    def __init__(self, config: SchedulerConfig, queues: dict[str, JobQueue]):
        """
        Args:
            config: Scheduler 설정
            queues: 감시할 큐 (이름 -> JobQueue)
        """
        self._config = config
        self._queues = queues
        self._running = False
        self._stop_event: asyncio.Event | None = None

    async def start(self) -> None:
        """디스패처 메인 루프 시작"""
        if self._running:
            logger.warning("RecurringDispatcher is already running")
            return

        self._running = True
        self._stop_event = asyncio.Event()

        logger.info(
            f"RecurringDispatcher started (queues={len(self._queues)}, "
            f"poll_interval={self._config.poll_interval_seconds}s, "
            f"max_sleep={self._config.max_sleep_seconds}s)"
        )

        try:
            await self._main_loop()
        except asyncio.CancelledError:
            logger.info("RecurringDispatcher cancelled")
        except Exception as e:
            logger.error(f"RecurringDispatcher error: {e}", exc_info=True)
            raise
        finally:
            self._running = False
            logger.info("RecurringDispatcher stopped")

    async def stop(self) -> None:
        """graceful shutdown"""
        if not self._running:
            return

        logger.info("Stopping RecurringDispatcher...")
        self._running = False
        if self._stop_event:
            self._stop_event.set()

    async def _main_loop(self) -> None:
        while self._running:
            try:
                await self.dispatch_due()
                sleep_seconds = await self._calculate_next_sleep()
                await self._sleep(sleep_seconds)

            except ConnectionPoolExhaustedError as e:
                logger.warning(f"Connection pool exhausted: {e}. Retrying in 10s...")
                await self._sleep(10)

            except (TransactionError, QueryExecutionError) as e:
                logger.error(f"Database error: {e}. Continuing...")
                await self._sleep(self._config.poll_interval_seconds)

            except Exception as e:
                logger.error(f"Unexpected error in main loop: {e}", exc_info=True)
                await self._sleep(self._config.poll_interval_seconds)

    async def _sleep(self, seconds: float) -> None:
        """인터럽트 가능한 sleep"""
        if self._stop_event:
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
            except asyncio.TimeoutError:
                pass

    async def dispatch_due(self) -> int:
        """
        모든 큐의 실행 시점이 지난 등록을 발화

        Returns:
            생성된 잡 수
        """
        fired = 0
        for queue in self._queues.values():
            for recurring in await queue.get_due_recurring():
                if await self._fire(queue, recurring):
                    fired += 1
        return fired

    async def _fire(self, queue: JobQueue, recurring: RecurringJob) -> bool:
        # 개별 등록 에러는 격리하여 다른 등록 처리에 영향을 주지 않음
        try:
            job = await queue.fire_recurring(recurring)
        except Exception as e:
            logger.error(f"Error firing recurring '{recurring.key}' on '{queue.name}': {e}", exc_info=True)
            return False

        if job is None:
            logger.debug(f"Recurring already fired elsewhere: queue={queue.name}, key={recurring.key}")
            return False

        logger.info(
            f"Created job from recurring: queue={queue.name}, name={recurring.name}, "
            f"job_id={job.id}, slot={recurring.next_run_at.isoformat()}"
        )
        return True

    async def _calculate_next_sleep(self) -> float:
        """
        다음 발화까지 대기 시간

        가장 이른 next_run_at까지 기다리되 poll_interval ~ max_sleep 범위로 제한
        """
        now = datetime.now(timezone.utc)
        min_wait = float(self._config.max_sleep_seconds)

        for queue in self._queues.values():
            try:
                for recurring in await queue.get_recurring():
                    wait_seconds = (recurring.next_run_at - now).total_seconds()
                    if wait_seconds > 0:
                        min_wait = min(min_wait, wait_seconds)
            except Exception as e:
                logger.debug(f"Error reading recurring for '{queue.name}': {e}")
                continue

        sleep_time = max(
            self._config.poll_interval_seconds,
            min(min_wait, self._config.max_sleep_seconds)
        )
        logger.debug(f"Next sleep: {sleep_time:.1f}s")
        return sleep_time

    @property
    def is_running(self) -> bool:
        return self._running


if __name__ == "__main__":
    import signal

    from common.config import load_config
    from common.logging import setup_logging_from_config
    from database.registry import DatabaseRegistry
    from jobqueue import QueueRegistry
    from scheduler.main import Scheduler
    from scheduler.triggers import register_recurring_triggers

    async def main():
        config = load_config()
        setup_logging_from_config(config)

        scheduler_config = SchedulerConfig(**config.get("scheduler", {}))

        # 데이터베이스/큐 초기화
        await DatabaseRegistry.init_from_config(config, [scheduler_config.database])
        QueueRegistry.init_from_config(config)
        queues = QueueRegistry.get_all()

        await register_recurring_triggers(Scheduler(scheduler_config, queues), scheduler_config.cadences)
        dispatcher = RecurringDispatcher(scheduler_config, queues)

        loop = asyncio.get_running_loop()

        def signal_handler():
            logger.info("Received shutdown signal")
            asyncio.create_task(dispatcher.stop())

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, signal_handler)

        try:
            logger.info("Starting RecurringDispatcher...")
            await dispatcher.start()
        finally:
            await QueueRegistry.close_all()
            await DatabaseRegistry.close_all()

    asyncio.run(main())
