"""
meetjob 통합 진입점

Scheduler(반복 트리거 등록 + 발화), Worker, Admin API를 한 프로세스에서 실행합니다.
각 컴포넌트는 같은 DB/큐 레지스트리를 공유하고, SIGINT/SIGTERM 한 번으로 함께 종료됩니다.

사용법:
    python main.py                    # 전체 실행
    python main.py scheduler          # Scheduler만
    python main.py worker admin       # 복수 선택
"""

import asyncio
import logging
import signal
import sys
from typing import Awaitable, Callable

from common.config import load_config
from common.logging import setup_logging_from_config
from database.registry import DatabaseRegistry
from jobqueue import QueueRegistry

logger = logging.getLogger(__name__)


def _stop_when_set(stop_event: asyncio.Event, stop: Callable[[], Awaitable[None] | None]) -> asyncio.Task:
    """stop_event가 켜지면 stop() 호출"""
    async def waiter():
        await stop_event.wait()
        result = stop()
        if asyncio.iscoroutine(result):
            await result
    return asyncio.create_task(waiter())


async def run_scheduler(config: dict, stop_event: asyncio.Event):
    """반복 트리거를 등록하고 발화 루프 실행"""
    from scheduler import RecurringDispatcher, Scheduler, SchedulerConfig, register_recurring_triggers

    scheduler_config = SchedulerConfig(**config.get("scheduler", {}))
    queues = QueueRegistry.get_all()

    # 등록 실패는 로그만 남기고 나머지 트리거로 계속 진행
    results = await register_recurring_triggers(Scheduler(scheduler_config, queues), scheduler_config.cadences)
    failed = sorted(name for name, ok in results.items() if not ok)
    if failed:
        logger.error(f"Failed to register triggers: {', '.join(failed)}")

    dispatcher = RecurringDispatcher(scheduler_config, queues)
    _stop_when_set(stop_event, dispatcher.stop)
    await dispatcher.start()


async def run_worker(config: dict, stop_event: asyncio.Event):
    """큐별 WorkerPool 실행"""
    from worker.deps import build_dependencies
    from worker.main import WorkerManager, build_worker_pools

    queues = QueueRegistry.get_all()
    manager = WorkerManager(build_worker_pools(config, queues, build_dependencies(config, queues)))
    _stop_when_set(stop_event, manager.stop)
    await manager.start()


async def run_admin(config: dict, stop_event: asyncio.Event):
    """Admin API (uvicorn) 실행"""
    import uvicorn
    from admin.main import create_app

    admin_config = config.get("admin", {})
    server = uvicorn.Server(uvicorn.Config(
        create_app(config, manage_resources=False),
        host=admin_config.get("host", "0.0.0.0"),
        port=admin_config.get("port", 8080),
        log_config=None,
    ))

    def request_exit():
        server.should_exit = True

    _stop_when_set(stop_event, request_exit)
    await server.serve()


# 모듈 이름 -> (실행 함수, DB 이름을 읽을 설정 섹션)
COMPONENTS = {
    "scheduler": (run_scheduler, "scheduler"),
    "worker": (run_worker, "worker"),
    "admin": (run_admin, "admin"),
}


async def main(modules: list[str]):
    config = load_config()
    setup_logging_from_config(config)

    db_names = sorted({
        (config.get(section) or {}).get("database", "default")
        for name, (_, section) in COMPONENTS.items() if name in modules
    })
    await DatabaseRegistry.init_from_config(config, db_names)
    QueueRegistry.init_from_config(config)

    stop_event = asyncio.Event()

    def on_signal():
        logger.info("Received shutdown signal")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, on_signal)

    tasks = []
    for name in modules:
        runner, _ = COMPONENTS[name]
        tasks.append(asyncio.create_task(runner(config, stop_event), name=name))
        logger.info(f"Component started: {name}")

    try:
        await asyncio.gather(*tasks)
    except asyncio.CancelledError:
        logger.info("Tasks cancelled")
    finally:
        await QueueRegistry.close_all()
        await DatabaseRegistry.close_all()
        logger.info("All components stopped")


if __name__ == "__main__":
    args = sys.argv[1:]
    modules = [m for m in args if m in COMPONENTS] if args else list(COMPONENTS)
    if not modules:
        print(f"Usage: python main.py [{'] ['.join(COMPONENTS)}]")
        sys.exit(1)

    print(f"Starting meetjob: {', '.join(modules)}")
    try:
        asyncio.run(main(modules))
    except KeyboardInterrupt:
        print("\nShutdown requested by user")
