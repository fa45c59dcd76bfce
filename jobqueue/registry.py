"""
QueueRegistry: 프로세스 단위 큐 레지스트리

worker.yaml의 queues 섹션으로 큐별 기본 옵션을 구성합니다.
DatabaseRegistry 초기화 후 init_from_config()를 호출하고, 종료 시 close_all()로 정리합니다.
"""

import logging
from datetime import datetime
from typing import Any, Callable

from jobqueue.exception import QueueNotFoundError
from jobqueue.main import JobQueue
from jobqueue.model.queue import JobOptions

logger = logging.getLogger(__name__)


class QueueRegistry:
    """큐 인스턴스 레지스트리"""

    _queues: dict[str, JobQueue] = {}

    @classmethod
    def init_from_config(
        cls,
        config: dict[str, Any],
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """config의 queues 섹션으로 큐 생성"""
        for name, queue_cfg in (config.get('queues') or {}).items():
            if name in cls._queues:
                continue
            options = JobOptions(**(queue_cfg or {}).get('default_job_options', {}))
            cls._queues[name] = JobQueue(name, options, clock=clock)
            logger.info(
                f"Queue registered: {name} (attempts={options.attempts}, "
                f"backoff={options.backoff.type.value}/{options.backoff.delay}ms)"
            )

    @classmethod
    def register(cls, queue: JobQueue) -> None:
        cls._queues[queue.name] = queue

    @classmethod
    def get(cls, name: str) -> JobQueue:
        if name not in cls._queues:
            raise QueueNotFoundError(name)
        return cls._queues[name]

    @classmethod
    def get_all(cls) -> dict[str, JobQueue]:
        return dict(cls._queues)

    @classmethod
    async def close_all(cls) -> None:
        """큐 정리 (잡 상태는 DB에 남음)"""
        if cls._queues:
            logger.info(f"Closing {len(cls._queues)} queue(s)")
        cls._queues.clear()

    @classmethod
    def clear(cls) -> None:
        cls._queues.clear()


def get_queue(name: str) -> JobQueue:
    """레지스트리에서 큐 반환"""
    return QueueRegistry.get(name)
