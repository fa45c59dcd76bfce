"""
워커 생명주기 이벤트

WorkerPool이 잡 완료/실패/루프 에러를 타입 있는 이벤트로 발행하고,
등록된 옵저버(기본: 로깅)가 구독합니다.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Union

from common.timeutil import utcnow

logger = logging.getLogger(__name__)


@dataclass
class JobCompleted:
    queue_name: str
    job_id: int
    job_name: str
    result: dict[str, Any] | None
    duration_ms: int
    at: datetime = field(default_factory=utcnow)


@dataclass
class JobFailed:
    queue_name: str
    job_id: int
    job_name: str
    error: str
    attempts_made: int
    attempts: int
    will_retry: bool
    at: datetime = field(default_factory=utcnow)


@dataclass
class WorkerErrored:
    """잡과 무관한 워커 루프 에러"""
    queue_name: str
    error: str
    at: datetime = field(default_factory=utcnow)


WorkerEvent = Union[JobCompleted, JobFailed, WorkerErrored]
Listener = Callable[[WorkerEvent], Union[None, Awaitable[None]]]


class WorkerEvents:
    """옵저버 목록 (동기/비동기 콜백 모두 허용)"""

    def __init__(self):
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def emit(self, event: WorkerEvent) -> None:
        """리스너 예외는 로그만 남기고 다른 리스너 호출은 계속"""
        for listener in list(self._listeners):
            try:
                result = listener(event)
                if result is not None and hasattr(result, "__await__"):
                    await result
            except Exception as e:
                logger.error(f"Worker event listener error ({type(event).__name__}): {e}", exc_info=True)


class LoggingObserver:
    """잡 결과 요약 로그"""

    def __call__(self, event: WorkerEvent) -> None:
        if isinstance(event, JobCompleted):
            summary = ", ".join(f"{k}={v}" for k, v in (event.result or {}).items() if v) or "no-op"
            logger.info(
                f"Job completed: queue={event.queue_name}, id={event.job_id}, name={event.job_name}, "
                f"duration={event.duration_ms}ms, result=[{summary}]"
            )
        elif isinstance(event, JobFailed):
            log = logger.warning if event.will_retry else logger.error
            log(
                f"Job failed: queue={event.queue_name}, id={event.job_id}, name={event.job_name}, "
                f"attempt={event.attempts_made}/{event.attempts}, will_retry={event.will_retry}, "
                f"error={event.error}"
            )
        elif isinstance(event, WorkerErrored):
            logger.error(f"Worker error: queue={event.queue_name}, error={event.error}")


def default_events() -> WorkerEvents:
    """LoggingObserver가 등록된 WorkerEvents"""
    events = WorkerEvents()
    events.subscribe(LoggingObserver())
    return events
