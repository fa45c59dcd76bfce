"""
Scheduler: 반복 트리거 등록

schedule_recurring()은 프로세스가 시작될 때마다 호출해도 안전합니다.
같은 이름의 등록은 큐당 하나만 남깁니다.

등록 순서:
    1. 새 등록을 upsert (키가 같으면 payload만 갱신)
    2. 같은 이름의 다른 키(이전 주기 등)를 삭제

1과 2는 하나의 트랜잭션이 아닙니다. 2가 실패하면 다음 시작 때까지 중복 등록이 남을 수 있고,
이 경우 에러 로그만 남기고 예외를 올리지 않습니다.
"""

import logging
from datetime import datetime, timezone

from croniter import croniter

from jobqueue import JobQueue
from scheduler.exception import (
    CronParseError,
    CronIntervalTooShortError,
    RegistrationError,
)
from scheduler.model.scheduler import SchedulerConfig

logger = logging.getLogger(__name__)


class Scheduler:
    """
    반복 트리거 등록기

    Args:
        config: Scheduler 설정
        queues: 큐 이름 -> JobQueue (QueueRegistry.get_all()로 주입)
    """

    def __init__(self, config: SchedulerConfig, queues: dict[str, JobQueue]):
        self._config = config
        self._queues = queues

    async def schedule_recurring(
        self,
        queue_name: str,
        trigger_name: str,
        cadence: str,
        payload: dict | None = None,
        job_id: str | None = None,
    ) -> bool:
        """
        반복 트리거 등록 (멱등)

        Returns:
            True: 등록 성공 (이전 등록 정리 실패는 로그만 남김)
            False: 등록 실패

        Raises:
            CronParseError: 잘못된 크론 표현식
            CronIntervalTooShortError: 최소 간격 미만
        """
        self.validate_cadence(cadence)

        queue = self._queues.get(queue_name)
        if queue is None:
            logger.error(str(RegistrationError(queue_name, trigger_name, f"Queue not found: {queue_name}")))
            return False

        try:
            registered = await queue.add_recurring(trigger_name, payload or {}, cadence, job_id)
        except Exception as e:
            error = RegistrationError(queue_name, trigger_name, f"Failed to add trigger '{trigger_name}': {e}")
            logger.error(error.message, exc_info=True)
            return False

        try:
            removed = 0
            for existing in await queue.get_recurring():
                if existing.name == trigger_name and existing.key != registered.key:
                    if await queue.remove_recurring_by_key(existing.key):
                        removed += 1
            if removed:
                logger.info(f"Removed {removed} stale registration(s) for '{trigger_name}' on '{queue_name}'")
        except Exception as e:
            logger.error(
                f"Failed to remove stale registrations for '{trigger_name}' on '{queue_name}': {e}. "
                f"Duplicates may remain until the next start."
            )

        logger.info(
            f"Scheduled '{trigger_name}' on '{queue_name}' ({cadence}), "
            f"next run at {registered.next_run_at.isoformat()}"
        )
        return True

    def validate_cadence(self, cron_expression: str) -> None:
        """
        크론 표현식 및 간격 검증 (초단위 크론 차단)

        Raises:
            CronParseError: 파싱 실패
            CronIntervalTooShortError: 간격이 min_cron_interval_seconds 미만인 경우
        """
        try:
            now = datetime.now(timezone.utc)
            cron = croniter(cron_expression, now)

            # 다음 두 실행 시점의 간격 계산
            next1 = cron.get_next(datetime)
            next2 = cron.get_next(datetime)

            interval_seconds = (next2 - next1).total_seconds()

            if interval_seconds < self._config.min_cron_interval_seconds:
                raise CronIntervalTooShortError(
                    cron_expression,
                    interval_seconds,
                    self._config.min_cron_interval_seconds
                )

        except CronIntervalTooShortError:
            raise
        except Exception as e:
            raise CronParseError(cron_expression, str(e))
