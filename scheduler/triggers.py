"""
반복 트리거 정의 및 시작 시 등록

register_recurring_triggers()는 프로세스 시작 시 한 번 호출합니다.
여러 번 호출해도 트리거 이름당 등록은 하나만 남습니다.
"""

import logging

from jobqueue import QueueName
from scheduler.exception import SchedulerError
from scheduler.main import Scheduler
from scheduler.model.scheduler import TriggerDefinition

logger = logging.getLogger(__name__)


DEFAULT_TRIGGERS: tuple[TriggerDefinition, ...] = (
    # 5분마다 자동 녹화 대상 확인
    TriggerDefinition(
        queue_name=QueueName.AUTO_RECORD,
        name="auto-record-check",
        cadence="*/5 * * * *",
        payload={"type": "check"},
        job_id="auto-record-check",
    ),
    # 15분마다 오래된 캘린더 연결 동기화
    TriggerDefinition(
        queue_name=QueueName.CALENDAR_SYNC,
        name="periodic-sync",
        cadence="*/15 * * * *",
        payload={"sync_type": "all"},
        job_id="periodic-calendar-sync",
    ),
    # 매주 월요일 09:00 주간 다이제스트
    TriggerDefinition(
        queue_name=QueueName.WEEKLY_DIGEST,
        name="send-all",
        cadence="0 9 * * 1",
        payload={"send_all": True},
    ),
    TriggerDefinition(
        queue_name=QueueName.CLEANUP,
        name="orphaned-bot-cleanup",
        cadence="*/5 * * * *",
        payload={"task": "orphaned_bots"},
    ),
    # 매일 03:00 처리 완료 이벤트 기록 정리
    TriggerDefinition(
        queue_name=QueueName.CLEANUP,
        name="processed-event-cleanup",
        cadence="0 3 * * *",
        payload={"task": "processed_events"},
    ),
)


def resolve_triggers(
    cadences: dict[str, str] | None = None,
    triggers: tuple[TriggerDefinition, ...] = DEFAULT_TRIGGERS,
) -> list[TriggerDefinition]:
    """설정의 cadences로 주기를 재정의한 트리거 목록"""
    cadences = cadences or {}
    return [
        t.model_copy(update={"cadence": cadences[t.name]}) if t.name in cadences else t
        for t in triggers
    ]


async def register_recurring_triggers(
    scheduler: Scheduler,
    cadences: dict[str, str] | None = None,
    triggers: tuple[TriggerDefinition, ...] = DEFAULT_TRIGGERS,
) -> dict[str, bool]:
    """
    모든 반복 트리거 등록

    등록 실패는 로그만 남기고 다음 트리거를 계속 등록합니다 (자동 재시도 없음).

    Returns:
        트리거 이름 -> 등록 성공 여부
    """
    results: dict[str, bool] = {}

    for trigger in resolve_triggers(cadences, triggers):
        try:
            results[trigger.name] = await scheduler.schedule_recurring(
                trigger.queue_name,
                trigger.name,
                trigger.cadence,
                trigger.payload,
                trigger.job_id,
            )
        except SchedulerError as e:
            logger.error(f"Invalid trigger '{trigger.name}': {e}")
            results[trigger.name] = False

    registered = sum(1 for ok in results.values() if ok)
    logger.info(f"Recurring triggers registered: {registered}/{len(results)}")
    return results
