"""
Scheduler 관련 예외 클래스 정의
"""


class SchedulerError(Exception):
    """Scheduler 기본 예외"""
    pass


class CronParseError(SchedulerError):
    """크론 표현식 파싱 실패"""
    def __init__(self, cron_expression: str, message: str = None):
        self.cron_expression = cron_expression
        self.message = message or f"Invalid cron expression: {cron_expression}"
        super().__init__(self.message)


class CronIntervalTooShortError(SchedulerError):
    """크론 간격이 너무 짧음 (초단위 크론 차단)"""
    def __init__(self, cron_expression: str, interval_seconds: float, min_interval: int):
        self.cron_expression = cron_expression
        self.interval_seconds = interval_seconds
        self.min_interval = min_interval
        self.message = (
            f"Cron interval too short: {interval_seconds:.1f}s "
            f"(minimum: {min_interval}s) for expression '{cron_expression}'"
        )
        super().__init__(self.message)


class RegistrationError(SchedulerError):
    """반복 트리거 등록 실패"""
    def __init__(self, queue_name: str, trigger_name: str, message: str = None):
        self.queue_name = queue_name
        self.trigger_name = trigger_name
        self.message = message or f"Failed to register trigger '{trigger_name}' on queue '{queue_name}'"
        super().__init__(self.message)
