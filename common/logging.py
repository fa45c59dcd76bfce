"""
JSON 구조화 로깅 설정

python-json-logger로 한 줄에 하나의 JSON 객체를 출력합니다.
워커가 잡을 실행하는 동안 남기는 로그에는 queue, job_id, job_name이 자동으로 붙어,
핸들러 내부 로그(캘린더 조회, 봇 생성 등)만 보고도 어느 잡인지 찾을 수 있습니다.
"""

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

from pythonjsonlogger import jsonlogger

_job_context: ContextVar[dict | None] = ContextVar('job_context', default=None)

NOISY_LOGGERS = ('asyncio', 'aiosqlite', 'httpx', 'httpcore', 'uvicorn.access')


@contextmanager
def job_log_context(queue: str, job_id: int, job_name: str) -> Iterator[None]:
    """with 블록 안의 로그 레코드에 잡 식별자 부착"""
    token = _job_context.set({'queue': queue, 'job_id': job_id, 'job_name': job_name})
    try:
        yield
    finally:
        _job_context.reset(token)


class JobContextFilter(logging.Filter):
    """실행 중인 잡 정보를 레코드 속성으로 복사 (extra로 이미 준 값은 유지)"""

    def filter(self, record: logging.LogRecord) -> bool:
        context = _job_context.get()
        if context:
            for key, value in context.items():
                if not hasattr(record, key):
                    setattr(record, key, value)
        return True


class CustomJsonFormatter(jsonlogger.JsonFormatter):

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        log_record['timestamp'] = self.formatTime(record)
        log_record['level'] = record.levelname
        log_record['logger'] = record.name
        if 'message' not in log_record and record.getMessage():
            log_record['message'] = record.getMessage()


class JobTextFormatter(logging.Formatter):
    """텍스트 포맷: 잡 실행 중이면 [queue#job_id] 접두어"""

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        queue = getattr(record, 'queue', None)
        if queue is not None:
            return f"[{queue}#{getattr(record, 'job_id', '?')}] {text}"
        return text


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: str | None = None
) -> None:
    """
    로깅 설정

    Args:
        level: 로그 레벨 (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: JSON 포맷 사용 여부 (False면 텍스트 포맷)
        log_file: 로그 파일 경로 (None이면 stdout만 사용)
    """
    if json_format:
        formatter = CustomJsonFormatter('%(timestamp)s %(level)s %(name)s %(message)s')
    else:
        formatter = JobTextFormatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))

    job_filter = JobContextFilter()
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(job_filter)

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        handlers=handlers,
        force=True
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def setup_logging_from_config(config: dict) -> None:
    """config의 logging 섹션으로 로깅 설정"""
    log_cfg = config.get('logging', {}) or {}
    setup_logging(
        level=log_cfg.get('level', 'INFO'),
        json_format=log_cfg.get('json_format', True),
        log_file=log_cfg.get('log_file'),
    )
