from abc import ABC, abstractmethod

from pydantic import ValidationError

from worker.deps import Dependencies
from worker.exception import HandlerNotFoundError, InvalidJobPayloadError
from worker.model.handler import HandlerParams, RunOutcome

__all__ = ['handler', 'get_handler', 'get_registered_handlers', 'BaseHandler', 'HandlerNotFoundError']

# 핸들러 레지스트리 (모듈 레벨, 큐 이름 -> 핸들러 클래스)
_registry: dict[str, type["BaseHandler"]] = {}


def handler(queue_name: str):
    """핸들러 등록 데코레이터"""
    def decorator(cls):
        cls.queue_name = queue_name
        _registry[queue_name] = cls
        return cls
    return decorator


def get_handler(queue_name: str, deps: Dependencies) -> "BaseHandler":
    """핸들러 인스턴스 반환"""
    if queue_name not in _registry:
        raise HandlerNotFoundError(queue_name)
    return _registry[queue_name](deps)


def get_registered_handlers() -> dict[str, type["BaseHandler"]]:
    """등록된 핸들러 목록 반환 (테스트용)"""
    return _registry.copy()


class BaseHandler(ABC):
    """큐 핸들러 기본 클래스"""

    queue_name: str = ""
    params_model: type[HandlerParams] = HandlerParams

    def __init__(self, deps: Dependencies):
        self.deps = deps

    def parse_params(self, payload: dict | None) -> HandlerParams:
        """payload -> params_model"""
        try:
            return self.params_model(**(payload or {}))
        except ValidationError as e:
            raise InvalidJobPayloadError(self.queue_name, str(e))

    @abstractmethod
    async def execute(self, params: HandlerParams) -> RunOutcome:
        """
        잡 실행 로직

        Args:
            params: 핸들러 입력 파라미터 (params_model 인스턴스)

        Returns:
            실행 결과 (RunOutcome, queue_jobs.result에 JSON으로 저장)

        Raises:
            Exception: 잡 단위 실패 (큐 재시도 정책 적용)
        """
        pass
