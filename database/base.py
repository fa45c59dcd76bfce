"""데이터베이스 구현체 공통 인터페이스"""

from abc import ABC, abstractmethod
from typing import Any


class BaseDatabase(ABC):
    """데이터베이스 기본 클래스 (이름으로 레지스트리에 등록됨)"""

    def __init__(self, name: str):
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    @classmethod
    @abstractmethod
    async def create(cls, name: str, config: dict[str, Any]) -> 'BaseDatabase':
        """인스턴스 생성 및 초기화"""

    @abstractmethod
    def transaction(self, readonly: bool = False) -> Any:
        """트랜잭션 컨텍스트 매니저 반환"""

    @property
    @abstractmethod
    def pool(self) -> Any:
        """커넥션풀 반환"""

    @abstractmethod
    async def close(self) -> None:
        """연결 종료"""
