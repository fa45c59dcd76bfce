"""
트랜잭션 컨텍스트 저장소

현재 태스크에서 열려 있는 트랜잭션을 DB 이름별로 ContextVar에 보관합니다.
set/clear 시 dict를 복사하므로 자식 태스크와 상태가 섞이지 않습니다.
"""

from contextvars import ContextVar
from typing import Any

_connections: ContextVar[dict[str, Any]] = ContextVar('db_connections', default={})


def set_connection(name: str, ctx: Any) -> None:
    current = dict(_connections.get())
    current[name] = ctx
    _connections.set(current)


def clear_connection(name: str) -> None:
    current = dict(_connections.get())
    current.pop(name, None)
    _connections.set(current)


def find_connection(name: str) -> Any | None:
    return _connections.get().get(name)


def active_connections() -> dict[str, Any]:
    return dict(_connections.get())
