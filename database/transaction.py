"""
트랜잭션 데코레이터

    @transactional                 # default DB
    @transactional(db)             # 지정 DB
    @transactional(db1, db2)       # 다중 DB (모두 성공 시 커밋)
    @transactional_readonly        # 읽기 전용

이미 같은 DB의 트랜잭션이 열려 있으면 새로 열지 않고 참여합니다.
"""

import functools
import logging
from contextlib import AsyncExitStack
from typing import Any, Callable

from database.base import BaseDatabase
from database.context import find_connection, active_connections
from database.exception import NoActiveTransactionError
from database.registry import DatabaseRegistry

logger = logging.getLogger(__name__)


def get_db(name: str = 'default') -> BaseDatabase:
    """레지스트리에서 DB 인스턴스 반환"""
    return DatabaseRegistry.get(name)


def get_connection(name: str | None = None) -> Any:
    """
    현재 트랜잭션 컨텍스트 반환

    name을 생략하면 열려 있는 트랜잭션이 하나일 때 그것을, 아니면 'default'를 사용합니다.

    Raises:
        NoActiveTransactionError: 트랜잭션 밖에서 호출한 경우 (RuntimeError 하위)
    """
    if name is None:
        active = active_connections()
        if len(active) == 1:
            return next(iter(active.values()))
        name = 'default'

    ctx = find_connection(name)
    if ctx is None:
        raise NoActiveTransactionError(name)
    return ctx


def _wrap(func: Callable, databases: tuple, readonly: bool) -> Callable:
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        targets = list(databases) if databases else [get_db()]
        async with AsyncExitStack() as stack:
            for db in targets:
                if find_connection(db.name) is not None:
                    continue  # 바깥 트랜잭션에 참여
                await stack.enter_async_context(db.transaction(readonly=readonly))
            return await func(*args, **kwargs)
    return wrapper


def _decorator(args: tuple, readonly: bool):
    # @transactional (인자 없이 사용)
    if len(args) == 1 and callable(args[0]) and not isinstance(args[0], BaseDatabase):
        return _wrap(args[0], (), readonly)

    def decorator(func: Callable) -> Callable:
        return _wrap(func, args, readonly)
    return decorator


def transactional(*args):
    """쓰기 트랜잭션 데코레이터"""
    return _decorator(args, readonly=False)


def transactional_readonly(*args):
    """읽기 전용 트랜잭션 데코레이터"""
    return _decorator(args, readonly=True)
