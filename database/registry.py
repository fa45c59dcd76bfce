"""
DatabaseRegistry: 프로세스 단위 DB 레지스트리

프로세스 시작 시 init_from_config()로 한 번 생성하고, 종료 시 close_all()로 정리합니다.
컴포넌트는 get_db(name)으로 인스턴스를 주입받습니다.
"""

import logging
from typing import Any

from database.base import BaseDatabase
from database.exception import DatabaseNotFoundError

logger = logging.getLogger(__name__)


def _create_database_class(db_type: str) -> type[BaseDatabase]:
    if db_type in ('sqlite', 'sqlite3'):
        from database.sqlite3.connection import SQLiteDatabase
        return SQLiteDatabase
    raise ValueError(f"Unsupported database type: {db_type}")


class DatabaseRegistry:
    """DB 인스턴스 레지스트리"""

    _databases: dict[str, BaseDatabase] = {}

    @classmethod
    async def init_from_config(cls, config: dict[str, Any], names: list[str] | None = None) -> None:
        """
        config의 databases 섹션으로 DB 초기화

        Args:
            config: 전체 설정 dict (databases 키 포함)
            names: 초기화할 DB 이름 목록 (None이면 전체)
        """
        db_configs = config.get('databases', {})
        targets = names if names is not None else list(db_configs.keys())

        for name in targets:
            if name in cls._databases:
                logger.debug(f"Database '{name}' already initialized, skipping")
                continue
            if name not in db_configs:
                raise DatabaseNotFoundError(name, f"Database '{name}' not found in config")

            db_config = db_configs[name]
            db_class = _create_database_class(db_config.get('type', 'sqlite'))
            cls._databases[name] = await db_class.create(name, db_config)
            logger.info(f"Database registered: {name} ({db_config.get('type', 'sqlite')})")

    @classmethod
    def register(cls, db: BaseDatabase) -> None:
        cls._databases[db.name] = db

    @classmethod
    def get(cls, name: str = 'default') -> BaseDatabase:
        if name not in cls._databases:
            raise DatabaseNotFoundError(name)
        return cls._databases[name]

    @classmethod
    def get_all(cls) -> dict[str, BaseDatabase]:
        return dict(cls._databases)

    @classmethod
    async def close_all(cls) -> None:
        """모든 DB 종료"""
        for name, db in list(cls._databases.items()):
            try:
                await db.close()
            except Exception as e:
                logger.error(f"Error closing database '{name}': {e}")
        cls._databases.clear()

    @classmethod
    def clear(cls) -> None:
        """레지스트리 초기화 (close 없이, 테스트용)"""
        cls._databases.clear()
