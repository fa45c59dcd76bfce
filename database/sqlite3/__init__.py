"""
SQLite3 구현 (aiosqlite 커넥션풀 + aiosql)

database.yaml에서 type: sqlite로 지정하면 DatabaseRegistry가 SQLiteDatabase를 생성합니다.
스키마는 sql/init.sql에서 생성하며, 큐/리포지토리 쿼리는 각 패키지의 .sql 파일에 있습니다.
"""

from database.sqlite3.connection import (
    SQLiteDatabase,
    AsyncConnectionPool,
    TransactionContext,
    ManagedTransaction,
    PoolConfig,
    SqliteOptions,
    PooledConnection,
)

__all__ = [
    'SQLiteDatabase',
    'AsyncConnectionPool',
    'TransactionContext',
    'ManagedTransaction',
    'PoolConfig',
    'SqliteOptions',
    'PooledConnection',
]
