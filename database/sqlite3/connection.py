"""
SQLite3 비동기 커넥션풀 모듈

잡 큐 상태와 테넌트 데이터(미팅, 캘린더 연결, 웹훅)를 담는 단일 SQLite 파일을
aiosqlite 연결 여러 개로 나눠 씁니다.

- 쓰기 트랜잭션은 BEGIN IMMEDIATE로 시작하여 claim/중복 검사 중 다른 쓰기와 겹치지 않습니다.
- 읽기 전용 트랜잭션은 PRAGMA query_only로 SQLite 자체에서 쓰기를 막습니다.
  (aiosql 쿼리는 ctx.connection을 직접 쓰므로 키워드 검사만으로는 부족)
- 오래 놀던 연결은 획득 시점에 다시 엽니다.
"""

import asyncio
import logging
import sqlite3
from dataclasses import dataclass, field, fields
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosql
import aiosqlite

from database.base import BaseDatabase
from database.context import set_connection, clear_connection
from database.exception import (
    ConnectionPoolExhaustedError,
    ReadOnlyTransactionError,
    TransactionError,
)

logger = logging.getLogger(__name__)

INIT_SQL_PATH = Path(__file__).parent / 'sql' / 'init.sql'

# init.sql 실행 순서 (users -> calendar_connections 외래키 때문에 순서 중요)
INIT_QUERIES = (
    'create_queue_tables',
    'create_store_tables',
    'create_indexes',
)

WRITE_KEYWORDS = ('INSERT', 'UPDATE', 'DELETE', 'REPLACE', 'CREATE', 'DROP', 'ALTER')


def _pick(cls, values: dict[str, Any] | None) -> dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in (values or {}).items() if k in names}


@dataclass
class PoolConfig:
    """커넥션풀 설정 (database.yaml의 pool)"""
    pool_size: int = 5
    pool_timeout: float = 30.0
    max_idle_time: float = 300.0

    @classmethod
    def from_dict(cls, values: dict[str, Any] | None) -> 'PoolConfig':
        return cls(**_pick(cls, values))


@dataclass
class SqliteOptions:
    """연결마다 적용하는 PRAGMA (database.yaml의 options)"""
    busy_timeout: int = 5000
    journal_mode: str = 'WAL'
    synchronous: str = 'NORMAL'
    cache_size: int = -2000
    foreign_keys: bool = True

    @classmethod
    def from_dict(cls, values: dict[str, Any] | None) -> 'SqliteOptions':
        return cls(**_pick(cls, values))

    def pragmas(self) -> list[str]:
        return [
            f"PRAGMA busy_timeout={int(self.busy_timeout)}",
            f"PRAGMA journal_mode={self.journal_mode}",
            f"PRAGMA synchronous={self.synchronous}",
            f"PRAGMA cache_size={int(self.cache_size)}",
            f"PRAGMA foreign_keys={'ON' if self.foreign_keys else 'OFF'}",
        ]


@dataclass
class PooledConnection:
    """풀에서 관리되는 연결"""
    connection: aiosqlite.Connection
    created_at: datetime = field(default_factory=datetime.now)
    last_used_at: datetime = field(default_factory=datetime.now)
    in_use: bool = False

    def touch(self) -> None:
        self.last_used_at = datetime.now()

    def idle_seconds(self) -> float:
        return (datetime.now() - self.last_used_at).total_seconds()


def _log_query(sql: str, parameters: Any = None) -> None:
    sql_oneline = ' '.join(sql.split())
    if parameters:
        logger.debug(f"[SQL] {sql_oneline} | params: {parameters}")
    else:
        logger.debug(f"[SQL] {sql_oneline}")


def _log_result(row_count: int) -> None:
    logger.debug(f"[SQL Result] {row_count} row(s)")


def _is_write_query(sql: str) -> bool:
    return sql.lstrip().upper().startswith(WRITE_KEYWORDS)


class TransactionContext:
    """
    열린 트랜잭션 하나

    get_connection()이 돌려주는 객체입니다. 직접 SQL은 execute/fetch_*로,
    aiosql 쿼리는 connection 속성을 넘겨 실행합니다.
    """

    def __init__(self, connection: aiosqlite.Connection, readonly: bool = False):
        self._connection = connection
        self._readonly = readonly
        self._in_transaction = False

    @property
    def connection(self) -> aiosqlite.Connection:
        return self._connection

    @property
    def readonly(self) -> bool:
        return self._readonly

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    async def start(self) -> None:
        """BEGIN (읽기 전용이면 query_only를 먼저 켬)"""
        if self._in_transaction:
            logger.warning("Transaction already started")
            return

        if self._readonly:
            await self._connection.execute("PRAGMA query_only=ON")
        try:
            await self._connection.execute("BEGIN DEFERRED" if self._readonly else "BEGIN IMMEDIATE")
        except sqlite3.Error:
            await self._restore()
            raise
        self._in_transaction = True
        logger.debug(f"Transaction started (readonly={self._readonly})")

    async def commit(self) -> None:
        if not self._in_transaction:
            logger.warning("No active transaction to commit")
            return
        await self._connection.commit()
        self._in_transaction = False
        await self._restore()
        logger.debug("Transaction committed")

    async def rollback(self) -> None:
        if not self._in_transaction:
            logger.warning("No active transaction to rollback")
            return
        await self._connection.rollback()
        self._in_transaction = False
        await self._restore()
        logger.debug("Transaction rolled back")

    async def _restore(self) -> None:
        # 풀로 돌아가는 연결은 항상 쓰기 가능 상태
        if self._readonly:
            await self._connection.execute("PRAGMA query_only=OFF")

    async def execute(self, sql: str, parameters: Any = None) -> aiosqlite.Cursor:
        if self._readonly and _is_write_query(sql):
            raise ReadOnlyTransactionError()

        _log_query(sql, parameters)
        try:
            return await self._connection.execute(sql, parameters or ())
        except sqlite3.OperationalError as e:
            if self._readonly and 'readonly' in str(e):
                raise ReadOnlyTransactionError(str(e)) from e
            raise

    async def executemany(self, sql: str, parameters: list) -> aiosqlite.Cursor:
        if self._readonly:
            raise ReadOnlyTransactionError()

        _log_query(sql, f"[{len(parameters)} rows]")
        return await self._connection.executemany(sql, parameters)

    async def fetch_one(self, sql: str, parameters: Any = None) -> aiosqlite.Row | None:
        cursor = await self.execute(sql, parameters)
        row = await cursor.fetchone()
        _log_result(1 if row else 0)
        return row

    async def fetch_all(self, sql: str, parameters: Any = None) -> list[aiosqlite.Row]:
        cursor = await self.execute(sql, parameters)
        rows = await cursor.fetchall()
        _log_result(len(rows))
        return rows

    async def fetch_val(self, sql: str, parameters: Any = None) -> Any:
        row = await self.fetch_one(sql, parameters)
        return row[0] if row else None


class AsyncConnectionPool:
    """
    고정 크기 aiosqlite 커넥션풀

    유휴 연결은 큐에 있고, acquire는 큐에서 꺼낼 때까지 pool_timeout만큼 기다립니다.
    """

    def __init__(
        self,
        db_path: str,
        pool_config: PoolConfig | None = None,
        sqlite_options: SqliteOptions | None = None
    ):
        self._db_path = Path(db_path)
        self._pool_config = pool_config or PoolConfig()
        self._sqlite_options = sqlite_options or SqliteOptions()

        self._connections: list[PooledConnection] = []
        self._idle: asyncio.Queue[PooledConnection] = asyncio.Queue()
        self._initialized = False
        self._closed = False

    async def initialize(self) -> None:
        if self._initialized:
            logger.warning("Connection pool already initialized")
            return

        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        for _ in range(self._pool_config.pool_size):
            pooled = PooledConnection(connection=await self._connect())
            self._connections.append(pooled)
            self._idle.put_nowait(pooled)

        self._initialized = True
        logger.info(
            f"Connection pool initialized: {self._db_path} "
            f"(size={self._pool_config.pool_size}, timeout={self._pool_config.pool_timeout}s)"
        )

    async def _connect(self) -> aiosqlite.Connection:
        conn = await aiosqlite.connect(
            self._db_path,
            timeout=self._sqlite_options.busy_timeout / 1000.0
        )
        conn.row_factory = aiosqlite.Row
        for pragma in self._sqlite_options.pragmas():
            await conn.execute(pragma)
        return conn

    async def _reconnect(self, pooled: PooledConnection) -> None:
        idle = pooled.idle_seconds()
        try:
            await pooled.connection.close()
        except sqlite3.Error as e:
            logger.warning(f"Error closing idle connection: {e}")
        pooled.connection = await self._connect()
        pooled.created_at = datetime.now()
        logger.debug(f"Reopened connection idle for {idle:.0f}s")

    async def acquire(self, timeout: float | None = None) -> PooledConnection:
        """
        유휴 연결 획득

        Raises:
            ConnectionPoolExhaustedError: timeout 안에 반환되는 연결이 없음
        """
        if not self._initialized:
            raise RuntimeError("Connection pool not initialized. Call initialize() first.")
        if self._closed:
            raise RuntimeError("Connection pool is closed.")

        timeout = timeout or self._pool_config.pool_timeout
        try:
            pooled = await asyncio.wait_for(self._idle.get(), timeout=timeout)
        except asyncio.TimeoutError:
            raise ConnectionPoolExhaustedError(f"Connection pool exhausted. Timeout after {timeout}s")

        if pooled.idle_seconds() > self._pool_config.max_idle_time:
            try:
                await self._reconnect(pooled)
            except (sqlite3.Error, OSError):
                self._idle.put_nowait(pooled)
                raise

        pooled.in_use = True
        pooled.touch()
        return pooled

    async def release(self, pooled: PooledConnection) -> None:
        if not pooled.in_use:
            logger.warning("Releasing a connection that is not in use")
            return
        pooled.in_use = False
        pooled.touch()
        self._idle.put_nowait(pooled)
        logger.debug(f"Connection released. Available: {self.available}/{self.size}")

    async def close(self) -> None:
        self._closed = True
        for pooled in self._connections:
            try:
                await pooled.connection.close()
            except sqlite3.Error as e:
                logger.error(f"Error closing connection: {e}")
        self._connections.clear()
        self._idle = asyncio.Queue()
        logger.info("Connection pool closed")

    @property
    def size(self) -> int:
        return len(self._connections)

    @property
    def available(self) -> int:
        return self._idle.qsize()


class ManagedTransaction:
    """async with db.transaction() as ctx: 연결 획득부터 커밋/롤백, 반환까지"""

    def __init__(self, db: 'SQLiteDatabase', readonly: bool = False):
        self._db = db
        self._readonly = readonly
        self._pooled_conn: PooledConnection | None = None
        self._ctx: TransactionContext | None = None

    async def __aenter__(self) -> TransactionContext:
        self._pooled_conn = await self._db.pool.acquire()
        self._ctx = TransactionContext(self._pooled_conn.connection, self._readonly)
        try:
            await self._ctx.start()
        except sqlite3.Error as e:
            await self._db.pool.release(self._pooled_conn)
            raise TransactionError(self._db.name, f"Failed to begin transaction: {e}") from e

        set_connection(self._db.name, self._ctx)
        return self._ctx

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        try:
            if exc_type:
                await self._ctx.rollback()
            else:
                try:
                    await self._ctx.commit()
                except sqlite3.Error as e:
                    await self._ctx.rollback()
                    raise TransactionError(self._db.name, f"Commit failed: {e}") from e
        finally:
            clear_connection(self._db.name)
            await self._db.pool.release(self._pooled_conn)


class SQLiteDatabase(BaseDatabase):
    """
    SQLite 데이터베이스

    사용 예시:
        db = await SQLiteDatabase.create('default', config)

        @transactional(db)
        async def claim(queue_name):
            ctx = get_connection('default')
            await queries.claim_next(ctx.connection, ...)

        async with db.transaction(readonly=True) as ctx:
            await ctx.fetch_all("SELECT ...")
    """

    def __init__(self, name: str, config: dict[str, Any]):
        super().__init__(name)
        self._config = config
        self._pool: AsyncConnectionPool | None = None

    @classmethod
    async def create(cls, name: str, config: dict[str, Any]) -> 'SQLiteDatabase':
        instance = cls(name, config)
        await instance._initialize()
        return instance

    async def _initialize(self) -> None:
        self._pool = AsyncConnectionPool(
            db_path=self._config.get('path', f'./data/{self.name}.db'),
            pool_config=PoolConfig.from_dict(self._config.get('pool')),
            sqlite_options=SqliteOptions.from_dict(self._config.get('options')),
        )
        await self._pool.initialize()
        await self._create_schema()
        logger.info(f"SQLiteDatabase '{self.name}' initialized successfully")

    async def _create_schema(self) -> None:
        """init.sql의 스키마 스크립트 실행 (IF NOT EXISTS라 재실행해도 무해)"""
        if not INIT_SQL_PATH.exists():
            logger.warning(f"init.sql not found: {INIT_SQL_PATH}")
            return

        queries = aiosql.from_path(str(INIT_SQL_PATH), "aiosqlite")
        pooled = await self._pool.acquire()
        try:
            for query_name in INIT_QUERIES:
                await getattr(queries, query_name)(pooled.connection)
            await pooled.connection.commit()
            logger.info(f"Schema ready: {', '.join(INIT_QUERIES)}")
        finally:
            await self._pool.release(pooled)

    def transaction(self, readonly: bool = False) -> ManagedTransaction:
        return ManagedTransaction(self, readonly)

    @property
    def pool(self) -> AsyncConnectionPool:
        if self._pool is None:
            raise RuntimeError(f"Database '{self.name}' not initialized")
        return self._pool

    async def close(self) -> None:
        if self._pool:
            await self._pool.close()
        logger.info(f"SQLiteDatabase '{self.name}' closed")
