"""
비동기 데이터베이스 패키지

사용 예시:
    from database import transactional, get_connection
    from database.registry import DatabaseRegistry

    await DatabaseRegistry.init_from_config(config)

    @transactional
    async def create_job(job_data):
        ctx = get_connection()
        await queries.insert_job(ctx.connection, **job_data)
"""

from database.exception import (
    DatabaseError,
    ConnectionPoolExhaustedError,
    ReadOnlyTransactionError,
    TransactionError,
    QueryExecutionError,
    NoActiveTransactionError,
    DatabaseNotFoundError,
)
from database.transaction import (
    transactional,
    transactional_readonly,
    get_connection,
    get_db,
)

__all__ = [
    'transactional',
    'transactional_readonly',
    'get_connection',
    'get_db',
    'DatabaseError',
    'ConnectionPoolExhaustedError',
    'ReadOnlyTransactionError',
    'TransactionError',
    'QueryExecutionError',
    'NoActiveTransactionError',
    'DatabaseNotFoundError',
]
