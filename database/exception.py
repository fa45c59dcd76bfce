"""
Database 관련 예외 클래스 정의
"""


class DatabaseError(Exception):
    """Database 기본 예외"""
    pass


class ConnectionPoolExhaustedError(DatabaseError):
    """커넥션풀 소진 (타임아웃 내 연결 획득 실패)"""
    def __init__(self, message: str = None):
        self.message = message or "Connection pool exhausted"
        super().__init__(self.message)


class ReadOnlyTransactionError(DatabaseError):
    """읽기 전용 트랜잭션에서 쓰기 쿼리 실행"""
    def __init__(self, message: str = None):
        self.message = message or "Cannot execute write query in readonly transaction"
        super().__init__(self.message)


class TransactionError(DatabaseError):
    """트랜잭션 처리 실패 (commit/rollback)"""
    def __init__(self, db_name: str, message: str = None):
        self.db_name = db_name
        self.message = message or f"Transaction failed on database '{db_name}'"
        super().__init__(self.message)


class QueryExecutionError(DatabaseError):
    """쿼리 실행 실패"""
    def __init__(self, query_name: str, message: str = None):
        self.query_name = query_name
        self.message = message or f"Query execution failed: {query_name}"
        super().__init__(self.message)


class NoActiveTransactionError(DatabaseError, RuntimeError):
    """트랜잭션 밖에서 get_connection() 호출"""
    def __init__(self, db_name: str):
        self.db_name = db_name
        self.message = f"No active transaction for database '{db_name}'"
        super().__init__(self.message)


class DatabaseNotFoundError(DatabaseError, KeyError):
    """설정 또는 레지스트리에 없는 DB 이름"""
    def __init__(self, db_name: str, message: str = None):
        self.db_name = db_name
        self.message = message or f"Database '{db_name}' is not initialized"
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message
