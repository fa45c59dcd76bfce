"""
Admin 관련 예외 클래스 정의
"""


class AdminError(Exception):
    """Admin 기본 예외"""
    pass


class JobNotFoundError(AdminError):
    """어느 큐에서도 잡을 찾을 수 없음"""
    def __init__(self, job_id: int):
        self.job_id = job_id
        self.message = f"Job with id {job_id} not found"
        super().__init__(self.message)


class InvalidStateFilterError(AdminError):
    """잘못된 상태 필터"""
    def __init__(self, state: str, allowed: list[str]):
        self.state = state
        self.message = f"Invalid state '{state}'. Allowed: {', '.join(allowed)}"
        super().__init__(self.message)
