"""
Job Queue 관련 예외 클래스 정의
"""


class QueueError(Exception):
    """Queue 기본 예외"""
    pass


class QueueNotFoundError(QueueError):
    """등록되지 않은 큐"""
    def __init__(self, queue_name: str):
        self.queue_name = queue_name
        self.message = f"Queue not found: {queue_name}"
        super().__init__(self.message)


class JobNotFoundError(QueueError):
    """잡을 찾을 수 없음"""
    def __init__(self, queue_name: str, job_id: int):
        self.queue_name = queue_name
        self.job_id = job_id
        self.message = f"Job {job_id} not found in queue '{queue_name}'"
        super().__init__(self.message)


class JobStateError(QueueError):
    """현재 상태에서 허용되지 않는 전이"""
    def __init__(self, job_id: int, current_state: str, action: str):
        self.job_id = job_id
        self.current_state = current_state
        self.action = action
        self.message = f"Cannot {action} job {job_id} in state '{current_state}'"
        super().__init__(self.message)


class InvalidPatternError(QueueError):
    """반복 등록의 크론 패턴 오류"""
    def __init__(self, pattern: str, message: str = None):
        self.pattern = pattern
        self.message = message or f"Invalid repeat pattern: {pattern}"
        super().__init__(self.message)
