"""
Worker 관련 예외 클래스 정의
"""


class WorkerError(Exception):
    """Worker 기본 예외"""
    pass


class HandlerNotFoundError(WorkerError):
    """핸들러를 찾을 수 없음"""
    def __init__(self, name: str):
        self.name = name
        self.message = f"Handler not found: {name}"
        super().__init__(self.message)


class InvalidJobPayloadError(WorkerError):
    """잡 payload가 핸들러 입력 모델과 맞지 않음"""
    def __init__(self, queue_name: str, message: str):
        self.queue_name = queue_name
        self.message = f"Invalid payload for '{queue_name}': {message}"
        super().__init__(self.message)


class WebhookDeliveryError(WorkerError):
    """웹훅 전송 실패 (큐 재시도 대상)"""
    def __init__(self, webhook_id: str, delivery_id: str, error: str | None, status_code: int | None = None):
        self.webhook_id = webhook_id
        self.delivery_id = delivery_id
        self.status_code = status_code
        self.message = f"Webhook delivery failed: webhook={webhook_id}, delivery={delivery_id}, error={error}"
        super().__init__(self.message)
