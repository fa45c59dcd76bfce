"""
외부 연동(Provider) 관련 예외 클래스 정의
"""


class ProviderError(Exception):
    """Provider 기본 예외 (외부 API 호출 실패)"""
    def __init__(self, provider: str, message: str = None, status_code: int | None = None):
        self.provider = provider
        self.status_code = status_code
        self.message = message or f"{provider} request failed"
        super().__init__(self.message)


class ProviderNotConfiguredError(ProviderError):
    """API 키 등 필수 설정 누락"""
    def __init__(self, provider: str, setting: str):
        self.setting = setting
        super().__init__(provider, f"{provider} is not configured: missing {setting}")
