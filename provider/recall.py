"""
Recall.ai 회의 봇 클라이언트
"""

import logging
from datetime import datetime

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from provider.base import BotProvider
from provider.exception import ProviderError, ProviderNotConfiguredError
from provider.model.provider import BotSettings

logger = logging.getLogger(__name__)


def _is_transient(exc: BaseException) -> bool:
    """연결 실패, 타임아웃, 429/5xx만 재시도"""
    if isinstance(exc, (httpx.ConnectError, httpx.TimeoutException)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    return False


_recall_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception(_is_transient),
    reraise=True,
)


class RecallBotProvider(BotProvider):
    """Recall.ai REST API"""

    def __init__(self, settings: BotSettings, transport: httpx.AsyncBaseTransport | None = None):
        self._settings = settings
        self._transport = transport
        self._base_url = f"https://{settings.region}.recall.ai/api/v1"

    def _client(self) -> httpx.AsyncClient:
        if not self._settings.api_key:
            raise ProviderNotConfiguredError("recall", "api_key")
        return httpx.AsyncClient(
            headers={
                "Authorization": f"Token {self._settings.api_key}",
                "Content-Type": "application/json",
            },
            timeout=self._settings.timeout_seconds,
            transport=self._transport,
        )

    async def create_bot(
        self,
        meeting_url: str,
        join_at: datetime | None = None,
        metadata: dict | None = None,
    ) -> str:
        body = {
            "meeting_url": meeting_url,
            "bot_name": self._settings.bot_name,
            "recording_config": {"transcript": {"provider": {"meeting_captions": {}}}},
        }
        if join_at is not None:
            body["join_at"] = join_at.isoformat()
        if metadata:
            body["metadata"] = {k: str(v) for k, v in metadata.items()}

        try:
            data = await self._post("/bot/", body)
        except httpx.HTTPStatusError as e:
            raise ProviderError("recall", f"Create bot failed: {e}", e.response.status_code)
        except httpx.HTTPError as e:
            raise ProviderError("recall", f"Create bot failed: {e}")

        bot_id = data.get("id")
        if not bot_id:
            raise ProviderError("recall", "Create bot response has no id")
        logger.info(f"Bot created: bot_id={bot_id}, join_at={body.get('join_at')}")
        return bot_id

    async def stop_bot(self, bot_id: str) -> None:
        """봇 퇴장 요청 (이미 없는 봇이면 무시)"""
        try:
            await self._post(f"/bot/{bot_id}/leave_call/", None)
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                logger.debug(f"Bot already gone: {bot_id}")
                return
            raise ProviderError("recall", f"Stop bot failed: {e}", e.response.status_code)
        except httpx.HTTPError as e:
            raise ProviderError("recall", f"Stop bot failed: {e}")
        logger.info(f"Bot stopped: bot_id={bot_id}")

    @_recall_retry
    async def _post(self, path: str, body: dict | None) -> dict:
        async with self._client() as client:
            response = await client.post(f"{self._base_url}{path}", json=body)
            response.raise_for_status()
            if not response.content:
                return {}
            return response.json()
