"""
서명된 웹훅 전송

서명 헤더 형식: t=<unix seconds>,v1=<hex HMAC-SHA256("<t>.<body>")>
"""

import hashlib
import hmac
import json
import logging
import time

import httpx

from provider.base import WebhookSender
from provider.model.provider import DeliveryResult, WebhookSettings

logger = logging.getLogger(__name__)

MAX_RESPONSE_BODY = 1000


def sign_payload(payload: str, secret: str, timestamp: int | None = None) -> str:
    """X-Webhook-Signature 값 생성"""
    ts = int(time.time()) if timestamp is None else timestamp
    digest = hmac.new(secret.encode(), f"{ts}.{payload}".encode(), hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


def verify_signature(payload: str, secret: str, signature: str, tolerance_seconds: int = 300) -> bool:
    """수신 측 검증 (테스트 및 자체 수신 엔드포인트용)"""
    try:
        parts = dict(part.split("=", 1) for part in signature.split(","))
        ts = int(parts["t"])
    except (KeyError, ValueError):
        return False
    if abs(time.time() - ts) > tolerance_seconds:
        return False
    expected = sign_payload(payload, secret, ts)
    return hmac.compare_digest(expected, signature)


class HttpWebhookSender(WebhookSender):

    def __init__(self, settings: WebhookSettings, transport: httpx.AsyncBaseTransport | None = None):
        self._settings = settings
        self._transport = transport

    async def deliver(
        self,
        url: str,
        secret: str,
        event: str,
        payload: dict,
        delivery_id: str,
    ) -> DeliveryResult:
        body = json.dumps(payload, separators=(",", ":"), default=str)
        headers = {
            "Content-Type": "application/json",
            "X-Webhook-Id": delivery_id,
            "X-Webhook-Signature": sign_payload(body, secret),
            "X-Webhook-Event": event,
            "User-Agent": self._settings.user_agent,
        }

        started = time.monotonic()
        try:
            async with httpx.AsyncClient(
                timeout=self._settings.timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.post(url, content=body, headers=headers)
        except httpx.HTTPError as e:
            duration_ms = int((time.monotonic() - started) * 1000)
            logger.warning(f"Webhook delivery error: url={url}, delivery={delivery_id}, error={e}")
            return DeliveryResult(success=False, error=str(e) or type(e).__name__, duration_ms=duration_ms)

        duration_ms = int((time.monotonic() - started) * 1000)
        success = 200 <= response.status_code < 300
        return DeliveryResult(
            success=success,
            status_code=response.status_code,
            response_body=response.text[:MAX_RESPONSE_BODY],
            error=None if success else f"HTTP {response.status_code}",
            duration_ms=duration_ms,
        )
