"""
Resend 이메일 발송
"""

import logging

import httpx

from provider.base import EmailProvider
from provider.exception import ProviderError, ProviderNotConfiguredError
from provider.model.provider import EmailMessage, EmailSettings

logger = logging.getLogger(__name__)


class ResendEmailProvider(EmailProvider):

    def __init__(self, settings: EmailSettings, transport: httpx.AsyncBaseTransport | None = None):
        self._settings = settings
        self._transport = transport

    async def send(self, message: EmailMessage) -> str | None:
        if not self._settings.api_key:
            raise ProviderNotConfiguredError("resend", "api_key")

        body = {
            "from": self._settings.from_address,
            "to": [message.to],
            "subject": message.subject,
            "html": message.html,
        }
        if message.text:
            body["text"] = message.text

        async with httpx.AsyncClient(
            headers={"Authorization": f"Bearer {self._settings.api_key}"},
            timeout=self._settings.timeout_seconds,
            transport=self._transport,
        ) as client:
            try:
                response = await client.post(f"{self._settings.base_url}/emails", json=body)
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise ProviderError("resend", f"Send email failed: {e}", e.response.status_code)
            except httpx.HTTPError as e:
                raise ProviderError("resend", f"Send email failed: {e}")

        email_id = response.json().get("id")
        logger.info(f"Email sent: to={message.to}, id={email_id}")
        return email_id
