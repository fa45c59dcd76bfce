"""Email Handler - 이메일 발송

Provider가 설정되지 않았으면 경고만 남기고 건너뜁니다 (재시도해도 결과가 같음).
발송 실패는 예외로 올려 큐 재시도 정책을 따릅니다.
"""

import logging

from jobqueue import QueueName
from provider import EmailMessage, ProviderNotConfiguredError
from worker.base import BaseHandler, handler
from worker.model.handler import EmailParams, RunOutcome

logger = logging.getLogger(__name__)


@handler(QueueName.EMAIL)
class EmailHandler(BaseHandler):
    params_model = EmailParams

    async def execute(self, params: EmailParams) -> RunOutcome:
        outcome = RunOutcome(processed=1)
        message = EmailMessage(to=params.to, subject=params.subject, html=params.html, text=params.text)
        try:
            await self.deps.email.send(message)
        except ProviderNotConfiguredError as e:
            logger.warning(f"Email not sent ({e}): to={params.to}, subject={params.subject}")
            outcome.record_skipped()
            return outcome

        outcome.record_sent()
        return outcome
