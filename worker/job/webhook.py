"""Webhook Handler - 서명된 웹훅 전송

전송 결과는 delivery_id 단위로 기록하고, 실패하면 연속 실패 횟수를 올린 뒤
예외로 큐 재시도를 요청합니다. 연속 실패가 임계값에 닿으면 웹훅을 비활성화합니다.
"""

import logging

from jobqueue import QueueName
from store.model.store import WebhookDelivery
from worker.base import BaseHandler, handler
from worker.exception import WebhookDeliveryError
from worker.model.handler import RunOutcome, WebhookParams

logger = logging.getLogger(__name__)


@handler(QueueName.WEBHOOK)
class WebhookHandler(BaseHandler):
    params_model = WebhookParams

    async def execute(self, params: WebhookParams) -> RunOutcome:
        outcome = RunOutcome(processed=1)
        repo = self.deps.webhooks

        webhook = await repo.get(params.webhook_id)
        if webhook is None or not webhook.is_active:
            logger.info(f"Webhook missing or disabled, skipping delivery: {params.webhook_id}")
            outcome.record_skipped()
            return outcome

        payload = {
            "id": params.delivery_id,
            "event": params.event,
            "created_at": self.deps.now().isoformat(),
            "data": params.data,
        }
        result = await self.deps.webhook_sender.deliver(
            webhook.url, webhook.secret, params.event, payload, params.delivery_id
        )

        previous = await repo.find_deliveries(webhook.id)
        attempt = 1 + sum(1 for d in previous if d.delivery_id == params.delivery_id)
        await repo.record_delivery(WebhookDelivery(
            webhook_id=webhook.id,
            delivery_id=params.delivery_id,
            event=params.event,
            status_code=result.status_code,
            success=result.success,
            response_body=result.response_body,
            error=result.error,
            duration_ms=result.duration_ms,
            attempt=attempt,
        ))

        if result.success:
            await repo.record_success(webhook.id)
            outcome.record_sent()
            logger.info(
                f"Webhook delivered: webhook={webhook.id}, event={params.event}, "
                f"status={result.status_code}, duration={result.duration_ms}ms"
            )
            return outcome

        failures = await repo.record_failure(webhook.id, self.deps.settings.webhook.disable_after_failures)
        logger.warning(
            f"Webhook delivery failed: webhook={webhook.id}, event={params.event}, "
            f"error={result.error}, consecutive_failures={failures}"
        )
        raise WebhookDeliveryError(webhook.id, params.delivery_id, result.error, result.status_code)
