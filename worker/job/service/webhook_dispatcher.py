"""
웹훅 팬아웃

도메인 이벤트 하나를 구독 중인 조직 웹훅마다 전송 잡으로 만듭니다.
"""

import logging
import uuid

from jobqueue import JobProducer
from store import WebhookRepository

logger = logging.getLogger(__name__)


async def dispatch_webhook_event(
    webhooks: WebhookRepository,
    producer: JobProducer,
    organization_id: str,
    event: str,
    data: dict,
) -> list[str]:
    """
    Returns:
        생성된 delivery_id 목록
    """
    delivery_ids = []
    for webhook in await webhooks.find_subscribed(organization_id, event):
        delivery_id = str(uuid.uuid4())
        await producer.webhook_delivery(webhook.id, event, data, delivery_id)
        delivery_ids.append(delivery_id)

    if delivery_ids:
        logger.info(f"Queued {len(delivery_ids)} webhook deliveries: org={organization_id}, event={event}")
    return delivery_ids
