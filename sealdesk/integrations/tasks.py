# sealdesk/integrations/tasks.py

"""
Celery tasks for outgoing integration deliveries
"""

# Local imports
from sealdesk.core.celery_app import app as celery_app  # Use the configured Celery app
from sealdesk.core.config import settings
from sealdesk.integrations.base import IntegrationError
from sealdesk.integrations.webhook import DELIVERY_HEADER, EVENT_HEADER, send_webhook
from sealdesk.utils.logger import get_logger

logger = get_logger(__name__)


@celery_app.task(bind=True, name="sealdesk.integrations.tasks.deliver_webhook", max_retries=settings.webhook_max_retries)
def deliver_webhook(self, url: str, body: str, headers: dict):
    """
    POST a prepared webhook, retrying with exponential backoff
    """
    attempt = self.request.retries + 1
    try:
        status_code = send_webhook(url, body, headers)
    except IntegrationError as e:
        logger.warning(
            "Webhook delivery attempt failed",
            integration_event=headers.get(EVENT_HEADER), delivery_id=headers.get(DELIVERY_HEADER),
            attempt=attempt, reason=str(e),
        )
        if self.request.retries < self.max_retries:
            raise self.retry(exc=e, countdown=settings.webhook_retry_backoff_seconds * 2 ** self.request.retries)
        logger.error(
            "Webhook delivery failed",
            integration_event=headers.get(EVENT_HEADER), delivery_id=headers.get(DELIVERY_HEADER), attempts=attempt,
        )
        raise

    logger.info(
        "Webhook delivered",
        integration_event=headers.get(EVENT_HEADER), delivery_id=headers.get(DELIVERY_HEADER), attempt=attempt,
    )
    return {"status_code": status_code, "attempts": attempt}
