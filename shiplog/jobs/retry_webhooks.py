import logging

from shiplog.config import get_settings
from shiplog.services.retry_drainer import drain_webhook_queue

logger = logging.getLogger(__name__)
settings = get_settings()


async def retry_webhooks_job() -> None:
    """Scheduled drain of the webhook retry queue across all projects."""
    try:
        result = await drain_webhook_queue(limit=settings.webhook_retry_batch_size)
    except Exception:
        # Next interval retries; the queue itself is untouched by a failed pass
        logger.exception("Webhook retry job failed")
        return

    if result.processed:
        logger.info(
            "Webhook retry job: %d processed, %d succeeded, %d failed",
            result.processed, result.succeeded, result.failed,
        )
