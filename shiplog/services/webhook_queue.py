"""Durable retry queue for webhook deliveries that could not be processed.

When a GitHub delivery fails downstream (categorization down, database
error), the raw payload is stored here instead of being lost. The retry
drainer claims due items, replays them and records the outcome.

Status flow::

    pending/failed --mark_processing--> processing
    processing --mark_completed--> completed        (terminal)
    processing --mark_failed--> failed | dead       (dead is terminal)

Every operation is a single conditional statement, so concurrent drainers
and webhook requests need no further locking.
"""
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Union
from uuid import UUID

from sqlalchemy import delete, func, select, update

from shiplog.config import get_settings
from shiplog.database import AsyncSessionLocal
from shiplog.metrics import QUEUE_SIZE, QUEUE_TRANSITIONS
from shiplog.models.webhook_queue import (
    CLAIMABLE_STATUSES,
    COMPLETED,
    DEAD,
    FAILED,
    PENDING,
    PROCESSING,
    QUEUE_STATUSES,
    WebhookQueueItem,
)
from shiplog.schemas.webhook import QueueStats
from shiplog.services.backoff import next_retry_at

logger = logging.getLogger(__name__)
settings = get_settings()

MAX_ERROR_CHARS = 2000


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def enqueue_webhook(
    event_type: str,
    payload: Union[str, dict[str, Any]],
    error: str,
    project_id: Optional[UUID] = None,
    now: Optional[datetime] = None,
) -> UUID:
    """Queue a failed delivery for retry and return the new item id.

    The failed delivery counts as the first attempt.
    """
    now = now or _utcnow()
    if not isinstance(payload, str):
        payload = json.dumps(payload)

    item = WebhookQueueItem(
        event_type=event_type,
        payload=payload,
        project_id=project_id,
        status=PENDING,
        attempts=1,
        max_attempts=settings.webhook_queue_max_attempts,
        next_retry_at=next_retry_at(0, now),
        last_error=error[:MAX_ERROR_CHARS],
        created_at=now,
        updated_at=now,
    )
    async with AsyncSessionLocal() as session:
        session.add(item)
        await session.commit()

    QUEUE_TRANSITIONS.labels(status=PENDING).inc()
    logger.warning("Webhook queued for retry: item=%s event=%s error=%s", item.id, event_type, error)
    return item.id


async def get_retryable_webhooks(
    limit: int = 10,
    project_id: Optional[UUID] = None,
    now: Optional[datetime] = None,
) -> list[WebhookQueueItem]:
    """Items that are due for a retry, oldest due first."""
    now = now or _utcnow()
    query = (
        select(WebhookQueueItem)
        .where(WebhookQueueItem.status.in_(CLAIMABLE_STATUSES))
        .where(WebhookQueueItem.next_retry_at <= now)
        .order_by(WebhookQueueItem.next_retry_at.asc())
        .limit(limit)
    )
    if project_id is not None:
        query = query.where(WebhookQueueItem.project_id == project_id)

    async with AsyncSessionLocal() as session:
        result = await session.execute(query)
        return list(result.scalars().all())


async def get_webhook(item_id: UUID) -> Optional[WebhookQueueItem]:
    async with AsyncSessionLocal() as session:
        return await session.get(WebhookQueueItem, item_id)


async def list_webhooks(
    status: str = DEAD,
    project_id: Optional[UUID] = None,
    limit: int = 50,
) -> list[WebhookQueueItem]:
    """Items in one status, most recently touched first. Used to inspect dead letters."""
    query = (
        select(WebhookQueueItem)
        .where(WebhookQueueItem.status == status)
        .order_by(WebhookQueueItem.updated_at.desc())
        .limit(limit)
    )
    if project_id is not None:
        query = query.where(WebhookQueueItem.project_id == project_id)

    async with AsyncSessionLocal() as session:
        result = await session.execute(query)
        return list(result.scalars().all())


async def mark_processing(item_id: UUID, now: Optional[datetime] = None) -> bool:
    """Claim an item. Returns False if it was not pending or failed."""
    stmt = (
        update(WebhookQueueItem)
        .where(WebhookQueueItem.id == item_id)
        .where(WebhookQueueItem.status.in_(CLAIMABLE_STATUSES))
        .values(status=PROCESSING, updated_at=now or _utcnow())
        .execution_options(synchronize_session=False)
    )
    async with AsyncSessionLocal() as session:
        result = await session.execute(stmt)
        await session.commit()

    claimed = (result.rowcount or 0) > 0
    if claimed:
        QUEUE_TRANSITIONS.labels(status=PROCESSING).inc()
    else:
        logger.debug("Webhook queue item %s not claimable", item_id)
    return claimed


async def mark_completed(item_id: UUID, now: Optional[datetime] = None) -> bool:
    stmt = (
        update(WebhookQueueItem)
        .where(WebhookQueueItem.id == item_id)
        .where(WebhookQueueItem.status == PROCESSING)
        .values(status=COMPLETED, updated_at=now or _utcnow())
        .execution_options(synchronize_session=False)
    )
    async with AsyncSessionLocal() as session:
        result = await session.execute(stmt)
        await session.commit()

    if not result.rowcount:
        logger.warning("Webhook queue item %s was not processing, not marked completed", item_id)
        return False
    QUEUE_TRANSITIONS.labels(status=COMPLETED).inc()
    logger.info("Webhook queue item %s completed", item_id)
    return True


async def mark_failed(item_id: UUID, error: str, now: Optional[datetime] = None) -> Optional[str]:
    """Record a failed attempt and reschedule or dead-letter the item.

    Returns the new status, or None if the item was missing or not being
    processed.
    """
    now = now or _utcnow()
    async with AsyncSessionLocal() as session:
        row = (
            await session.execute(
                select(
                    WebhookQueueItem.attempts,
                    WebhookQueueItem.max_attempts,
                    WebhookQueueItem.status,
                ).where(WebhookQueueItem.id == item_id)
            )
        ).one_or_none()
        if row is None or row.status != PROCESSING:
            logger.warning("Webhook queue item %s cannot be marked failed (status=%s)", item_id, row and row.status)
            return None

        attempts = row.attempts + 1
        values: dict[str, Any] = {
            "attempts": attempts,
            "last_error": error[:MAX_ERROR_CHARS],
            "updated_at": now,
        }
        if attempts >= row.max_attempts:
            values["status"] = DEAD
        else:
            values["status"] = FAILED
            values["next_retry_at"] = next_retry_at(attempts, now)

        # Guard on the attempt count read above so concurrent updates cannot double count
        result = await session.execute(
            update(WebhookQueueItem)
            .where(WebhookQueueItem.id == item_id)
            .where(WebhookQueueItem.status == PROCESSING)
            .where(WebhookQueueItem.attempts == row.attempts)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await session.commit()

    if not result.rowcount:
        logger.warning("Webhook queue item %s changed concurrently, failure not recorded", item_id)
        return None

    status = values["status"]
    QUEUE_TRANSITIONS.labels(status=status).inc()
    if status == DEAD:
        logger.error(
            "Webhook queue item %s dead-lettered after %d attempts: %s",
            item_id, attempts, error,
        )
    else:
        logger.warning(
            "Webhook queue item %s failed (attempt %d/%d), next retry at %s: %s",
            item_id, attempts, row.max_attempts, values["next_retry_at"].isoformat(), error,
        )
    return status


async def get_queue_stats() -> QueueStats:
    async with AsyncSessionLocal() as session:
        result = await session.execute(
            select(WebhookQueueItem.status, func.count()).group_by(WebhookQueueItem.status)
        )
        counts = {status: count for status, count in result.all()}

    for status in QUEUE_STATUSES:
        QUEUE_SIZE.labels(status=status).set(counts.get(status, 0))
    return QueueStats(**{status: counts.get(status, 0) for status in QUEUE_STATUSES})


async def purge_completed(older_than_days: int = 7, now: Optional[datetime] = None) -> int:
    """Delete completed items last touched before the cutoff.

    Dead items are never purged so they can be inspected by hand.
    """
    cutoff = (now or _utcnow()) - timedelta(days=older_than_days)
    async with AsyncSessionLocal() as session:
        result = await session.execute(
            delete(WebhookQueueItem)
            .where(WebhookQueueItem.status == COMPLETED)
            .where(WebhookQueueItem.updated_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        await session.commit()

    purged = result.rowcount or 0
    if purged:
        logger.info("Purged %s completed webhook queue items older than %s days", purged, older_than_days)
    return purged
