import asyncio
import json
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy import select

from shiplog.config import get_settings
from shiplog.database import AsyncSessionLocal
from shiplog.metrics import DRAIN_DURATION
from shiplog.models.webhook_queue import PROCESSING, WebhookQueueItem
from shiplog.schemas.webhook import DrainResult, PullRequestEvent
from shiplog.services.categorizer import ChangelogCategorizer
from shiplog.services.projects import get_project_by_repo_id
from shiplog.services.sync import sync_merged_pull_request
from shiplog.services.webhook_intake import error_message
from shiplog.services.webhook_queue import (
    get_queue_stats,
    get_retryable_webhooks,
    mark_completed,
    mark_failed,
    mark_processing,
    purge_completed,
)

logger = logging.getLogger(__name__)
settings = get_settings()


class InvalidPayloadError(Exception):
    """A queued payload cannot be replayed as a merged pull request."""


class ProjectNotFoundError(Exception):
    pass


def parse_queued_event(payload: str) -> PullRequestEvent:
    try:
        data = json.loads(payload.lstrip("\ufeff"))
    except ValueError as e:
        raise InvalidPayloadError(f"Invalid payload: not JSON ({e})") from e

    repository = data.get("repository") if isinstance(data, dict) else None
    if (
        not isinstance(repository, dict)
        or repository.get("id") is None
        or not isinstance(data.get("pull_request"), dict)
    ):
        raise InvalidPayloadError("Invalid payload: missing repo ID or PR data")

    try:
        event = PullRequestEvent.model_validate(data)
    except ValidationError as e:
        raise InvalidPayloadError(f"Invalid payload: {e.error_count()} validation error(s)") from e
    if not event.is_merge:
        raise InvalidPayloadError("Invalid payload: not a merged pull request")
    return event


async def _replay(item: WebhookQueueItem, categorizer: Optional[ChangelogCategorizer]) -> None:
    event = parse_queued_event(item.payload)
    async with AsyncSessionLocal() as session:
        project = await asyncio.wait_for(
            get_project_by_repo_id(session, event.repository.id),
            timeout=settings.db_operation_timeout_seconds,
        )
    if project is None:
        raise ProjectNotFoundError(f"No project found for repo {event.repository.id}")

    entry = await sync_merged_pull_request(project, event, categorizer)
    logger.info("Webhook retry succeeded: item %s, entry %s", item.id, entry.id)


async def release_stale_claims(stale_after_minutes: int, now: Optional[datetime] = None) -> int:
    """Fail items left in ``processing`` by a drain pass that never finished.

    Each release consumes an attempt, so an item that keeps crashing its
    worker still ends up dead-lettered.
    """
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(minutes=stale_after_minutes)
    async with AsyncSessionLocal() as session:
        result = await session.execute(
            select(WebhookQueueItem.id)
            .where(WebhookQueueItem.status == PROCESSING)
            .where(WebhookQueueItem.updated_at < cutoff)
        )
        stale_ids = list(result.scalars().all())

    released = 0
    for item_id in stale_ids:
        if await mark_failed(item_id, f"Processing did not finish within {stale_after_minutes} minutes", now=now):
            released += 1
    if released:
        logger.warning("Released %d stale webhook queue claims", released)
    return released


async def drain_webhook_queue(
    limit: Optional[int] = None,
    project_id: Optional[UUID] = None,
    categorizer: Optional[ChangelogCategorizer] = None,
    now: Optional[datetime] = None,
) -> DrainResult:
    """Retry due queue items, then purge old completed items.

    Safe to run concurrently with itself: an item lost to another pass at
    claim time is skipped and not counted.
    """
    if limit is None:
        limit = settings.webhook_retry_batch_size
    started = time.monotonic()
    result = DrainResult()

    await release_stale_claims(settings.webhook_processing_timeout_minutes, now=now)

    for item in await get_retryable_webhooks(limit, project_id=project_id, now=now):
        if not await mark_processing(item.id, now=now):
            continue
        result.processed += 1

        try:
            await _replay(item, categorizer)
        except Exception as e:
            result.failed += 1
            logger.warning("Webhook retry failed: item %s: %s", item.id, error_message(e))
            try:
                await mark_failed(item.id, error_message(e), now=now)
            except Exception:
                logger.exception("Could not record failure for webhook queue item %s", item.id)
            continue

        try:
            await mark_completed(item.id, now=now)
            result.succeeded += 1
        except Exception:
            # The entry is stored; a later replay upserts the same row
            result.failed += 1
            logger.exception("Could not mark webhook queue item %s completed", item.id)

    result.purged = await purge_completed(settings.webhook_queue_retention_days, now=now)
    result.queue_stats = await get_queue_stats()

    DRAIN_DURATION.observe(time.monotonic() - started)
    logger.info(
        "Webhook drain finished: processed=%d succeeded=%d failed=%d purged=%d dead=%d",
        result.processed, result.succeeded, result.failed, result.purged, result.queue_stats.dead,
    )
    return result
