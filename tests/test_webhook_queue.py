import json
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import update

from conftest import as_utc, merged_pr_payload
from shiplog.database import AsyncSessionLocal
from shiplog.models.webhook_queue import EVENT_PULL_REQUEST_MERGED, WebhookQueueItem
from shiplog.services.webhook_queue import (
    enqueue_webhook,
    get_queue_stats,
    get_retryable_webhooks,
    get_webhook,
    mark_completed,
    mark_failed,
    mark_processing,
    purge_completed,
)

pytestmark = pytest.mark.usefixtures("clean_db")


def _later(seconds: int) -> datetime:
    return datetime.now(timezone.utc) + timedelta(seconds=seconds)


async def _set_status(item_id, status, updated_at=None):
    values = {"status": status}
    if updated_at is not None:
        values["updated_at"] = updated_at
    async with AsyncSessionLocal() as session:
        await session.execute(update(WebhookQueueItem).where(WebhookQueueItem.id == item_id).values(**values))
        await session.commit()


@pytest.mark.asyncio
async def test_enqueue_counts_first_failure_as_attempt():
    now = datetime.now(timezone.utc)
    item_id = await enqueue_webhook(EVENT_PULL_REQUEST_MERGED, merged_pr_payload(), "AI down", now=now)

    item = await get_webhook(item_id)
    assert item.status == "pending"
    assert item.attempts == 1
    assert item.max_attempts == 5
    assert item.last_error == "AI down"
    assert as_utc(item.next_retry_at) - now == timedelta(seconds=30)
    assert json.loads(item.payload)["pull_request"]["number"] == 42


@pytest.mark.asyncio
async def test_enqueue_keeps_raw_string_payload():
    raw = '{"action": "closed"}'
    item_id = await enqueue_webhook(EVENT_PULL_REQUEST_MERGED, raw, "boom")
    assert (await get_webhook(item_id)).payload == raw


@pytest.mark.asyncio
async def test_get_retryable_excludes_items_not_yet_due():
    await enqueue_webhook(EVENT_PULL_REQUEST_MERGED, merged_pr_payload(), "err")

    assert await get_retryable_webhooks(10) == []
    due = await get_retryable_webhooks(10, now=_later(31))
    assert len(due) == 1


@pytest.mark.asyncio
async def test_get_retryable_respects_limit_and_order():
    base = datetime.now(timezone.utc)
    ids = []
    for offset in (300, 100, 200):
        ids.append(await enqueue_webhook(
            EVENT_PULL_REQUEST_MERGED, merged_pr_payload(pr_number=offset), "err",
            now=base - timedelta(seconds=offset),
        ))

    due = await get_retryable_webhooks(2)

    assert len(due) == 2
    # Enqueued 300s ago is due first, then 200s ago
    assert [item.id for item in due] == [ids[0], ids[2]]


@pytest.mark.asyncio
async def test_get_retryable_skips_processing_and_terminal_items():
    ids = [await enqueue_webhook(EVENT_PULL_REQUEST_MERGED, "{}", "err") for _ in range(4)]
    await _set_status(ids[1], "processing")
    await _set_status(ids[2], "completed")
    await _set_status(ids[3], "dead")

    due = await get_retryable_webhooks(10, now=_later(60))
    assert [item.id for item in due] == [ids[0]]


@pytest.mark.asyncio
async def test_get_retryable_scoped_to_project(project):
    mine = await enqueue_webhook(EVENT_PULL_REQUEST_MERGED, "{}", "err", project_id=project.id)
    await enqueue_webhook(EVENT_PULL_REQUEST_MERGED, "{}", "err")

    due = await get_retryable_webhooks(10, project_id=project.id, now=_later(60))
    assert [item.id for item in due] == [mine]


@pytest.mark.asyncio
async def test_mark_processing_claims_once():
    item_id = await enqueue_webhook(EVENT_PULL_REQUEST_MERGED, "{}", "err")

    assert await mark_processing(item_id) is True
    assert await mark_processing(item_id) is False

    item = await get_webhook(item_id)
    assert item.status == "processing"
    assert item.attempts == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("terminal", ["completed", "dead"])
async def test_mark_processing_refuses_terminal_items(terminal):
    item_id = await enqueue_webhook(EVENT_PULL_REQUEST_MERGED, "{}", "err")
    await _set_status(item_id, terminal)

    assert await mark_processing(item_id) is False
    item = await get_webhook(item_id)
    assert item.status == terminal
    assert item.attempts == 1


@pytest.mark.asyncio
async def test_mark_failed_reschedules_with_backoff():
    item_id = await enqueue_webhook(EVENT_PULL_REQUEST_MERGED, "{}", "first")
    await mark_processing(item_id)
    now = datetime.now(timezone.utc)

    status = await mark_failed(item_id, "second", now=now)

    item = await get_webhook(item_id)
    assert status == "failed"
    assert item.status == "failed"
    assert item.attempts == 2
    assert item.last_error == "second"
    assert as_utc(item.next_retry_at) - now == timedelta(seconds=600)


@pytest.mark.asyncio
async def test_item_dead_after_max_attempts():
    item_id = await enqueue_webhook(EVENT_PULL_REQUEST_MERGED, "{}", "failure 1")

    statuses = []
    for n in range(2, 6):
        assert await mark_processing(item_id)
        statuses.append(await mark_failed(item_id, f"failure {n}"))

    assert statuses == ["failed", "failed", "failed", "dead"]
    item = await get_webhook(item_id)
    assert item.status == "dead"
    assert item.attempts == 5
    assert item.last_error == "failure 5"
    assert await mark_processing(item_id) is False


@pytest.mark.asyncio
async def test_item_completes_after_max_minus_one_failures():
    item_id = await enqueue_webhook(EVENT_PULL_REQUEST_MERGED, "{}", "failure 1")
    for n in range(2, 5):
        assert await mark_processing(item_id)
        assert await mark_failed(item_id, f"failure {n}") == "failed"

    assert await mark_processing(item_id)
    assert await mark_completed(item_id) is True

    item = await get_webhook(item_id)
    assert item.status == "completed"
    assert item.attempts == 4
    # Last error is kept as history
    assert item.last_error == "failure 4"
    assert await get_retryable_webhooks(10, now=_later(86400)) == []
    assert await mark_processing(item_id) is False


@pytest.mark.asyncio
async def test_mark_completed_and_failed_need_processing_status():
    item_id = await enqueue_webhook(EVENT_PULL_REQUEST_MERGED, "{}", "err")

    assert await mark_completed(item_id) is False
    assert await mark_failed(item_id, "nope") is None

    item = await get_webhook(item_id)
    assert item.status == "pending"
    assert item.attempts == 1


@pytest.mark.asyncio
async def test_mark_failed_unknown_item_is_noop():
    import uuid

    assert await mark_failed(uuid.uuid4(), "missing") is None


@pytest.mark.asyncio
async def test_queue_stats_zero_filled():
    ids = [await enqueue_webhook(EVENT_PULL_REQUEST_MERGED, "{}", "err") for _ in range(3)]
    await _set_status(ids[0], "dead")

    stats = await get_queue_stats()
    assert stats.model_dump() == {"pending": 2, "processing": 0, "failed": 0, "completed": 0, "dead": 1}


@pytest.mark.asyncio
async def test_purge_completed_only_removes_old_completed_items():
    old = datetime.now(timezone.utc) - timedelta(days=8)
    recent = datetime.now(timezone.utc) - timedelta(days=1)

    ids = {}
    for status in ("completed", "dead", "pending", "failed", "processing"):
        ids[status] = await enqueue_webhook(EVENT_PULL_REQUEST_MERGED, "{}", "err")
        await _set_status(ids[status], status, updated_at=old)
    fresh = await enqueue_webhook(EVENT_PULL_REQUEST_MERGED, "{}", "err")
    await _set_status(fresh, "completed", updated_at=recent)

    purged = await purge_completed(7)

    assert purged == 1
    assert await get_webhook(ids["completed"]) is None
    for status in ("dead", "pending", "failed", "processing"):
        assert (await get_webhook(ids[status])).status == status
    assert (await get_webhook(fresh)).status == "completed"
