"""GitHub webhook intake.

A delivery is dropped (not a merged PR), rejected (bad payload, unknown
repository, bad signature) or processed. Once a delivery is authenticated
it is never answered with a 5xx because of a downstream failure: the parsed
payload goes to the retry queue and GitHub gets a 200. Only a failure to
queue it surfaces as an error, so that GitHub redelivers.
"""
import asyncio
import hashlib
import hmac
import json
import logging
from typing import Mapping, Optional

from pydantic import ValidationError

from shiplog.config import get_settings
from shiplog.database import AsyncSessionLocal
from shiplog.metrics import WEBHOOK_EVENTS
from shiplog.models.webhook_queue import EVENT_PULL_REQUEST_MERGED
from shiplog.schemas.webhook import PullRequestEvent, WebhookOutcome, WebhookResult
from shiplog.services.categorizer import ChangelogCategorizer
from shiplog.services.projects import get_project_by_repo_id
from shiplog.services.sync import sync_merged_pull_request
from shiplog.services.webhook_queue import enqueue_webhook

logger = logging.getLogger(__name__)
settings = get_settings()

PULL_REQUEST_EVENT = "pull_request"
EVENT_HEADER = "x-github-event"
SIGNATURE_HEADER = "x-hub-signature-256"
SIGNATURE_PREFIX = "sha256="


def compute_signature(secret: str, body: bytes) -> str:
    digest = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(secret: Optional[str], body: bytes, signature: Optional[str]) -> bool:
    """Constant-time check of an ``x-hub-signature-256`` header."""
    if not secret or not signature:
        return False
    expected = compute_signature(secret, body)
    return hmac.compare_digest(expected.encode(), signature.encode())


def error_message(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


def _result(outcome: WebhookOutcome, message: str, status_code: int = 200, **extra) -> WebhookResult:
    WEBHOOK_EVENTS.labels(outcome=outcome.value).inc()
    return WebhookResult(outcome=outcome, status_code=status_code, message=message, **extra)


async def handle_github_webhook(
    raw_body: bytes,
    headers: Mapping[str, str],
    categorizer: Optional[ChangelogCategorizer] = None,
) -> WebhookResult:
    headers = {key.lower(): value for key, value in headers.items()}

    if headers.get(EVENT_HEADER) != PULL_REQUEST_EVENT:
        return _result(WebhookOutcome.DROPPED, "Event ignored")

    try:
        payload = json.loads(raw_body)
    except (ValueError, UnicodeDecodeError):
        return _result(WebhookOutcome.REJECTED, "Invalid JSON payload", status_code=400)
    if not isinstance(payload, dict):
        return _result(WebhookOutcome.REJECTED, "Invalid JSON payload", status_code=400)

    pr = payload.get("pull_request")
    if payload.get("action") != "closed" or not isinstance(pr, dict) or pr.get("merged") is not True:
        return _result(WebhookOutcome.DROPPED, "Not a merge event")

    repository = payload.get("repository")
    repo_id = repository.get("id") if isinstance(repository, dict) else None
    if not isinstance(repo_id, int):
        return _result(WebhookOutcome.REJECTED, "Missing repository id", status_code=400)

    async with AsyncSessionLocal() as session:
        project = await asyncio.wait_for(
            get_project_by_repo_id(session, repo_id), timeout=settings.db_operation_timeout_seconds
        )
    if project is None:
        logger.info("Webhook for untracked repository %s ignored", repo_id)
        return _result(WebhookOutcome.REJECTED, "Unknown repository", status_code=404)

    if not verify_signature(project.webhook_secret, raw_body, headers.get(SIGNATURE_HEADER)):
        logger.warning("Invalid webhook signature for project %s (repo %s)", project.id, repo_id)
        return _result(WebhookOutcome.REJECTED, "Invalid signature", status_code=403)

    try:
        event = PullRequestEvent.model_validate(payload)
    except ValidationError as e:
        logger.warning("Malformed pull_request payload for project %s: %s", project.id, e)
        return _result(WebhookOutcome.REJECTED, "Invalid pull request payload", status_code=400)

    try:
        entry = await sync_merged_pull_request(project, event, categorizer)
    except Exception as e:
        logger.warning(
            "Processing PR #%s for project %s failed, queueing for retry: %s: %s",
            event.pull_request.number, project.id, type(e).__name__, e,
        )
        queue_id = await enqueue_webhook(
            EVENT_PULL_REQUEST_MERGED,
            payload,
            error_message(e),
            project_id=project.id,
        )
        return _result(WebhookOutcome.QUEUED, "Queued for retry", queue_id=queue_id)

    return _result(
        WebhookOutcome.PROCESSED,
        "Changelog entry recorded",
        entry_id=entry.id,
        category=entry.category,
    )
