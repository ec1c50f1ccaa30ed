"""GitHub webhook intake and retry-queue routes."""
import hmac
import json
import logging
from typing import Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from shiplog.config import get_settings
from shiplog.schemas.webhook import (
    DrainResult,
    QueueStats,
    RetryRequest,
    WebhookOutcome,
    WebhookQueueItemResponse,
)
from shiplog.services.retry_drainer import drain_webhook_queue
from shiplog.services.webhook_intake import handle_github_webhook
from shiplog.services.webhook_queue import get_queue_stats, list_webhooks

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


async def require_cron_secret(request: Request) -> None:
    """Bearer check for scheduler-triggered endpoints."""
    cron_secret = get_settings().cron_secret
    if not cron_secret:
        return
    expected = f"Bearer {cron_secret}"
    provided = request.headers.get("authorization") or ""
    if not hmac.compare_digest(provided.encode(), expected.encode()):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


@router.post("/github")
async def github_webhook(request: Request):
    body = await request.body()
    result = await handle_github_webhook(body, request.headers)

    if result.outcome in (WebhookOutcome.PROCESSED, WebhookOutcome.QUEUED, WebhookOutcome.DROPPED):
        content = {"success": True, "outcome": result.outcome.value, "message": result.message}
        if result.entry_id:
            content["entry"] = {"id": str(result.entry_id), "category": result.category}
        if result.queue_id:
            content["queueId"] = str(result.queue_id)
        return JSONResponse(status_code=status.HTTP_200_OK, content=content)

    return JSONResponse(
        status_code=result.status_code,
        content={"error": result.message, "outcome": result.outcome.value},
    )


@router.post("/retry", dependencies=[Depends(require_cron_secret)])
async def retry_webhooks(request: Request):
    body = await request.body()
    retry_request = RetryRequest()
    if body.strip():
        try:
            retry_request = RetryRequest.model_validate(json.loads(body))
        except (ValueError, ValidationError):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid request body")

    result: DrainResult = await drain_webhook_queue(project_id=retry_request.project_id)
    return JSONResponse(content=result.model_dump(mode="json", by_alias=True))


@router.get("/queue", response_model=QueueStats, dependencies=[Depends(require_cron_secret)])
async def webhook_queue_stats():
    return await get_queue_stats()


@router.get(
    "/queue/items",
    response_model=list[WebhookQueueItemResponse],
    dependencies=[Depends(require_cron_secret)],
)
async def webhook_queue_items(
    status_filter: Literal["pending", "processing", "failed", "completed", "dead"] = Query("dead", alias="status"),
    project_id: Optional[UUID] = Query(None, alias="projectId"),
    limit: int = Query(50, ge=1, le=200),
):
    return await list_webhooks(status=status_filter, project_id=project_id, limit=limit)
