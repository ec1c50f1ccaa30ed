from datetime import datetime
from enum import Enum
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

Category = Literal["feature", "fix", "improvement", "breaking"]


class PullRequestUser(BaseModel):
    login: str
    avatar_url: Optional[str] = None


class PullRequestData(BaseModel):
    number: int
    title: str
    body: Optional[str] = None
    html_url: str
    merged: bool = False
    merged_at: Optional[datetime] = None
    user: PullRequestUser


class RepositoryRef(BaseModel):
    id: int
    full_name: Optional[str] = None


class PullRequestEvent(BaseModel):
    """A ``pull_request`` webhook body, validated once at the boundary."""

    action: str
    pull_request: PullRequestData
    repository: RepositoryRef

    @property
    def is_merge(self) -> bool:
        return self.action == "closed" and self.pull_request.merged


class Categorization(BaseModel):
    category: Category
    summary: str
    emoji: str


class ChangelogEntryData(BaseModel):
    project_id: UUID
    pr_number: int
    pr_title: str
    pr_body: Optional[str] = None
    pr_url: str
    pr_author: str
    pr_author_avatar: Optional[str] = None
    pr_merged_at: datetime
    category: Category
    summary: str
    emoji: str


class WebhookOutcome(str, Enum):
    DROPPED = "dropped"
    REJECTED = "rejected"
    PROCESSED = "processed"
    QUEUED = "queued"


class WebhookResult(BaseModel):
    outcome: WebhookOutcome
    status_code: int = 200
    message: str
    entry_id: Optional[UUID] = None
    category: Optional[str] = None
    queue_id: Optional[UUID] = None


class QueueStats(BaseModel):
    pending: int = 0
    processing: int = 0
    failed: int = 0
    completed: int = 0
    dead: int = 0


class RetryRequest(BaseModel):
    project_id: Optional[UUID] = Field(default=None, alias="projectId")

    model_config = ConfigDict(populate_by_name=True)


class DrainResult(BaseModel):
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    purged: int = 0
    queue_stats: QueueStats = Field(default_factory=QueueStats, serialization_alias="queueStats")


class WebhookQueueItemResponse(BaseModel):
    id: UUID
    event_type: str
    project_id: Optional[UUID] = None
    status: str
    attempts: int
    max_attempts: int
    next_retry_at: datetime
    last_error: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)
