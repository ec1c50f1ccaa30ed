import uuid
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID

from shiplog.database import Base

PENDING = "pending"
PROCESSING = "processing"
FAILED = "failed"
COMPLETED = "completed"
DEAD = "dead"

QUEUE_STATUSES = (PENDING, PROCESSING, FAILED, COMPLETED, DEAD)
CLAIMABLE_STATUSES = (PENDING, FAILED)

EVENT_PULL_REQUEST_MERGED = "pull_request.merged"

DEFAULT_MAX_ATTEMPTS = 5


class WebhookQueueItem(Base):
    """A webhook delivery whose processing failed and is waiting for a retry.

    ``attempts`` already counts the failed delivery that created the row, so
    an item is dead-lettered after ``max_attempts`` failures in total.
    ``last_error`` is kept after completion as a record of what went wrong.
    """

    __tablename__ = "webhook_queue"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_type = Column(String(100), nullable=False)
    payload = Column(Text, nullable=False)  # raw webhook JSON
    project_id = Column(UUID(as_uuid=True), nullable=True, index=True)

    status = Column(String(20), nullable=False, default=PENDING)
    attempts = Column(Integer, nullable=False, default=1)
    max_attempts = Column(Integer, nullable=False, default=DEFAULT_MAX_ATTEMPTS)
    next_retry_at = Column(DateTime(timezone=True), nullable=False)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'failed', 'completed', 'dead')",
            name="ck_webhook_queue_status",
        ),
        Index("ix_webhook_queue_status", "status"),
        Index("ix_webhook_queue_status_next_retry", "status", "next_retry_at"),
    )

    def __repr__(self):
        return f"<WebhookQueueItem(id={self.id}, status='{self.status}', attempts={self.attempts}/{self.max_attempts})>"
