import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, CheckConstraint, Column, DateTime, ForeignKey, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from shiplog.database import Base

EVENT_NEW_ENTRY = "new_entry"
EVENT_NEW_RELEASE = "new_release"


class NotificationConfig(Base):
    __tablename__ = "notification_configs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    project_id = Column(UUID(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    provider = Column(String(20), nullable=False)  # "slack", "discord"
    webhook_url = Column(String(1000), nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)
    events = Column(JSON, nullable=False, default=lambda: [EVENT_NEW_ENTRY, EVENT_NEW_RELEASE])
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    project = relationship("Project", back_populates="notification_configs")

    __table_args__ = (
        CheckConstraint("provider IN ('slack', 'discord')", name="ck_notification_configs_provider"),
    )
