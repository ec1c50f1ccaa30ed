import uuid
from datetime import datetime, timezone

from sqlalchemy import BigInteger, Column, DateTime, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from shiplog.database import Base


class Project(Base):
    """A GitHub repository connected to ShipLog.

    Owned by the dashboard side of the product; the webhook pipeline only
    reads it to resolve deliveries and their signing secret.
    """

    __tablename__ = "projects"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    github_repo_id = Column(BigInteger, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False, index=True)
    full_name = Column(String(500), nullable=False)  # owner/repo
    webhook_secret = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    entries = relationship("ChangelogEntry", back_populates="project", cascade="all, delete-orphan")
    notification_configs = relationship(
        "NotificationConfig", back_populates="project", cascade="all, delete-orphan"
    )
