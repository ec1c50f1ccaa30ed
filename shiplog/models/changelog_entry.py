import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from shiplog.database import Base

CATEGORIES = ("feature", "fix", "improvement", "breaking")


class ChangelogEntry(Base):
    __tablename__ = "changelog_entries"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    project_id = Column(UUID(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)

    pr_number = Column(Integer, nullable=False)
    pr_title = Column(String(1000), nullable=False)
    pr_body = Column(Text, nullable=True)
    pr_url = Column(String(1000), nullable=False)
    pr_author = Column(String(255), nullable=False)
    pr_author_avatar = Column(String(1000), nullable=True)
    pr_merged_at = Column(DateTime(timezone=True), nullable=False)

    category = Column(String(20), nullable=False, index=True)
    summary = Column(Text, nullable=False)
    emoji = Column(String(16), nullable=False, default="📝")
    is_published = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    project = relationship("Project", back_populates="entries")

    __table_args__ = (
        UniqueConstraint("project_id", "pr_number", name="uq_changelog_entries_project_pr"),
        CheckConstraint(
            "category IN ('feature', 'fix', 'improvement', 'breaking')",
            name="ck_changelog_entries_category",
        ),
        Index("ix_changelog_entries_project_merged", "project_id", "pr_merged_at"),
    )
