import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from shiplog.config import get_settings
from shiplog.database import AsyncSessionLocal
from shiplog.models.changelog_entry import ChangelogEntry
from shiplog.models.project import Project
from shiplog.schemas.webhook import ChangelogEntryData, PullRequestEvent
from shiplog.services.categorizer import ChangelogCategorizer, get_categorizer
from shiplog.services.changelog_entries import upsert_changelog_entry
from shiplog.services.notifications import notify_new_entry

logger = logging.getLogger(__name__)
settings = get_settings()


async def sync_merged_pull_request(
    project: Project,
    event: PullRequestEvent,
    categorizer: Optional[ChangelogCategorizer] = None,
) -> ChangelogEntry:
    """Categorize a merged PR and record it as a changelog entry.

    Errors from categorization or the database propagate to the caller,
    which decides whether to queue the delivery for retry.
    """
    categorizer = categorizer or get_categorizer()
    pr = event.pull_request

    categorization = await categorizer.categorize(pr.title, pr.body)

    data = ChangelogEntryData(
        project_id=project.id,
        pr_number=pr.number,
        pr_title=pr.title,
        pr_body=pr.body,
        pr_url=pr.html_url,
        pr_author=pr.user.login,
        pr_author_avatar=pr.user.avatar_url,
        pr_merged_at=pr.merged_at or datetime.now(timezone.utc),
        category=categorization.category,
        summary=categorization.summary,
        emoji=categorization.emoji,
    )

    async with AsyncSessionLocal() as session:
        try:
            entry = await asyncio.wait_for(
                upsert_changelog_entry(session, data), timeout=settings.db_operation_timeout_seconds
            )
            await session.commit()
        except Exception:
            await session.rollback()
            raise

        # The entry is recorded; chat delivery has no bearing on the outcome
        if entry.created_at == entry.updated_at:
            try:
                await notify_new_entry(session, entry, project)
            except Exception:
                logger.exception("Notification dispatch failed for entry %s", entry.id)

    return entry
