from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from shiplog.models.changelog_entry import ChangelogEntry
from shiplog.schemas.webhook import ChangelogEntryData

logger = logging.getLogger(__name__)

# Columns refreshed when the same PR is seen again; the key and created_at never change
UPDATABLE_COLUMNS = ("pr_title", "pr_body", "category", "summary", "emoji")


async def upsert_changelog_entry(db: AsyncSession, data: ChangelogEntryData) -> ChangelogEntry:
    """Insert or update the entry for ``(project_id, pr_number)``.

    A single INSERT ... ON CONFLICT statement, so concurrent deliveries of
    the same PR cannot create duplicate rows.
    """
    now = datetime.now(timezone.utc)
    row = data.model_dump()
    row.update(id=uuid4(), created_at=now, updated_at=now)

    if db.get_bind().dialect.name == "sqlite":
        stmt = sqlite_insert(ChangelogEntry).values(row)
    else:
        stmt = pg_insert(ChangelogEntry).values(row)

    stmt = stmt.on_conflict_do_update(
        index_elements=["project_id", "pr_number"],
        set_={
            **{column: stmt.excluded[column] for column in UPDATABLE_COLUMNS},
            "updated_at": now,
        },
    )
    await db.execute(stmt)

    entry = await get_entry(db, data.project_id, data.pr_number, refresh=True)
    logger.info(
        "Upserted changelog entry project=%s pr=#%s category=%s",
        data.project_id, data.pr_number, data.category,
    )
    return entry


async def get_entry(
    db: AsyncSession,
    project_id: UUID,
    pr_number: int,
    refresh: bool = False,
) -> Optional[ChangelogEntry]:
    query = select(ChangelogEntry).where(
        ChangelogEntry.project_id == project_id,
        ChangelogEntry.pr_number == pr_number,
    )
    if refresh:
        query = query.execution_options(populate_existing=True)
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def list_entries(
    db: AsyncSession,
    project_id: UUID,
    category: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> list[ChangelogEntry]:
    query = (
        select(ChangelogEntry)
        .where(ChangelogEntry.project_id == project_id)
        .where(ChangelogEntry.is_published.is_(True))
        .order_by(ChangelogEntry.pr_merged_at.desc())
        .limit(limit)
        .offset(offset)
    )
    if category:
        query = query.where(ChangelogEntry.category == category)
    result = await db.execute(query)
    return list(result.scalars().all())
