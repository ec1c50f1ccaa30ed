from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shiplog.models.project import Project


async def get_project_by_repo_id(db: AsyncSession, repo_id: int) -> Optional[Project]:
    """Resolve the project tracking a GitHub repository, oldest connection first."""
    result = await db.execute(
        select(Project)
        .where(Project.github_repo_id == repo_id)
        .order_by(Project.created_at.asc())
        .limit(1)
    )
    return result.scalar_one_or_none()
