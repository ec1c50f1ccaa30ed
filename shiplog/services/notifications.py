"""Slack and Discord notifications for new changelog entries.

Dispatch is best effort and independent of the webhook retry queue: a
failed chat message is logged and counted, never raised and never retried.
"""
import logging
from typing import Any

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shiplog.config import get_settings
from shiplog.metrics import NOTIFICATIONS_SENT
from shiplog.models.changelog_entry import ChangelogEntry
from shiplog.models.notification_config import EVENT_NEW_ENTRY, NotificationConfig
from shiplog.models.project import Project

logger = logging.getLogger(__name__)
settings = get_settings()

CATEGORY_LABELS = {
    "feature": ("✨ New Feature", "#22c55e"),
    "fix": ("🐛 Bug Fix", "#ef4444"),
    "improvement": ("🔄 Improvement", "#3b82f6"),
    "breaking": ("💥 Breaking Change", "#f97316"),
}


def _label(category: str) -> tuple[str, str]:
    return CATEGORY_LABELS.get(category, CATEGORY_LABELS["improvement"])


def format_slack_message(entry: ChangelogEntry, project: Project) -> dict[str, Any]:
    label, _ = _label(entry.category)
    changelog_url = f"{settings.public_base_url}/{project.slug}"
    return {
        "blocks": [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": f"{entry.emoji} {project.name} - New Changelog Entry"},
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Category:*\n{label}"},
                    {"type": "mrkdwn", "text": f"*PR:*\n<{entry.pr_url}|#{entry.pr_number}>"},
                ],
            },
            {"type": "section", "text": {"type": "mrkdwn", "text": f"*{entry.summary}*"}},
            {
                "type": "context",
                "elements": [
                    {
                        "type": "mrkdwn",
                        "text": f"By {entry.pr_author} · Merged {entry.pr_merged_at:%Y-%m-%d}",
                    }
                ],
            },
            {"type": "divider"},
            {
                "type": "context",
                "elements": [
                    {"type": "mrkdwn", "text": f"View full changelog → *<{changelog_url}|{project.name}>*"}
                ],
            },
        ]
    }


def format_discord_message(entry: ChangelogEntry, project: Project) -> dict[str, Any]:
    label, color = _label(entry.category)
    return {
        "embeds": [
            {
                "title": f"{entry.emoji} {project.name} - New Changelog Entry",
                "color": int(color.lstrip("#"), 16),
                "fields": [
                    {"name": "Category", "value": label, "inline": True},
                    {"name": "PR", "value": f"[#{entry.pr_number}]({entry.pr_url})", "inline": True},
                    {"name": "Summary", "value": entry.summary},
                    {"name": "Author", "value": entry.pr_author, "inline": True},
                    {"name": "Merged", "value": f"{entry.pr_merged_at:%Y-%m-%d}", "inline": True},
                ],
                "footer": {"text": f"ShipLog - {project.name}"},
                "timestamp": entry.pr_merged_at.isoformat(),
            }
        ]
    }


async def _get_entry_configs(db: AsyncSession, project_id) -> list[NotificationConfig]:
    result = await db.execute(
        select(NotificationConfig)
        .where(NotificationConfig.project_id == project_id)
        .where(NotificationConfig.enabled.is_(True))
    )
    return [config for config in result.scalars().all() if EVENT_NEW_ENTRY in (config.events or [])]


async def notify_new_entry(db: AsyncSession, entry: ChangelogEntry, project: Project) -> dict[str, int]:
    """Post the entry to every enabled integration. Returns sent/failed counts."""
    sent = failed = 0
    if not settings.notifications_enabled:
        return {"sent": sent, "failed": failed}

    try:
        configs = await _get_entry_configs(db, project.id)
    except Exception:
        logger.exception("Failed to load notification configs for project %s", project.id)
        return {"sent": sent, "failed": failed}
    if not configs:
        return {"sent": sent, "failed": failed}

    async with httpx.AsyncClient(timeout=settings.notification_timeout_seconds) as client:
        for config in configs:
            if config.provider == "slack":
                body = format_slack_message(entry, project)
            else:
                body = format_discord_message(entry, project)
            try:
                response = await client.post(config.webhook_url, json=body)
                response.raise_for_status()
                sent += 1
                NOTIFICATIONS_SENT.labels(provider=config.provider, result="sent").inc()
            except httpx.HTTPError as e:
                failed += 1
                NOTIFICATIONS_SENT.labels(provider=config.provider, result="failed").inc()
                logger.warning(
                    "%s notification failed for project %s: %s: %s",
                    config.provider, project.id, type(e).__name__, e,
                )

    return {"sent": sent, "failed": failed}
