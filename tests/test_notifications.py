import json
from datetime import datetime, timezone

import httpx
import pytest

import shiplog.services.notifications as notifications_mod
from shiplog.database import AsyncSessionLocal
from shiplog.models.changelog_entry import ChangelogEntry
from shiplog.models.notification_config import EVENT_NEW_RELEASE, NotificationConfig
from shiplog.services.notifications import format_discord_message, format_slack_message, notify_new_entry


def _entry(project=None, category="fix") -> ChangelogEntry:
    return ChangelogEntry(
        project_id=project.id if project else None,
        pr_number=42,
        pr_title="Fix login redirect loop",
        pr_url="https://github.com/acme/acme/pull/42",
        pr_author="octocat",
        pr_merged_at=datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc),
        category=category,
        summary="Fixed a redirect loop on login.",
        emoji="🐛",
    )


class _Project:
    id = None
    name = "Acme"
    slug = "acme"


def _install_transport(monkeypatch, handler):
    real_client = httpx.AsyncClient

    def client_factory(**kwargs):
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(notifications_mod.httpx, "AsyncClient", client_factory)


async def _add_config(project, provider, url, **fields):
    async with AsyncSessionLocal() as session:
        session.add(NotificationConfig(project_id=project.id, provider=provider, webhook_url=url, **fields))
        await session.commit()


def test_format_slack_message():
    message = format_slack_message(_entry(), _Project())

    header = message["blocks"][0]["text"]["text"]
    assert header == "🐛 Acme - New Changelog Entry"
    fields = [f["text"] for f in message["blocks"][1]["fields"]]
    assert "*Category:*\n🐛 Bug Fix" in fields
    assert "*PR:*\n<https://github.com/acme/acme/pull/42|#42>" in fields
    assert "Merged 2026-10-01" in message["blocks"][3]["elements"][0]["text"]


def test_format_discord_message():
    embed = format_discord_message(_entry(category="breaking"), _Project())["embeds"][0]

    assert embed["color"] == 0xF97316
    assert {"name": "Category", "value": "💥 Breaking Change", "inline": True} in embed["fields"]
    assert embed["footer"] == {"text": "ShipLog - Acme"}
    assert embed["timestamp"].startswith("2026-10-01T12:00:00")


def test_unknown_category_uses_improvement_label():
    embed = format_discord_message(_entry(category="chore"), _Project())["embeds"][0]
    assert embed["fields"][0]["value"] == "🔄 Improvement"


@pytest.mark.asyncio
async def test_notify_posts_to_each_enabled_integration(project, monkeypatch):
    await _add_config(project, "slack", "https://hooks.slack.test/a")
    await _add_config(project, "discord", "https://discord.test/api/webhooks/b")
    await _add_config(project, "slack", "https://hooks.slack.test/disabled", enabled=False)
    await _add_config(project, "slack", "https://hooks.slack.test/releases", events=[EVENT_NEW_RELEASE])

    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(204)

    _install_transport(monkeypatch, handler)

    async with AsyncSessionLocal() as session:
        result = await notify_new_entry(session, _entry(project), project)

    assert result == {"sent": 2, "failed": 0}
    by_url = {str(r.url): json.loads(r.content) for r in requests}
    assert set(by_url) == {"https://hooks.slack.test/a", "https://discord.test/api/webhooks/b"}
    assert "blocks" in by_url["https://hooks.slack.test/a"]
    assert "embeds" in by_url["https://discord.test/api/webhooks/b"]


@pytest.mark.asyncio
async def test_notify_counts_failures_without_raising(project, monkeypatch):
    await _add_config(project, "slack", "https://hooks.slack.test/broken")
    await _add_config(project, "discord", "https://discord.test/api/webhooks/ok")

    def handler(request: httpx.Request) -> httpx.Response:
        if "broken" in str(request.url):
            return httpx.Response(500)
        return httpx.Response(204)

    _install_transport(monkeypatch, handler)

    async with AsyncSessionLocal() as session:
        result = await notify_new_entry(session, _entry(project), project)

    assert result == {"sent": 1, "failed": 1}


@pytest.mark.asyncio
async def test_notify_disabled_by_setting(project, monkeypatch):
    await _add_config(project, "slack", "https://hooks.slack.test/a")
    monkeypatch.setattr(notifications_mod.settings, "notifications_enabled", False)

    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    _install_transport(monkeypatch, handler)

    async with AsyncSessionLocal() as session:
        result = await notify_new_entry(session, _entry(project), project)

    assert result == {"sent": 0, "failed": 0}
