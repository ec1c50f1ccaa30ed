import os
import json
import sqlite3
from datetime import datetime, date, timezone
from pathlib import Path

import pytest

os.environ.setdefault("USE_SQLITE", "true")
os.environ.setdefault("SQLITE_URL", "sqlite+aiosqlite:///./data/test.db")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
# No key: the categorizer goes straight to the keyword fallback, no network
os.environ["OPENAI_API_KEY"] = ""

# Avoid deprecated sqlite3 default datetime adapters in Python 3.12+.
sqlite3.register_adapter(datetime, lambda value: value.isoformat(sep=" "))
sqlite3.register_adapter(date, lambda value: value.isoformat())

WEBHOOK_SECRET = "test-webhook-secret"
REPO_ID = 987654


@pytest.fixture(scope="session")
def sqlite_db_path() -> Path:
    return Path("data/test.db")


@pytest.fixture(autouse=True, scope="session")
def _ensure_test_db_dir(sqlite_db_path: Path) -> None:
    sqlite_db_path.parent.mkdir(parents=True, exist_ok=True)
    if sqlite_db_path.exists():
        sqlite_db_path.unlink()


@pytest.fixture
async def clean_db():
    """Fresh tables for every test; engine disposed so no connection outlives its event loop."""
    from shiplog.database import Base, AsyncSessionLocal, dispose_engine, init_db

    await init_db()
    async with AsyncSessionLocal() as session:
        for table in reversed(Base.metadata.sorted_tables):
            await session.execute(table.delete())
        await session.commit()

    yield

    await dispose_engine()


@pytest.fixture
async def project(clean_db):
    from shiplog.database import AsyncSessionLocal
    from shiplog.models.project import Project

    project = Project(
        github_repo_id=REPO_ID,
        name="Acme",
        slug="acme",
        full_name="acme/acme",
        webhook_secret=WEBHOOK_SECRET,
    )
    async with AsyncSessionLocal() as session:
        session.add(project)
        await session.commit()
    return project


def merged_pr_payload(
    pr_number: int = 42,
    title: str = "Add dark mode support",
    repo_id: int = REPO_ID,
    action: str = "closed",
    merged: bool = True,
) -> dict:
    return {
        "action": action,
        "pull_request": {
            "number": pr_number,
            "title": title,
            "body": "Adds a dark theme toggle to the settings page.",
            "html_url": f"https://github.com/acme/acme/pull/{pr_number}",
            "merged": merged,
            "merged_at": "2026-10-01T12:00:00Z",
            "user": {"login": "octocat", "avatar_url": "https://avatars.example/octocat.png"},
        },
        "repository": {"id": repo_id, "full_name": "acme/acme"},
    }


def signed_request(payload: dict, secret: str = WEBHOOK_SECRET, event: str = "pull_request"):
    """Raw body and headers as GitHub would send them."""
    from shiplog.services.webhook_intake import compute_signature

    body = json.dumps(payload).encode()
    headers = {
        "Content-Type": "application/json",
        "X-GitHub-Event": event,
        "X-Hub-Signature-256": compute_signature(secret, body),
    }
    return body, headers


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything is stored in UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
