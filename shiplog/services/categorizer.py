import asyncio
import json
import logging
import re
from typing import Any, Optional

from openai import AsyncOpenAI

from shiplog.config import get_settings
from shiplog.metrics import CATEGORIZATION_FALLBACKS
from shiplog.schemas.webhook import Categorization

logger = logging.getLogger(__name__)

settings = get_settings()

CATEGORY_EMOJI = {
    "feature": "✨",
    "fix": "🐛",
    "improvement": "💅",
    "breaking": "⚠️",
}
DEFAULT_CATEGORY = "improvement"

# Checked in order; a word starting with any stem matches ("Removes" -> remov)
KEYWORD_RULES = [
    ("breaking", re.compile(r"\b(break|breaking|deprecat|remov|migration)", re.IGNORECASE)),
    ("fix", re.compile(r"\b(fix|bug|patch|hotfix|resolve|issue|error|crash)", re.IGNORECASE)),
    ("feature", re.compile(r"\b(feat|add|new|implement|introduc|creat|launch)", re.IGNORECASE)),
]

SYSTEM_PROMPT = """You are a changelog assistant for a software project. Your job is to categorize pull requests and write concise, user-friendly summaries.

Given a PR title, description, and optional diff summary, you must:
1. Categorize it as one of: feature, fix, improvement, breaking
2. Write a clear, concise summary (1-2 sentences max) that a non-technical user could understand
3. Choose an appropriate emoji

Categories:
- feature: New functionality, new capabilities, new integrations
- fix: Bug fixes, error corrections, crash fixes
- improvement: Performance improvements, refactors, UX enhancements, documentation updates
- breaking: Breaking changes, API changes, deprecations, major version bumps

Rules:
- Keep summaries under 100 words
- Use active voice ("Added dark mode" not "Dark mode was added")
- Focus on user impact, not implementation details
- Don't mention PR numbers or technical jargon unless necessary

Respond in JSON format:
{"category": "feature|fix|improvement|breaking", "summary": "Your concise summary here", "emoji": "appropriate emoji"}"""


class CategorizationError(Exception):
    """The categorization service failed or returned something unusable."""


def category_emoji(category: str) -> str:
    return CATEGORY_EMOJI.get(category, CATEGORY_EMOJI[DEFAULT_CATEGORY])


def fallback_categorization(title: Optional[str]) -> Categorization:
    """Keyword heuristic over the PR title. Never raises."""
    title = title or ""
    category = DEFAULT_CATEGORY
    for candidate, pattern in KEYWORD_RULES:
        if pattern.search(title):
            category = candidate
            break
    return Categorization(category=category, summary=title, emoji=category_emoji(category))


def validate_categorization(raw: Any, title: str) -> Categorization:
    """Coerce a service response into a Categorization, field by field."""
    if not isinstance(raw, dict):
        raise CategorizationError(f"Expected a JSON object, got {type(raw).__name__}")

    category = raw.get("category")
    if not isinstance(category, str) or category not in CATEGORY_EMOJI:
        category = DEFAULT_CATEGORY

    summary = raw.get("summary")
    if not isinstance(summary, str) or not summary.strip():
        summary = title

    emoji = raw.get("emoji")
    if not isinstance(emoji, str) or not emoji.strip():
        emoji = category_emoji(category)

    return Categorization(category=category, summary=summary.strip(), emoji=emoji.strip())


def build_user_message(title: str, body: Optional[str] = None, diff: Optional[str] = None) -> str:
    message = f"PR Title: {title}\n"
    if body:
        message += f"\nPR Description:\n{body[:settings.categorization_max_body_chars]}\n"
    if diff:
        message += f"\nDiff Summary:\n{diff[:settings.categorization_max_diff_chars]}\n"
    return message


class ChangelogCategorizer:
    """Categorizes merged PRs with OpenAI, degrading to the keyword fallback."""

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None):
        self.api_key = settings.openai_api_key if api_key is None else api_key
        self.model = model or settings.openai_model
        self._client: Optional[AsyncOpenAI] = None

    @property
    def client(self) -> Optional[AsyncOpenAI]:
        if not self.api_key:
            return None
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.api_key,
                timeout=settings.categorization_timeout_seconds,
                max_retries=0,
            )
        return self._client

    async def categorize_strict(
        self,
        title: str,
        body: Optional[str] = None,
        diff: Optional[str] = None,
    ) -> Categorization:
        """Call the categorization service; raise CategorizationError on any failure."""
        client = self.client
        if client is None:
            raise CategorizationError("OpenAI API key is not configured")

        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": build_user_message(title, body, diff)},
                ],
                temperature=0.3,
                max_tokens=300,
                response_format={"type": "json_object"},
            )
        except Exception as e:
            raise CategorizationError(f"{type(e).__name__}: {e}") from e

        try:
            content = response.choices[0].message.content if response.choices else None
        except (AttributeError, IndexError, TypeError) as e:
            raise CategorizationError(f"Unexpected categorization response shape: {e}") from e
        if not content:
            raise CategorizationError("Empty categorization response")
        try:
            raw = json.loads(content)
        except (TypeError, json.JSONDecodeError) as e:
            raise CategorizationError(f"Malformed categorization response: {e}") from e
        return validate_categorization(raw, title)

    async def categorize(
        self,
        title: str,
        body: Optional[str] = None,
        diff: Optional[str] = None,
    ) -> Categorization:
        try:
            return await self.categorize_strict(title, body, diff)
        except Exception as e:
            logger.warning(
                "AI categorization failed, using keyword fallback: %s: %s", type(e).__name__, e
            )
            CATEGORIZATION_FALLBACKS.inc()
            return fallback_categorization(title)

    async def categorize_batch(self, prs: list[dict[str, Any]]) -> list[Categorization]:
        """Categorize many PRs concurrently; results keep the input order."""
        semaphore = asyncio.Semaphore(max(settings.categorization_batch_size, 1))

        async def _one(pr: dict[str, Any]) -> Categorization:
            async with semaphore:
                return await self.categorize(pr.get("title") or "", pr.get("body"), pr.get("diff"))

        return list(await asyncio.gather(*[_one(pr) for pr in prs]))


_categorizer: Optional[ChangelogCategorizer] = None


def get_categorizer() -> ChangelogCategorizer:
    global _categorizer
    if _categorizer is None:
        _categorizer = ChangelogCategorizer()
    return _categorizer
