"""Retry delay ladder for the webhook queue."""
from datetime import datetime, timedelta, timezone
from typing import Optional

# 30s, 2min, 10min, 1hr, 6hr
BACKOFF_DELAYS = (30, 120, 600, 3600, 21600)


def delay_for_attempt(attempts: int) -> int:
    """Seconds to wait before the next retry after ``attempts`` attempts.

    Past the end of the ladder the last (largest) delay is reused.
    """
    index = min(max(attempts, 0), len(BACKOFF_DELAYS) - 1)
    return BACKOFF_DELAYS[index]


def next_retry_at(attempts: int, now: Optional[datetime] = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    return now + timedelta(seconds=delay_for_attempt(attempts))
