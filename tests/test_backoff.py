from datetime import datetime, timedelta, timezone

from shiplog.services.backoff import BACKOFF_DELAYS, delay_for_attempt, next_retry_at


def test_ladder_values():
    assert delay_for_attempt(0) == 30
    assert delay_for_attempt(1) == 120
    assert delay_for_attempt(2) == 600
    assert delay_for_attempt(3) == 3600
    assert delay_for_attempt(4) == 21600


def test_caps_at_max_delay():
    assert delay_for_attempt(5) == 21600
    assert delay_for_attempt(10) == 21600
    assert delay_for_attempt(100) == 21600


def test_non_decreasing():
    delays = [delay_for_attempt(n) for n in range(20)]
    assert delays == sorted(delays)
    assert max(delays) == BACKOFF_DELAYS[-1]


def test_negative_attempts_use_first_delay():
    assert delay_for_attempt(-3) == 30


def test_next_retry_at_offsets_from_now():
    now = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
    assert next_retry_at(1, now) == now + timedelta(seconds=120)
