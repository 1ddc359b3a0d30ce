"""Cache age, jitter, and reload timing derived from HTTP cache semantics."""

from __future__ import annotations

import random
import re
from datetime import UTC, datetime, timedelta

DEFAULT_CACHE_AGE = timedelta(hours=12)
DEFAULT_CACHE_JITTER = timedelta(hours=1)
MIN_CACHE_JITTER = timedelta(seconds=1)
MIN_RELOAD_INTERVAL = timedelta(seconds=1)

_MAX_AGE_PATTERN = re.compile(r"max-age=([0-9]*)")
_RESOLUTION = timedelta(microseconds=1)


def parse_cache_age(cache_control: str | None) -> timedelta:
    """Return the max-age advertised by a Cache-Control header, or the default age."""
    if not cache_control:
        return DEFAULT_CACHE_AGE
    match = _MAX_AGE_PATTERN.search(cache_control)
    if match is None:
        return DEFAULT_CACHE_AGE
    try:
        seconds = int(match.group(1))
    except ValueError:
        return DEFAULT_CACHE_AGE
    return timedelta(seconds=seconds)


def jitter_width(age: timedelta) -> timedelta:
    """Return the jitter window for a cache age.

    Long-lived sources get a fixed window; short-lived ones a third of their age.
    """
    if age > timedelta(hours=1):
        return DEFAULT_CACHE_JITTER
    width = age / 3
    if width < MIN_CACHE_JITTER:
        return MIN_CACHE_JITTER
    return width


def expiry_timestamp(age: timedelta, now: datetime | None = None) -> datetime:
    """Return the second-truncated current time plus age."""
    current = now or datetime.now(UTC)
    return current.replace(microsecond=0) + age


def next_reload_duration(
    jitter: timedelta,
    age: timedelta,
    rng: random.Random | None = None,
) -> timedelta:
    """Return a randomized reload delay within [age - jitter, age], never negative."""
    if jitter <= timedelta(0):
        raise ValueError("jitter must be positive.")
    source = rng or random
    offset = source.randrange(jitter // _RESOLUTION) * _RESOLUTION
    delay = age - offset
    if delay < timedelta(0):
        return timedelta(0)
    return delay
