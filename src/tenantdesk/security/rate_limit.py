from __future__ import annotations

"""Fixed-window, in-process rate limiting keyed by action and caller."""

import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Dict, Tuple


@dataclass
class _RateLimitEntry:
    count: int
    window_end: datetime


_LIMIT_STORE: Dict[Tuple[str, str], _RateLimitEntry] = {}
_LOCK = Lock()


class RateLimitExceeded(Exception):
    def __init__(self, retry_after_seconds: int) -> None:
        super().__init__("Rate limit exceeded")
        self.retry_after_seconds = retry_after_seconds


def rate_limit_action(
    key: str,
    identifier: str,
    *,
    limit_env: str,
    window_env: str,
    default_limit: int,
    default_window_seconds: int,
) -> None:
    """Count one action for ``identifier``.

    Raises:
        RateLimitExceeded when the window's budget is spent; retry_after_seconds
        says when the window resets.
    """

    if _rate_limiting_disabled():
        return

    limit = _env_int(limit_env, default_limit)
    window_seconds = _env_int(window_env, default_window_seconds)

    now = datetime.now(timezone.utc)
    store_key = (key, identifier)
    with _LOCK:
        entry = _LIMIT_STORE.get(store_key)
        if entry and entry.window_end > now:
            if entry.count >= limit:
                retry_after = int((entry.window_end - now).total_seconds())
                raise RateLimitExceeded(max(retry_after, 1))
            entry.count += 1
            return
        _LIMIT_STORE[store_key] = _RateLimitEntry(count=1, window_end=now + timedelta(seconds=window_seconds))


def limit_assistant_query(recipient: str) -> None:
    rate_limit_action(
        "assistant",
        recipient,
        limit_env="ASSISTANT_RATE_LIMIT",
        window_env="ASSISTANT_RATE_WINDOW_SEC",
        default_limit=60,
        default_window_seconds=60,
    )


def _env_int(name: str, default: int) -> int:
    if not name:
        return default
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
        return value if value > 0 else default
    except ValueError:
        return default


def _rate_limiting_disabled() -> bool:
    flag = os.getenv("TENANTDESK_RATE_LIMIT_DISABLED")
    if flag is not None:
        return flag.lower() in {"1", "true", "yes", "on"}
    if os.getenv("PYTEST_CURRENT_TEST"):
        return True
    return False


def reset_rate_limits() -> None:
    """Clear in-memory counters (useful for tests)."""

    with _LOCK:
        _LIMIT_STORE.clear()
