from __future__ import annotations

"""Best-effort event fan-out over Redis pub/sub.

Disabled unless ``REDIS_URL`` is set. Publishing never raises; a failed
publish drops the connection so the next event reconnects.
"""

import json
import logging
import os
from typing import Any, Dict, Optional

try:  # pragma: no cover - optional dependency
    import redis  # type: ignore
except Exception:  # pragma: no cover - optional dependency
    redis = None  # type: ignore

logger = logging.getLogger("tenantdesk.events")

CHANNEL_PREFIX = "tenantdesk.events."


class _RedisPublisher:
    def __init__(self, url: str) -> None:
        self._url = url
        self._client = None
        self._connect()

    def _connect(self) -> None:
        if redis is None:
            return
        try:
            self._client = redis.Redis.from_url(self._url, socket_timeout=0.5)
            self._client.ping()
        except Exception:
            logger.debug("event_publisher_connect_failed", exc_info=True)
            self._client = None

    def publish(self, channel: str, payload: Dict[str, Any]) -> bool:
        if not self._client:
            self._connect()
        if not self._client:
            return False
        try:
            self._client.publish(channel, json.dumps(payload, default=str))
        except Exception:
            logger.debug("event_publish_failed", extra={"channel": channel}, exc_info=True)
            self._client = None
            return False
        return True


_publisher: Optional[_RedisPublisher] = None


def _get_publisher() -> Optional[_RedisPublisher]:
    global _publisher
    if _publisher is not None:
        return _publisher
    url = os.getenv("REDIS_URL")
    if not url:
        return None
    _publisher = _RedisPublisher(url)
    return _publisher


def publish_event(event_type: str, payload: Dict[str, Any]) -> bool:
    publisher = _get_publisher()
    if not publisher:
        return False
    return publisher.publish(f"{CHANNEL_PREFIX}{event_type}", payload)


def load_event_client() -> Optional[_RedisPublisher]:
    return _get_publisher()


def reset_event_client() -> None:
    global _publisher
    _publisher = None
