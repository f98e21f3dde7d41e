from __future__ import annotations

import logging
import os
from typing import Optional

import redis
from pydantic import ValidationError

from ..domain.reports import ReportJob
from .job_queue import ClaimedJob

logger = logging.getLogger("tenantdesk.worker")


class RedisJobQueue:
    """Reliable queue over two Redis lists.

    ``claim`` atomically moves a payload from the pending list to the
    processing list; ``ack`` removes it from processing. A worker that dies
    mid-job leaves its payload in the processing list for inspection or
    redelivery by an operator.
    """

    def __init__(self, client: Optional["redis.Redis"] = None, name: Optional[str] = None) -> None:
        name = name or os.getenv("TENANTDESK_QUEUE_NAME", "ai-report")
        self.pending_key = f"tenantdesk:queue:{name}:pending"
        self.processing_key = f"tenantdesk:queue:{name}:processing"
        if client is None:
            url = os.getenv("REDIS_URL", "redis://localhost:6379/0")
            client = redis.Redis.from_url(url, socket_timeout=30)
        self._client = client

    def enqueue(self, job: ReportJob) -> str:
        self._client.lpush(self.pending_key, job.to_json())
        logger.info("job_enqueued", extra={"job_id": job.job_id, "backend": "redis"})
        return job.job_id

    def claim(self, timeout: float = 1.0) -> Optional[ClaimedJob]:
        if timeout > 0:
            raw = self._client.blmove(self.pending_key, self.processing_key, timeout, "RIGHT", "LEFT")
        else:
            raw = self._client.lmove(self.pending_key, self.processing_key, "RIGHT", "LEFT")
        if raw is None:
            return None
        try:
            job = ReportJob.from_json(raw)
        except ValidationError:
            logger.error("job_payload_invalid", extra={"queue": self.pending_key}, exc_info=True)
            self._client.lrem(self.processing_key, 1, raw)
            return None
        return ClaimedJob(job=job, receipt=raw)

    def ack(self, claimed: ClaimedJob) -> None:
        self._client.lrem(self.processing_key, 1, claimed.receipt)

    def size(self) -> int:
        return int(self._client.llen(self.pending_key))
