from __future__ import annotations

"""Work queue for report jobs.

Producers ``enqueue``; workers ``claim`` a job, process it, then ``ack`` it.
Backends:
- ``memory`` (default): process-local, for development and tests.
- ``redis``: reliable-queue lists shared between processes (see job_queue_redis).
"""

import logging
import os
import queue
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from ..domain.reports import ReportJob

logger = logging.getLogger("tenantdesk.worker")


@dataclass(frozen=True)
class ClaimedJob:
    job: ReportJob
    # Backend handle needed to acknowledge this exact delivery.
    receipt: Any = None


class JobQueue(Protocol):
    def enqueue(self, job: ReportJob) -> str: ...
    def claim(self, timeout: float = 1.0) -> Optional[ClaimedJob]: ...
    def ack(self, claimed: ClaimedJob) -> None: ...
    def size(self) -> int: ...


class InMemoryJobQueue:
    def __init__(self) -> None:
        self._q: "queue.Queue[ReportJob]" = queue.Queue()

    def enqueue(self, job: ReportJob) -> str:
        self._q.put(job)
        logger.info("job_enqueued", extra={"job_id": job.job_id, "backend": "memory"})
        return job.job_id

    def claim(self, timeout: float = 1.0) -> Optional[ClaimedJob]:
        try:
            if timeout <= 0:
                job = self._q.get_nowait()
            else:
                job = self._q.get(timeout=timeout)
        except queue.Empty:
            return None
        return ClaimedJob(job=job)

    def ack(self, claimed: ClaimedJob) -> None:
        self._q.task_done()

    def size(self) -> int:
        return self._q.qsize()


_queue: Optional[JobQueue] = None


def get_job_queue() -> JobQueue:
    global _queue
    if _queue is not None:
        return _queue
    impl = os.getenv("TENANTDESK_QUEUE_IMPL", "memory").lower()
    if impl == "redis":
        from .job_queue_redis import RedisJobQueue

        _queue = RedisJobQueue()
        return _queue
    _queue = InMemoryJobQueue()
    return _queue


def set_job_queue(job_queue: Optional[JobQueue]) -> None:
    global _queue
    _queue = job_queue


def reset_job_queue() -> None:
    set_job_queue(None)
