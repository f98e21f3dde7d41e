from __future__ import annotations

"""Asynchronous AI report pipeline.

Each claimed job walks ``pending -> querying -> rendering -> delivering ->
done``; any AI failure moves it to ``failed`` instead. Jobs are never
re-enqueued from here. Delivery problems are logged and the job still counts
as done, since the answer was produced and rendered.
"""

import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional

from ..core.state_machine import InvalidTransition, is_terminal, is_valid_transition
from ..domain.reports import JobOutcome, JobState, RenderedArtifact, ReportJob
from ..infrastructure.events import publish_event
from ..infrastructure.job_queue import JobQueue, get_job_queue
from ..observability.metrics import observe_job
from .ai_client import AIQueryClient, AIQueryError, get_ai_client
from .messenger import Messenger, get_messenger
from .renderer import ResultRenderer
from .telemetry_sink import record_metric, record_transition

logger = logging.getLogger("tenantdesk.worker")


@dataclass(frozen=True)
class WorkerConfig:
    concurrency: int = 1
    poll_seconds: float = 1.0
    notify_failures: bool = True

    @staticmethod
    def from_env() -> "WorkerConfig":
        try:
            concurrency = max(int(os.getenv("TENANTDESK_WORKER_CONCURRENCY", "1")), 1)
        except ValueError:
            concurrency = 1
        try:
            poll = float(os.getenv("TENANTDESK_WORKER_POLL_SEC", "1.0"))
        except ValueError:
            poll = 1.0
        notify = os.getenv("TENANTDESK_NOTIFY_FAILURES", "1").lower() in ("1", "true", "yes")
        return WorkerConfig(concurrency=concurrency, poll_seconds=poll, notify_failures=notify)


class _JobRun:
    """Tracks the state of one job; never shared between jobs."""

    def __init__(self, job: ReportJob) -> None:
        self.job = job
        self.state = JobState.PENDING
        self.started = time.monotonic()

    def advance(self, target: JobState, **properties: object) -> None:
        if is_terminal(self.state):
            raise InvalidTransition(f"job already {self.state.value}")
        if not is_valid_transition(self.state, target):
            raise InvalidTransition(f"{self.state.value} -> {target.value}")
        record_transition(self.job.job_id, self.job.recipient, self.state.value, target.value, **properties)
        self.state = target


class ReportDispatchWorker:
    def __init__(
        self,
        ai_client: Optional[AIQueryClient] = None,
        renderer: Optional[ResultRenderer] = None,
        messenger: Optional[Messenger] = None,
        job_queue: Optional[JobQueue] = None,
        config: Optional[WorkerConfig] = None,
    ) -> None:
        self._ai_client = ai_client
        self.renderer = renderer or ResultRenderer()
        self._messenger = messenger
        self._queue = job_queue
        self.config = config or WorkerConfig.from_env()

    @property
    def ai_client(self) -> AIQueryClient:
        return self._ai_client or get_ai_client()

    @property
    def messenger(self) -> Messenger:
        return self._messenger or get_messenger()

    @property
    def queue(self) -> JobQueue:
        return self._queue or get_job_queue()

    def process(self, job: ReportJob) -> JobOutcome:
        run = _JobRun(job)
        try:
            run.advance(JobState.QUERYING)
            answer = self.ai_client.ask(job.context, job.query)
        except AIQueryError as exc:
            logger.error(
                "report_query_failed",
                extra={"job_id": job.job_id, "error_kind": exc.kind.value, "attempts": exc.attempts},
            )
            self._notify_failure(job, exc.user_message)
            return self._finish(run, error=exc.kind.value, detail={"attempts": exc.attempts})
        except Exception as exc:
            logger.exception("report_query_crashed", extra={"job_id": job.job_id})
            self._notify_failure(job, "Sorry, the assistant could not answer right now.")
            return self._finish(run, error=type(exc).__name__)

        run.advance(JobState.RENDERING)
        artifact = self.renderer.render(answer, job.output)

        run.advance(JobState.DELIVERING, artifact_kind=artifact.kind.value)
        delivered = self._deliver(job, artifact)

        return self._finish(run, artifact=artifact, delivered=delivered)

    def _deliver(self, job: ReportJob, artifact: RenderedArtifact) -> bool:
        try:
            if artifact.is_document:
                return bool(
                    self.messenger.send_document(
                        job.recipient, artifact.content or b"", artifact.filename or "report", artifact.mime_type or ""
                    )
                )
            return bool(self.messenger.send_text(job.recipient, artifact.text or ""))
        except Exception:
            logger.exception("report_delivery_failed", extra={"job_id": job.job_id})
            return False

    def _notify_failure(self, job: ReportJob, text: str) -> None:
        if not self.config.notify_failures:
            return
        try:
            self.messenger.send_text(job.recipient, text)
        except Exception:
            logger.exception("report_failure_notice_failed", extra={"job_id": job.job_id})

    def _finish(
        self,
        run: _JobRun,
        artifact: Optional[RenderedArtifact] = None,
        delivered: bool = False,
        error: Optional[str] = None,
        detail: Optional[dict] = None,
    ) -> JobOutcome:
        target = JobState.FAILED if error else JobState.DONE
        run.advance(target, delivered=delivered, error=error)
        observe_job(target.value)
        record_metric(
            name="report_job_seconds",
            value=time.monotonic() - run.started,
            properties={"job_id": run.job.job_id, "state": target.value},
        )
        outcome = JobOutcome(
            job_id=run.job.job_id,
            recipient=run.job.recipient,
            state=target,
            artifact_kind=artifact.kind if artifact else None,
            delivered=delivered,
            error=error,
            detail=detail or {},
        )
        if error is None and not delivered:
            logger.warning("report_undelivered", extra={"job_id": run.job.job_id})
        logger.info("report_job_finished", extra={"job_id": run.job.job_id, "state": target.value})
        publish_event(f"report.{target.value}", outcome.model_dump(mode="json"))
        return outcome

    def run_once(self, timeout: Optional[float] = None) -> Optional[JobOutcome]:
        timeout = self.config.poll_seconds if timeout is None else timeout
        claimed = self.queue.claim(timeout=timeout)
        if claimed is None:
            return None
        try:
            return self.process(claimed.job)
        finally:
            self.queue.ack(claimed)

    def run_forever(self, stop: Optional[threading.Event] = None) -> None:
        stop = stop or threading.Event()
        # Resolve lazily-built collaborators once so a missing key pool fails at startup.
        _ = self.ai_client
        logger.info("report_worker_started", extra={"concurrency": self.config.concurrency})

        def loop() -> None:
            while not stop.is_set():
                try:
                    self.run_once()
                except Exception:
                    logger.exception("report_worker_iteration_failed")

        with ThreadPoolExecutor(max_workers=self.config.concurrency, thread_name_prefix="report-worker") as pool:
            for _ in range(self.config.concurrency):
                pool.submit(loop)
        logger.info("report_worker_stopped")
