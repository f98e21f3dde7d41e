"""Report worker entry point.

Run:
  python -m src.tenantdesk.worker            # loop until SIGINT/SIGTERM
  python -m src.tenantdesk.worker --once     # process at most one job
  python -m src.tenantdesk.worker --purge-tokens
"""
from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from typing import List, Optional

from dotenv import load_dotenv

from .infrastructure.token_store import get_token_store
from .services.credential_pool import PoolEmpty
from .services.report_worker import ReportDispatchWorker, WorkerConfig

logger = logging.getLogger("tenantdesk.worker")


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    parser = argparse.ArgumentParser(description="tenantdesk AI report worker")
    parser.add_argument("--once", action="store_true", help="process at most one job and exit")
    parser.add_argument("--timeout", type=float, default=5.0, help="seconds to wait for a job with --once")
    parser.add_argument("--concurrency", type=int, default=None, help="parallel job slots (overrides env)")
    parser.add_argument("--purge-tokens", action="store_true", help="delete expired capability tokens and exit")
    args = parser.parse_args(argv)

    if args.purge_tokens:
        removed = get_token_store().purge_expired()
        logger.info("tokens_purge_finished", extra={"count": removed})
        return 0

    config = WorkerConfig.from_env()
    if args.concurrency:
        config = WorkerConfig(
            concurrency=max(args.concurrency, 1),
            poll_seconds=config.poll_seconds,
            notify_failures=config.notify_failures,
        )
    worker = ReportDispatchWorker(config=config)

    try:
        # Missing API keys are a startup error, not a failed job.
        _ = worker.ai_client
        if args.once:
            outcome = worker.run_once(timeout=args.timeout)
            if outcome is None:
                logger.info("report_worker_idle")
                return 0
            return 0 if outcome.error is None else 1

        stop = threading.Event()

        def _stop(signum, _frame) -> None:
            logger.info("report_worker_signal", extra={"signum": signum})
            stop.set()

        signal.signal(signal.SIGINT, _stop)
        signal.signal(signal.SIGTERM, _stop)
        worker.run_forever(stop)
    except PoolEmpty as exc:
        logger.error("report_worker_misconfigured", extra={"reason": str(exc)})
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
