# scanworker/worker.py
"""
Scan worker: pulls jobs from the Redis queue and runs them through the
ScanOrchestrator on a bounded thread pool.

Each job runs inside its own Flask application context, so each gets its
own SQLAlchemy session. Jobs never share rows: everything is keyed by scan id.

Usage:
    flask --app scanworker worker          # via the Flask CLI
    scanworker-worker                      # console script

Job outcomes:
    returns normally          → done
    InvalidInput / not found  → moved to <queue>:failed, never retried
    any other exception       → re-queued until JOB_MAX_ATTEMPTS, then failed
"""

from __future__ import annotations

import logging
import signal
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Optional

from flask import Flask

from scanworker.errors import InvalidInput
from scanworker.jobqueue import RedisJobQueue, attempts_of
from scanworker.scanner.adapters import build_adapters
from scanworker.scanner.orchestrator import ScanOrchestrator
from scanworker.scanner.store import ScanStore

logger = logging.getLogger(__name__)


def build_orchestrator(app: Flask, queue: Optional[RedisJobQueue] = None) -> ScanOrchestrator:
    """Wire adapters, store and notification publisher from app config."""
    queue = queue or app.extensions.get("scan_queue")
    adapters = build_adapters(app.config)
    notifier = queue.publish_notification if queue is not None else None
    return ScanOrchestrator(adapters, ScanStore(), notifier=notifier)


class ScanWorker:
    """
    Poll loop on a daemon thread plus a pool of concurrency job threads.

    A semaphore bounds in-flight jobs, so the loop only takes a job off the
    queue when a pool slot is free and nothing sits unstarted in memory.
    """

    def __init__(
        self,
        app: Flask,
        queue: RedisJobQueue,
        orchestrator: ScanOrchestrator,
        concurrency: int = 10,
        block_timeout: int = 5,
    ):
        self.app = app
        self.queue = queue
        self.orchestrator = orchestrator
        self.concurrency = max(1, concurrency)
        self.block_timeout = block_timeout

        self._stop_event = threading.Event()
        self._slots = threading.BoundedSemaphore(self.concurrency)
        self._pool: Optional[ThreadPoolExecutor] = None
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Single job
    # ------------------------------------------------------------------

    def process_job(self, envelope: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Run one job envelope to completion. Never raises."""
        job_id = envelope.get("id")
        data = envelope.get("data")
        scan_id = data.get("scanId") if isinstance(data, dict) else None
        logger.info(f"Job {job_id} active: scan {scan_id} (attempt {attempts_of(envelope) + 1})")

        with self.app.app_context():
            try:
                summary = self.orchestrator.run_scan(data)
            except InvalidInput as e:
                logger.error(f"Job {job_id} rejected: {e}")
                self.queue.bury(envelope, str(e))
                return None
            except Exception as e:
                logger.exception(f"Job {job_id} failed: scan {scan_id}: {e}")
                self.queue.retry_or_bury(envelope, str(e))
                return None

        logger.info(
            f"Job {job_id} completed: scan {scan_id}, "
            f"{summary.get('totalFindings', 0)} finding(s)"
        )
        return summary

    def _run_and_release(self, envelope: Dict[str, Any]) -> None:
        try:
            self.process_job(envelope)
        finally:
            self._slots.release()

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def _loop(self) -> None:
        logger.info(
            f"Worker started: queue={self.queue.queue_name} concurrency={self.concurrency}"
        )
        while not self._stop_event.is_set():
            if not self._slots.acquire(timeout=1):
                continue
            try:
                envelope = self.queue.dequeue(timeout=self.block_timeout)
            except Exception:
                self._slots.release()
                logger.exception("Worker error while reading the queue")
                self._stop_event.wait(self.block_timeout)
                continue

            if envelope is None:
                self._slots.release()
                continue

            self._pool.submit(self._run_and_release, envelope)

        logger.info("Worker stopped")

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            logger.warning("Worker already running")
            return

        self._stop_event.clear()
        self._pool = ThreadPoolExecutor(
            max_workers=self.concurrency, thread_name_prefix="scan-job"
        )
        self._thread = threading.Thread(
            target=self._loop, daemon=True, name="scan-worker"
        )
        self._thread.start()

    def stop(self, wait: bool = True) -> None:
        """Stop taking jobs. With wait, let in-flight scans finish."""
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=self.block_timeout + 5)
            self._thread = None
        if self._pool:
            self._pool.shutdown(wait=wait)
            self._pool = None

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_forever(self) -> None:
        """Start, then block until SIGINT / SIGTERM."""
        self.start()

        def _handle_signal(signum, _frame):
            logger.info(f"Received signal {signum}, shutting down")
            self._stop_event.set()

        signal.signal(signal.SIGINT, _handle_signal)
        signal.signal(signal.SIGTERM, _handle_signal)

        while not self._stop_event.wait(1):
            pass
        self.stop(wait=True)


def create_worker(app: Flask) -> ScanWorker:
    queue: RedisJobQueue = app.extensions["scan_queue"]
    return ScanWorker(
        app,
        queue,
        build_orchestrator(app, queue),
        concurrency=app.config["WORKER_CONCURRENCY"],
    )


def main() -> None:
    from scanworker import create_app

    app = create_app()
    create_worker(app).run_forever()


if __name__ == "__main__":
    main()
