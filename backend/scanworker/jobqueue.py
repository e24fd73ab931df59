# scanworker/jobqueue.py
"""
Redis list-backed job queue.

Layout (for SCAN_QUEUE_NAME = "scans"):
    scans            pending jobs; LPUSH to enqueue, BRPOP to take (FIFO)
    scans:failed     jobs that exhausted their attempts or were malformed
    scan-notifications
                     {"scanId", "projectId"} messages for downstream consumers

Each job is a JSON envelope:
    {"id": "<uuid>", "data": {"scanId": ..., "request": {...}}, "attempts": 0}

A job that raises is pushed back until attempts reaches max_attempts.
A job taken by a worker process that dies mid-scan is gone from the list
and is not redelivered; its scan stays in_progress until the reap-stalled
command fails it.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Dict, Optional

import redis

logger = logging.getLogger(__name__)


def attempts_of(envelope: Dict[str, Any]) -> int:
    """Attempts already spent on a job; anything unreadable counts as 0."""
    try:
        return max(0, int(envelope.get("attempts") or 0))
    except (TypeError, ValueError):
        return 0


class RedisJobQueue:
    def __init__(
        self,
        client: "redis.Redis",
        queue_name: str = "scans",
        notification_queue: str = "scan-notifications",
        max_attempts: int = 3,
    ):
        self.r = client
        self.queue_name = queue_name
        self.failed_queue = f"{queue_name}:failed"
        self.notification_queue = notification_queue
        self.max_attempts = max_attempts

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisJobQueue":
        return cls(redis.Redis.from_url(url, decode_responses=True), **kwargs)

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def enqueue(self, data: Dict[str, Any], job_id: Optional[str] = None) -> str:
        job_id = job_id or uuid.uuid4().hex
        envelope = {"id": job_id, "data": data, "attempts": 0}
        self.r.lpush(self.queue_name, json.dumps(envelope))
        logger.debug(f"Enqueued job {job_id} on {self.queue_name}")
        return job_id

    def dequeue(self, timeout: int = 5) -> Optional[Dict[str, Any]]:
        """Block up to timeout seconds for the next job. None when the queue is idle."""
        item = self.r.brpop(self.queue_name, timeout=timeout)
        if not item:
            return None
        _key, raw = item
        try:
            envelope = json.loads(raw)
        except ValueError:
            logger.error(f"Discarding undecodable job on {self.queue_name}: {raw[:200]!r}")
            self.r.lpush(self.failed_queue, raw)
            return None
        if not isinstance(envelope, dict) or "data" not in envelope:
            # Bare payload pushed by a producer that skips the envelope
            envelope = {"id": uuid.uuid4().hex, "data": envelope, "attempts": 0}
        envelope.setdefault("id", uuid.uuid4().hex)
        envelope["attempts"] = attempts_of(envelope)
        return envelope

    def retry_or_bury(self, envelope: Dict[str, Any], error: str) -> bool:
        """
        Count a failed attempt. Re-queue while attempts remain.

        Returns True if the job was re-queued, False if it was buried.
        """
        envelope = dict(envelope)
        envelope["attempts"] = attempts_of(envelope) + 1
        envelope["lastError"] = error

        if envelope["attempts"] < self.max_attempts:
            self.r.lpush(self.queue_name, json.dumps(envelope))
            logger.info(
                f"Job {envelope['id']} re-queued "
                f"(attempt {envelope['attempts']}/{self.max_attempts})"
            )
            return True

        self.bury(envelope, error)
        return False

    def bury(self, envelope: Dict[str, Any], error: str) -> None:
        envelope = dict(envelope)
        envelope["lastError"] = error
        self.r.lpush(self.failed_queue, json.dumps(envelope))
        logger.warning(f"Job {envelope.get('id')} moved to {self.failed_queue}: {error}")

    def pending_count(self) -> int:
        return int(self.r.llen(self.queue_name))

    def failed_count(self) -> int:
        return int(self.r.llen(self.failed_queue))

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def publish_notification(self, message: Dict[str, Any]) -> None:
        self.r.lpush(self.notification_queue, json.dumps(message))
        logger.debug(f"Published notification to {self.notification_queue}: {message}")
