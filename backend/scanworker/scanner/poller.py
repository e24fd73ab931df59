# scanworker/scanner/poller.py
"""
Completion poller for fire-and-continue operations.

Control-plane calls (spider, active scan) return an operation id right away;
the work itself runs inside the external tool. await_completion() re-checks
the operation's status until it reports completion or the attempt budget is
spent.

A timeout only stops the *waiting*. The external operation keeps running
inside the tool until it finishes on its own or is stopped explicitly.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from scanworker.errors import OperationTimeout

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 100
DEFAULT_INTERVAL_MS = 2000


@dataclass(frozen=True)
class OperationStatus:
    is_complete: bool
    progress: Optional[str] = None


def await_completion(
    poll_status: Callable[[], OperationStatus],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    interval_ms: int = DEFAULT_INTERVAL_MS,
    *,
    operation: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """
    Poll until complete. Returns the number of status checks made.

    Each check that does not report completion is followed by one
    interval_ms sleep. Raises OperationTimeout after max_attempts checks.
    """
    attempts = 0
    while attempts < max_attempts:
        status = poll_status()
        attempts += 1
        if status.is_complete:
            logger.debug(f"{operation} complete after {attempts} status check(s)")
            return attempts
        logger.debug(f"{operation} progress={status.progress} (check {attempts}/{max_attempts})")
        sleep(interval_ms / 1000.0)

    raise OperationTimeout(
        f"{operation} timed out after {(max_attempts * interval_ms) / 1000:g} seconds"
    )
