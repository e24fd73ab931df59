# scanworker/errors.py
"""
Error taxonomy for the scan worker.

Stage-local errors (ParseError) are raised and absorbed inside a single
adapter parse loop. Everything else is stage-terminal: it propagates to the
ScanOrchestrator, which records it on the ScanRecord and re-raises it to the
queue layer.

InvalidInput is the one error that never touches scan-status bookkeeping:
there is no valid scan to update.
"""

from __future__ import annotations

from typing import Optional


class ScanWorkerError(Exception):
    """Base class for every error raised by the worker."""


class InvalidInput(ScanWorkerError):
    """Malformed job payload. Not retried, not recorded on any scan."""


class ScanNotFound(InvalidInput):
    """The job references a scan id with no ScanRecord."""

    def __init__(self, scan_id: str):
        super().__init__(f"Scan record not found for ID: {scan_id}")
        self.scan_id = scan_id


class TargetValidationError(ScanWorkerError):
    """A target URL is empty or not an absolute http(s) URL."""


class ToolNotAvailable(ScanWorkerError):
    """Adapter binary or service could not be reached at initialization."""

    def __init__(self, tool: str, message: str):
        super().__init__(message)
        self.tool = tool


class ExecutionError(ScanWorkerError):
    """
    Non-zero process exit or control-plane transport failure.

    stdout / stderr carry whatever output was captured, for diagnostics.
    """

    def __init__(
        self,
        tool: str,
        message: str,
        *,
        stdout: Optional[str] = None,
        stderr: Optional[str] = None,
        exit_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.tool = tool
        self.stdout = stdout
        self.stderr = stderr
        self.exit_code = exit_code


class ParseError(ScanWorkerError):
    """A single output record could not be parsed."""


class OperationTimeout(ScanWorkerError):
    """A poll loop or process run exceeded its budget."""


class PersistenceError(ScanWorkerError):
    """A store write failed and was rolled back."""
