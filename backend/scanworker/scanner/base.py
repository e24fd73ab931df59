# scanworker/scanner/base.py
"""
Base classes for the scan pipeline.

Architecture:
    ScanJob flows through:  Adapters → Normalizers → Aggregation → ScanStore

BaseAdapter:  Drives one external tool. Translates a uniform
              (targets, options) request into the tool's invocation and the
              tool's output into RawFindings.
              Adapters NEVER classify severity; they only gather records.

Normalizers:  Map each adapter's RawFindings into FindingDrafts (the
              canonical finding shape) with severity / confidence / risk.

There are exactly two adapter styles:

    ProcessAdapter     spawn-and-collect: one external process whose stdout
                       is newline-delimited JSON (nuclei, katana).
    ControlApiAdapter  start/poll/fetch: remote control-plane calls that return
                       an operation handle and need the completion poller
                       before results can be fetched (ZAP).

Adding a tool means adding a subclass of one of these, never touching the
orchestrator.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import subprocess
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import urlparse

from scanworker.errors import (
    ExecutionError,
    InvalidInput,
    OperationTimeout,
    ParseError,
    TargetValidationError,
    ToolNotAvailable,
)
from scanworker.scanner.poller import (
    DEFAULT_INTERVAL_MS,
    DEFAULT_MAX_ATTEMPTS,
    OperationStatus,
    await_completion,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def find_binary(binary_name: str) -> Optional[str]:
    """Find a tool binary on PATH or in the usual Go / local install dirs."""
    binary = shutil.which(binary_name)
    if binary:
        return binary

    common_paths = [
        f"/usr/local/bin/{binary_name}",
        f"/usr/bin/{binary_name}",
        os.path.expanduser(f"~/go/bin/{binary_name}"),
        os.path.expanduser(f"~/.local/bin/{binary_name}"),
    ]
    for path in common_paths:
        if os.path.isfile(path) and os.access(path, os.X_OK):
            return path

    return None


def _positive_int(value: Any, key: str) -> Optional[int]:
    if value is None:
        return None
    message = f"Invalid job data: {key} must be a positive integer"
    if isinstance(value, bool) or isinstance(value, float):
        raise InvalidInput(message)
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise InvalidInput(message)
    if number <= 0:
        raise InvalidInput(message)
    return number


# ---------------------------------------------------------------------------
# Data structures: these flow through the entire pipeline
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ScanRequest:
    target_urls: Tuple[str, ...]
    severity_filter: Tuple[str, ...] = ()
    rate_limit: Optional[int] = None
    timeout_minutes: Optional[int] = None

    def to_options(self) -> Dict[str, Any]:
        """Adapter options; unset fields are left out so adapter defaults apply."""
        options: Dict[str, Any] = {}
        if self.severity_filter:
            options["severity_filter"] = list(self.severity_filter)
        if self.rate_limit is not None:
            options["rate_limit"] = self.rate_limit
        if self.timeout_minutes is not None:
            options["timeout_minutes"] = self.timeout_minutes
        return options


@dataclass(frozen=True)
class ScanJob:
    """
    One unit of queue work: {scanId, request}. Immutable once built.

    Accepts both key spellings seen on the queue:
        severityLevels / severityFilter
        timeout / timeoutMinutes
    """
    scan_id: str
    request: ScanRequest

    @classmethod
    def from_payload(cls, payload: Any) -> "ScanJob":
        if not isinstance(payload, Mapping):
            raise InvalidInput("Invalid job data: expected an object")

        scan_id = payload.get("scanId")
        request = payload.get("request")
        if not isinstance(request, Mapping):
            request = {}
        target_urls = request.get("targetUrls")

        if not scan_id or not target_urls:
            raise InvalidInput("Invalid job data: scanId and targetUrls are required")
        if isinstance(target_urls, str) or not isinstance(target_urls, (list, tuple)):
            raise InvalidInput("Invalid job data: targetUrls must be a list")

        severity = request.get("severityFilter", request.get("severityLevels")) or []
        if isinstance(severity, str):
            severity = [severity]
        seen: List[str] = []
        for level in severity:
            level = str(level).strip().lower()
            if level and level not in seen:
                seen.append(level)

        timeout = request.get("timeoutMinutes", request.get("timeout"))

        return cls(
            scan_id=str(scan_id),
            request=ScanRequest(
                target_urls=tuple(str(u) for u in target_urls),
                severity_filter=tuple(seen),
                rate_limit=_positive_int(request.get("rateLimit"), "rateLimit"),
                timeout_minutes=_positive_int(timeout, "timeout"),
            ),
        )


@dataclass
class RawFinding:
    """
    One unnormalized record in a tool's native schema. Never persisted.

    source is the adapter name; the normalizer registry dispatches on it.
    """
    source: str
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RawResult:
    """
    Standardized output of one adapter stage.

    Fields:
        adapter_name:  Which adapter produced this.
        findings:      Parsed records, malformed ones already dropped.
        warnings:      Non-fatal tool output (process stderr).
        dropped:       How many records failed to parse.
        metadata:      Invocation details for logs (command, context, ids).
    """
    adapter_name: str
    findings: List[RawFinding] = field(default_factory=list)
    warnings: Optional[str] = None
    dropped: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class FindingDraft:
    """
    A canonical finding produced by a normalizer, ready to be persisted.

    Mirrors the ScanFinding model column for column. metadata is an opaque
    bag of tool-specific values; nothing downstream may depend on its keys.
    """
    # Required
    scan_id: str
    source: str
    name: str
    description: str
    severity: str                       # critical, high, medium, low, info
    plugin_id: str
    url: str

    # Classification (optional)
    confidence: Optional[str] = None    # confirmed, high, medium, low
    risk_level: Optional[str] = None    # high, medium, low, info
    risk_score: Optional[float] = None
    cve_id: Optional[str] = None
    cwe_ids: List[str] = field(default_factory=list)
    wasc_ids: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    solution: Optional[str] = None
    reference: Optional[str] = None

    # Evidence
    method: Optional[str] = None
    parameter: Optional[str] = None
    attack: Optional[str] = None
    evidence: Optional[str] = None
    other_info: Optional[str] = None
    request_headers: Optional[Dict[str, str]] = None
    request_body: Optional[str] = None
    response_headers: Optional[Dict[str, str]] = None

    metadata: Dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Abstract base classes
# ---------------------------------------------------------------------------

class BaseAdapter(ABC):
    """
    Capability shared by every adapter.

    Direct use:
        result = adapter.execute(["https://example.com"], {"rate_limit": 50})

    Orchestrated use (stage hooks, called in this order):
        context = adapter.context_name(scan_id)
        adapter.acquire(context, targets)
        adapter.scan_target(target, options, context)   # once per target
        adapter.collect(context)
        adapter.release(context)                        # always
    """

    style: str = ""

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique adapter identifier. Used as RawFinding.source."""
        ...

    def validate_targets(self, urls: Sequence[str]) -> None:
        """Raise TargetValidationError unless every URL is absolute http(s)."""
        if not urls:
            raise TargetValidationError("No targets provided")
        for url in urls:
            if not isinstance(url, str) or not url.strip():
                raise TargetValidationError("Target URL must be a non-empty string")
            parsed = urlparse(url)
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                raise TargetValidationError(
                    f"All targets must start with http:// or https:// (got {url!r})"
                )

    @abstractmethod
    def build_invocation(self, targets: Sequence[str], options: Dict[str, Any]) -> Any:
        """Deterministic tool-specific invocation for these targets/options."""
        ...

    @abstractmethod
    def execute(self, targets: Sequence[str], options: Optional[Dict[str, Any]] = None) -> RawResult:
        """Run the tool end to end against targets."""
        ...

    @abstractmethod
    def parse_results(self, raw_output: Any) -> RawResult:
        """Parse tool output. Each record independently; bad records are dropped."""
        ...

    # -- stage hooks -------------------------------------------------------

    def context_name(self, scan_id: str) -> Optional[str]:
        return None

    def acquire(self, context: Optional[str], targets: Sequence[str]) -> None:
        pass

    @abstractmethod
    def scan_target(
        self, target: str, options: Dict[str, Any], context: Optional[str]
    ) -> RawResult:
        ...

    def collect(self, context: Optional[str]) -> RawResult:
        return RawResult(adapter_name=self.name)

    def release(self, context: Optional[str]) -> None:
        pass


class ProcessAdapter(BaseAdapter):
    """
    Spawn-and-collect adapter for CLI tools.

    Subclasses set binary_name / default_options and implement
    build_invocation() and parse_record(). The base class handles:
        - binary discovery (ToolNotAvailable if missing)
        - running the process with a wall-clock bound
        - non-zero exit → ExecutionError with captured output
        - per-line JSON parsing with partial-result tolerance
    """

    style = "process"
    binary_name: str = ""
    default_options: Dict[str, Any] = {}

    def __init__(self, defaults: Optional[Dict[str, Any]] = None):
        self.defaults: Dict[str, Any] = {**self.default_options, **(defaults or {})}
        self.binary_path: Optional[str] = None

    @property
    def name(self) -> str:
        return self.binary_name

    def initialize(self) -> str:
        """Locate the binary once; later calls reuse the cached path."""
        if self.binary_path:
            return self.binary_path
        path = find_binary(self.binary_name)
        if not path:
            raise ToolNotAvailable(
                self.name, f"{self.binary_name} binary not found in system PATH"
            )
        self.binary_path = path
        logger.info(f"{self.binary_name} binary initialized: {path}")
        return path

    def acquire(self, context: Optional[str], targets: Sequence[str]) -> None:
        self.initialize()

    def scan_target(
        self, target: str, options: Dict[str, Any], context: Optional[str]
    ) -> RawResult:
        return self.execute([target], options)

    def execute(self, targets: Sequence[str], options: Optional[Dict[str, Any]] = None) -> RawResult:
        self.validate_targets(targets)
        self.initialize()

        merged = {**self.defaults, **(options or {})}
        command = self.build_invocation(targets, merged)

        timeout_minutes = merged.get("timeout_minutes")
        timeout_seconds = int(timeout_minutes) * 60 if timeout_minutes else None

        logger.info(f"Running {self.name} against {len(targets)} target(s)")
        start = time.monotonic()
        stdout, stderr = self.run_command(command, timeout_seconds)
        self.check_output(stdout, stderr)

        result = self.parse_results(stdout)
        result.metadata.update({
            "command": command,
            "targets": list(targets),
            "duration_seconds": round(time.monotonic() - start, 2),
        })
        if stderr and stderr.strip():
            result.warnings = stderr.strip()
            logger.warning(f"{self.name} completed with warnings: {result.warnings[:500]}")

        logger.info(
            f"{self.name} completed: {len(result.findings)} record(s), "
            f"{result.dropped} dropped"
        )
        return result

    def run_command(
        self, command: List[str], timeout_seconds: Optional[int] = None
    ) -> Tuple[str, str]:
        """Run the process to exit. Returns (stdout, stderr)."""
        if not command:
            raise ExecutionError(self.name, "Empty command provided")

        logger.debug(f"Executing command: {' '.join(command)}")
        try:
            proc = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=timeout_seconds,
                check=False,
            )
        except subprocess.TimeoutExpired:
            raise OperationTimeout(
                f"{self.name} timed out after {timeout_seconds} seconds"
            )
        except OSError as e:
            raise ExecutionError(self.name, f"Failed to start process: {e}")

        stdout = proc.stdout or ""
        stderr = proc.stderr or ""
        if proc.returncode != 0:
            logger.error(
                f"Command execution failed: {self.name} exited with code "
                f"{proc.returncode}: {stderr[:500]}"
            )
            raise ExecutionError(
                self.name,
                f"{self.name} exited with code {proc.returncode}\n"
                f"Stdout: {stdout[:2000]}\nStderr: {stderr[:2000]}",
                stdout=stdout,
                stderr=stderr,
                exit_code=proc.returncode,
            )
        return stdout, stderr

    def check_output(self, stdout: str, stderr: str) -> None:
        """Hook for tools that treat some successful exits as failures."""

    def parse_results(self, raw_output: str) -> RawResult:
        result = RawResult(adapter_name=self.name)
        logger.debug(f"Raw {self.name} stdout: {(raw_output or '')[:1000]}")

        for line in (raw_output or "").splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
                result.findings.append(self.parse_record(record))
            except (ValueError, TypeError, AttributeError, ParseError) as e:
                result.dropped += 1
                logger.warning(f"Failed to parse {self.name} output line: {e} | {line[:200]}")

        return result

    @abstractmethod
    def parse_record(self, record: Any) -> RawFinding:
        """Validate one decoded JSON record. Raise ParseError to drop it."""
        ...


class ControlApiAdapter(BaseAdapter):
    """
    Start/poll/fetch adapter for tools driven through a remote control plane.

    Subclasses get wait_for() (the completion poller with this adapter's
    policy) and per-record parse_results() over a list of structured objects.
    """

    style = "control_api"

    def __init__(
        self,
        poll_max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        poll_interval_ms: int = DEFAULT_INTERVAL_MS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.poll_max_attempts = poll_max_attempts
        self.poll_interval_ms = poll_interval_ms
        self._sleep = sleep

    def wait_for(self, poll_status: Callable[[], OperationStatus], operation: str) -> int:
        return await_completion(
            poll_status,
            self.poll_max_attempts,
            self.poll_interval_ms,
            operation=operation,
            sleep=self._sleep,
        )

    def parse_results(self, raw_output: Optional[Iterable[Any]]) -> RawResult:
        result = RawResult(adapter_name=self.name)
        for item in raw_output or []:
            try:
                result.findings.append(self.parse_record(item))
            except (TypeError, AttributeError, ParseError) as e:
                result.dropped += 1
                logger.warning(f"Dropping malformed {self.name} record: {e}")
        return result

    @abstractmethod
    def parse_record(self, record: Any) -> RawFinding:
        ...
