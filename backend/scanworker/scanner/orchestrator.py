# scanworker/scanner/orchestrator.py
"""
Scan Orchestrator: drives one scan job through the adapter pipeline.

Stages, in order:

    0. Validate job payload, load ScanRecord        (no status change on failure)
    1. mark in_progress
    2. context_creating    validate targets, acquire every adapter's context
    3. target_scanning     each target, in order, through every adapter
    4. alert_collecting    collect raw results scoped to each context
    5. result_persisting   normalize → aggregate → store atomically
    6. context_cleanup     release every context that was attempted (always)

Any failure in 2–5 marks the scan failed with the error's message, runs
cleanup, and re-raises so the queue layer can redeliver. Nothing here
retries.

Usage from the worker:
    orchestrator = ScanOrchestrator(adapters, ScanStore(), notifier=queue.publish_notification)
    summary = orchestrator.run_scan(job_payload)
"""

from __future__ import annotations

import enum
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from scanworker.extensions import db
from scanworker.scanner.aggregation import ScanStats, calculate_stats
from scanworker.scanner.base import BaseAdapter, FindingDraft, RawFinding, ScanJob
from scanworker.scanner.normalizers import normalize
from scanworker.scanner.store import ScanStore

logger = logging.getLogger(__name__)

Notifier = Callable[[Dict[str, Any]], None]


class ScanStage(str, enum.Enum):
    CONTEXT_CREATING = "context_creating"
    TARGET_SCANNING = "target_scanning"
    ALERT_COLLECTING = "alert_collecting"
    RESULT_PERSISTING = "result_persisting"
    CONTEXT_CLEANUP = "context_cleanup"


class AdapterScope:
    """
    Scoped ownership of every adapter context for one scan.

    An adapter is recorded *before* its acquire() is attempted, so a context
    that was half-created is still released. release() runs once per
    recorded adapter no matter how often it is called; release errors are
    logged and swallowed so they never mask the scan's own outcome.
    """

    def __init__(self, adapters: Sequence[BaseAdapter], scan_id: str):
        self.adapters = list(adapters)
        self.scan_id = scan_id
        self._attempted: List[Tuple[BaseAdapter, Optional[str]]] = []
        self._released = False

    def __enter__(self) -> "AdapterScope":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.release()
        return False

    def context_for(self, adapter: BaseAdapter) -> Optional[str]:
        return adapter.context_name(self.scan_id)

    def acquire(self, targets: Sequence[str]) -> None:
        for adapter in self.adapters:
            context = self.context_for(adapter)
            self._attempted.append((adapter, context))
            adapter.acquire(context, targets)

    def release(self) -> None:
        if self._released:
            return
        self._released = True

        for adapter, context in reversed(self._attempted):
            try:
                adapter.release(context)
            except Exception as e:
                logger.warning(
                    f"Failed to release {adapter.name} context {context} "
                    f"for scan {self.scan_id}: {e}"
                )


class ScanOrchestrator:
    """
    Stateless between jobs: the same instance may run many scans, including
    concurrently from different worker threads, as long as each job has
    its own application context (and so its own DB session).
    """

    def __init__(
        self,
        adapters: Sequence[BaseAdapter],
        store: Optional[ScanStore] = None,
        notifier: Optional[Notifier] = None,
    ):
        self.adapters = list(adapters)
        self.store = store or ScanStore()
        self.notifier = notifier

    def run_scan(self, payload: Any) -> Dict[str, Any]:
        """
        Run the full pipeline for one queue job payload.

        Raises:
            InvalidInput / ScanNotFound before any status change.
            Any stage-terminal error after the scan is marked failed.
        """
        job = ScanJob.from_payload(payload)
        scan_id = job.scan_id
        targets = list(job.request.target_urls)

        record = self.store.get_scan_record(scan_id)
        project_id = record.project_id

        total_start = time.monotonic()
        self.store.mark_in_progress(scan_id)
        logger.info(f"Scan {scan_id} in progress: {len(targets)} target(s), "
                    f"adapters={[a.name for a in self.adapters]}")

        stage = ScanStage.CONTEXT_CREATING
        scope = AdapterScope(self.adapters, scan_id)
        try:
            with scope:
                try:
                    logger.info(f"Scan {scan_id} stage={stage.value}")
                    for adapter in self.adapters:
                        adapter.validate_targets(targets)
                    scope.acquire(targets)

                    stage = ScanStage.TARGET_SCANNING
                    per_target, warnings = self._scan_targets(job, scope)

                    stage = ScanStage.ALERT_COLLECTING
                    logger.info(f"Scan {scan_id} stage={stage.value}")
                    collected, collect_warnings = self._collect(scope, per_target)
                    warnings.extend(collect_warnings)
                    warning_text = "\n".join(warnings) or None

                    raw_count = sum(len(findings) for _, _, findings in collected)
                    if raw_count == 0:
                        logger.info(f"Scan {scan_id}: no findings, completing with empty stats")
                        stats = ScanStats()
                        self.store.update_scan_status(
                            scan_id, "completed", stats=stats, warnings=warning_text
                        )
                    else:
                        stage = ScanStage.RESULT_PERSISTING
                        logger.info(f"Scan {scan_id} stage={stage.value}: {raw_count} raw record(s)")
                        drafts: List[FindingDraft] = []
                        for _adapter, context, findings in collected:
                            drafts.extend(normalize(findings, scan_id, context))
                        stats = calculate_stats(drafts)
                        self.store.store_scan_results(scan_id, drafts, stats, warning_text)
                except Exception as exc:
                    logger.error(f"Scan {scan_id} failed at stage={stage.value}: {exc}")
                    self._mark_failed(scan_id, exc)
                    raise
        finally:
            logger.info(f"Scan {scan_id} stage={ScanStage.CONTEXT_CLEANUP.value} done")

        duration = round(time.monotonic() - total_start, 2)
        logger.info(
            f"Scan {scan_id} completed in {duration}s: "
            f"{stats.total_findings} finding(s) {stats.severity_counts}"
        )

        self._notify(scan_id, project_id)

        return {
            "scanId": scan_id,
            "status": "completed",
            "totalFindings": stats.total_findings,
            "severityCounts": stats.severity_counts,
            "avgRiskScore": stats.avg_risk_score,
            "maxRiskScore": stats.max_risk_score,
            "warnings": warning_text,
            "duration": duration,
        }

    # -------------------------------------------------------------------
    # Stages
    # -------------------------------------------------------------------

    def _scan_targets(
        self, job: ScanJob, scope: AdapterScope
    ) -> Tuple[List[Tuple[BaseAdapter, List[RawFinding]]], List[str]]:
        """Every target, in order, through every adapter. First failure propagates."""
        options = {**job.request.to_options(), "scan_id": job.scan_id}
        targets = job.request.target_urls
        per_target: List[Tuple[BaseAdapter, List[RawFinding]]] = []
        warnings: List[str] = []

        for index, target in enumerate(targets):
            logger.info(
                f"Scan {job.scan_id} stage={ScanStage.TARGET_SCANNING.value} "
                f"target {index + 1}/{len(targets)}: {target}"
            )
            for adapter in scope.adapters:
                result = adapter.scan_target(target, options, scope.context_for(adapter))
                if result.warnings:
                    warnings.append(f"[{adapter.name}] {result.warnings}")
                # process adapters return records per target; ZAP returns none here
                per_target.append((adapter, result.findings))

        return per_target, warnings

    def _collect(
        self,
        scope: AdapterScope,
        per_target: List[Tuple[BaseAdapter, List[RawFinding]]],
    ) -> Tuple[List[Tuple[BaseAdapter, Optional[str], List[RawFinding]]], List[str]]:
        collected: List[Tuple[BaseAdapter, Optional[str], List[RawFinding]]] = []
        warnings: List[str] = []

        for adapter in scope.adapters:
            context = scope.context_for(adapter)
            findings: List[RawFinding] = []
            for owner, records in per_target:
                if owner is adapter:
                    findings.extend(records)

            result = adapter.collect(context)
            findings.extend(result.findings)
            if result.warnings:
                warnings.append(f"[{adapter.name}] {result.warnings}")
            collected.append((adapter, context, findings))

        return collected, warnings

    # -------------------------------------------------------------------
    # Bookkeeping
    # -------------------------------------------------------------------

    def _mark_failed(self, scan_id: str, exc: BaseException) -> None:
        try:
            # drop any half-written results before the status commit
            db.session.rollback()
            self.store.update_scan_status(scan_id, "failed", error=str(exc) or type(exc).__name__)
        except Exception:
            logger.exception(f"Failed to record failure for scan {scan_id}")

    def _notify(self, scan_id: str, project_id: Optional[str]) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier({"scanId": scan_id, "projectId": project_id})
        except Exception as e:
            logger.warning(f"Failed to publish scan notification for {scan_id}: {e}")
