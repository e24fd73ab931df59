# scanworker/scanner/store.py
"""
Persistence gateway for scan records and findings.

Every public method is one transaction on the Flask-SQLAlchemy session:
it commits on success, and on any SQLAlchemy error rolls back and raises
PersistenceError. Callers never see a half-written scan.

Rows are always addressed by scan id; nothing here reads or writes another
scan's rows.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from scanworker.errors import PersistenceError, ScanNotFound
from scanworker.extensions import db
from scanworker.models import ScanFinding, ScanRecord, now_utc
from scanworker.scanner.aggregation import ScanStats
from scanworker.scanner.base import FindingDraft

logger = logging.getLogger(__name__)


def _draft_to_model(draft: FindingDraft) -> ScanFinding:
    return ScanFinding(
        scan_id=draft.scan_id,
        source=draft.source,
        name=str(draft.name or "")[:255],
        description=str(draft.description or ""),
        severity=draft.severity,
        confidence=draft.confidence,
        solution=draft.solution,
        reference=draft.reference,
        tags=list(draft.tags),
        risk_level=draft.risk_level,
        risk_score=draft.risk_score,
        plugin_id=str(draft.plugin_id)[:100],
        cve_id=draft.cve_id,
        cwe_ids=list(draft.cwe_ids),
        wasc_ids=list(draft.wasc_ids),
        url=str(draft.url or "")[:2048],
        method=draft.method,
        parameter=draft.parameter,
        attack=draft.attack,
        evidence=draft.evidence,
        other_info=draft.other_info,
        request_headers=draft.request_headers,
        request_body=draft.request_body,
        response_headers=draft.response_headers,
        metadata_json=draft.metadata or {},
    )


class ScanStore:

    def _commit(self, action: str) -> None:
        try:
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.exception(f"Failed to {action}")
            raise PersistenceError(f"Failed to {action}: {e}") from e

    def get_scan_record(self, scan_id: str) -> ScanRecord:
        try:
            record = db.session.get(ScanRecord, scan_id)
        except SQLAlchemyError as e:
            db.session.rollback()
            raise PersistenceError(f"Failed to load scan {scan_id}: {e}") from e
        if record is None:
            raise ScanNotFound(scan_id)
        return record

    def create_scan(
        self,
        target_urls: List[str],
        project_id: Optional[str] = None,
        rate_limit: Optional[int] = None,
        timeout: Optional[int] = None,
    ) -> ScanRecord:
        """Create a pending scan. Used by the API and the enqueue command."""
        record = ScanRecord(target_urls=list(target_urls), project_id=project_id)
        if rate_limit:
            record.rate_limit = rate_limit
        if timeout:
            record.timeout = timeout
        db.session.add(record)
        self._commit("create scan")
        return record

    def mark_in_progress(self, scan_id: str) -> ScanRecord:
        """in_progress, with leftovers from any earlier attempt cleared."""
        record = self.get_scan_record(scan_id)
        record.status = "in_progress"
        record.started_at = now_utc()
        record.completed_at = None
        record.error_message = None
        record.warnings = None
        self._commit(f"mark scan {scan_id} in progress")
        return record

    def update_scan_status(
        self,
        scan_id: str,
        status: str,
        stats: Optional[ScanStats] = None,
        error: Optional[str] = None,
        warnings: Optional[str] = None,
    ) -> ScanRecord:
        record = self.get_scan_record(scan_id)
        record.status = status
        if status in ("completed", "failed"):
            record.completed_at = now_utc()
        if stats is not None:
            for column, value in stats.as_columns().items():
                setattr(record, column, value)
        if error is not None:
            record.error_message = error
        if warnings is not None:
            record.warnings = warnings
        self._commit(f"update scan {scan_id} to {status}")
        return record

    def insert_findings(self, drafts: Iterable[FindingDraft]) -> int:
        models = [_draft_to_model(d) for d in drafts]
        db.session.add_all(models)
        self._commit("insert findings")
        return len(models)

    def store_scan_results(
        self,
        scan_id: str,
        drafts: List[FindingDraft],
        stats: ScanStats,
        warnings: Optional[str] = None,
    ) -> ScanRecord:
        """
        Replace the scan's findings and mark it completed, in one transaction.

        Findings left behind by an earlier attempt of the same scan are
        deleted first, so counts on the record always match its rows.
        """
        record = self.get_scan_record(scan_id)
        try:
            ScanFinding.query.filter_by(scan_id=scan_id).delete(synchronize_session=False)
            db.session.add_all(_draft_to_model(d) for d in drafts)

            record.status = "completed"
            record.completed_at = now_utc()
            record.error_message = None
            if warnings:
                record.warnings = warnings
            for column, value in stats.as_columns().items():
                setattr(record, column, value)
        except Exception as e:
            # nothing from this attempt may survive into a later commit
            db.session.rollback()
            raise PersistenceError(f"Failed to store results for scan {scan_id}: {e}") from e

        self._commit(f"store results for scan {scan_id}")
        logger.info(f"Stored {len(drafts)} finding(s) for scan {scan_id}")
        return record

    def fail_stalled_scans(self, older_than: timedelta) -> List[str]:
        """Operator action: fail scans stuck in_progress since before now - older_than."""
        cutoff = now_utc() - older_than
        stalled = ScanRecord.query.filter(
            ScanRecord.status == "in_progress",
            ScanRecord.started_at < cutoff,
        ).all()
        for record in stalled:
            record.status = "failed"
            record.completed_at = now_utc()
            record.error_message = "Scan stalled and was reaped by an operator"
        self._commit("reap stalled scans")
        return [r.id for r in stalled]
