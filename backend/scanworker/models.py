from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from .extensions import db


def now_utc() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _new_id() -> str:
    return str(uuid.uuid4())


SCAN_STATUSES = ("pending", "in_progress", "completed", "failed")
SEVERITY_LEVELS = ("critical", "high", "medium", "low", "info")
CONFIDENCE_LEVELS = ("confirmed", "high", "medium", "low")
RISK_LEVELS = ("high", "medium", "low", "info")


class ScanRecord(db.Model):
    __tablename__ = "scan"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    project_id = db.Column(db.String(36), nullable=True, index=True)
    target_urls = db.Column(db.JSON, nullable=False, default=list)

    # pending, in_progress, completed, failed
    status = db.Column(db.String(20), nullable=False, default="pending", index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=now_utc)
    updated_at = db.Column(db.DateTime, nullable=False, default=now_utc, onupdate=now_utc)
    started_at = db.Column(db.DateTime, nullable=False, default=now_utc)
    completed_at = db.Column(db.DateTime, nullable=True)

    # Scan configuration
    rate_limit = db.Column(db.Integer, nullable=False, default=150)
    timeout = db.Column(db.Integer, nullable=False, default=5)  # minutes

    # ── Statistics ──────────────────────────────────────────────────
    critical_count = db.Column(db.Integer, nullable=False, default=0)
    high_count = db.Column(db.Integer, nullable=False, default=0)
    medium_count = db.Column(db.Integer, nullable=False, default=0)
    low_count = db.Column(db.Integer, nullable=False, default=0)
    info_count = db.Column(db.Integer, nullable=False, default=0)
    total_findings = db.Column(db.Integer, nullable=False, default=0)
    avg_risk_score = db.Column(db.Float, nullable=False, default=0.0)
    max_risk_score = db.Column(db.Float, nullable=False, default=0.0)

    # Error handling
    error_message = db.Column(db.Text, nullable=True)
    warnings = db.Column(db.Text, nullable=True)

    findings = db.relationship(
        "ScanFinding",
        backref="scan",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="dynamic",
    )

    @property
    def severity_counts(self) -> dict:
        return {
            "critical": self.critical_count or 0,
            "high": self.high_count or 0,
            "medium": self.medium_count or 0,
            "low": self.low_count or 0,
            "info": self.info_count or 0,
        }

    @property
    def duration_seconds(self) -> Optional[float]:
        if not self.completed_at or not self.started_at:
            return None
        return (self.completed_at - self.started_at).total_seconds()


class ScanFinding(db.Model):
    __tablename__ = "scan_finding"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)

    scan_id = db.Column(
        db.String(36),
        db.ForeignKey("scan.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    source = db.Column(db.String(50), nullable=False)                 # zap, nuclei, katana

    # Finding info
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=False, default="")
    severity = db.Column(db.String(20), nullable=False, default="info")
    confidence = db.Column(db.String(20), nullable=True)
    solution = db.Column(db.Text, nullable=True)
    reference = db.Column(db.Text, nullable=True)
    tags = db.Column(db.JSON, nullable=True)

    # Risk classification
    risk_level = db.Column(db.String(20), nullable=True)
    risk_score = db.Column(db.Float, nullable=True)
    plugin_id = db.Column(db.String(100), nullable=False)              # ZAP plugin id or nuclei template id

    # Classification
    cve_id = db.Column(db.String(50), nullable=True)
    cwe_ids = db.Column(db.JSON, nullable=True)
    wasc_ids = db.Column(db.JSON, nullable=True)

    # Location
    url = db.Column(db.String(2048), nullable=False)
    method = db.Column(db.String(10), nullable=True)
    parameter = db.Column(db.String(255), nullable=True)
    attack = db.Column(db.Text, nullable=True)
    evidence = db.Column(db.Text, nullable=True)
    other_info = db.Column(db.Text, nullable=True)

    # Request/response details (response body intentionally not stored)
    request_headers = db.Column(db.JSON, nullable=True)
    request_body = db.Column(db.Text, nullable=True)
    response_headers = db.Column(db.JSON, nullable=True)

    # Opaque, tool-specific; not part of any contract
    metadata_json = db.Column("metadata", db.JSON, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=now_utc)
