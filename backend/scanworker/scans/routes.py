# =============================================================================
# File: scanworker/scans/routes.py
# Description: Scan routes: create + enqueue a scan, read status and findings.
#   Scans run on the worker, never in the request thread; POST returns 202
#   with the pending record.
# =============================================================================

from __future__ import annotations

import logging
from urllib.parse import urlparse

import redis
from flask import Blueprint, current_app, jsonify, request

from scanworker.extensions import db
from scanworker.models import ScanFinding, ScanRecord
from scanworker.scanner.store import ScanStore

logger = logging.getLogger(__name__)

scans_bp = Blueprint("scans", __name__, url_prefix="/scans")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _iso(dt):
    return dt.isoformat() if dt else None


def scan_to_ui(s: ScanRecord) -> dict:
    return {
        "id": s.id,
        "projectId": s.project_id,
        "targetUrls": s.target_urls or [],
        "status": s.status,
        "rateLimit": s.rate_limit,
        "timeout": s.timeout,
        "severityCounts": s.severity_counts,
        "totalFindings": s.total_findings or 0,
        "avgRiskScore": s.avg_risk_score or 0.0,
        "maxRiskScore": s.max_risk_score or 0.0,
        "errorMessage": s.error_message,
        "warnings": s.warnings,
        "createdAt": _iso(s.created_at),
        "startedAt": _iso(s.started_at),
        "completedAt": _iso(s.completed_at),
        "durationSeconds": s.duration_seconds,
    }


def finding_to_ui(f: ScanFinding) -> dict:
    return {
        "id": f.id,
        "scanId": f.scan_id,
        "source": f.source,
        "name": f.name,
        "description": f.description,
        "severity": f.severity,
        "confidence": f.confidence,
        "riskLevel": f.risk_level,
        "riskScore": f.risk_score,
        "pluginId": f.plugin_id,
        "cveId": f.cve_id,
        "cweIds": f.cwe_ids or [],
        "wascIds": f.wasc_ids or [],
        "tags": f.tags or [],
        "solution": f.solution,
        "reference": f.reference,
        "url": f.url,
        "method": f.method,
        "parameter": f.parameter,
        "attack": f.attack,
        "evidence": f.evidence,
        "otherInfo": f.other_info,
        "requestHeaders": f.request_headers,
        "requestBody": f.request_body,
        "responseHeaders": f.response_headers,
        "metadata": f.metadata_json or {},
        "createdAt": _iso(f.created_at),
    }


def _valid_url(url) -> bool:
    if not isinstance(url, str) or not url.strip():
        return False
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _positive_int(value):
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError
    return value


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

# POST /scans: create a pending scan and put it on the queue
@scans_bp.post("")
def create_scan():
    body = request.get_json(silent=True) or {}
    target_urls = body.get("targetUrls") or []

    if not isinstance(target_urls, list) or not target_urls:
        return jsonify(error="targetUrls is required"), 400
    bad = [u for u in target_urls if not _valid_url(u)]
    if bad:
        return jsonify(error="all targetUrls must be absolute http(s) URLs", invalid=bad), 400

    try:
        rate_limit = _positive_int(body.get("rateLimit"))
        timeout = _positive_int(body.get("timeout", body.get("timeoutMinutes")))
    except ValueError:
        return jsonify(error="rateLimit and timeout must be positive integers"), 400

    severity = body.get("severityLevels") or body.get("severityFilter") or []
    if not isinstance(severity, list):
        return jsonify(error="severityLevels must be a list"), 400

    record = ScanStore().create_scan(
        target_urls,
        project_id=body.get("projectId"),
        rate_limit=rate_limit,
        timeout=timeout,
    )

    job_request = {"targetUrls": target_urls}
    if severity:
        job_request["severityLevels"] = severity
    if rate_limit:
        job_request["rateLimit"] = rate_limit
    if timeout:
        job_request["timeout"] = timeout

    queue = current_app.extensions["scan_queue"]
    try:
        job_id = queue.enqueue({"scanId": record.id, "request": job_request})
    except redis.RedisError as e:
        logger.error(f"Failed to enqueue scan {record.id}: {e}")
        ScanStore().update_scan_status(record.id, "failed", error=f"Failed to enqueue scan: {e}")
        return jsonify(error="scan queue unavailable", scanId=record.id), 503
    logger.info(f"Scan {record.id} created and enqueued as job {job_id}")

    result = scan_to_ui(record)
    result["jobId"] = job_id
    return jsonify(result), 202


# GET /scans
@scans_bp.get("")
def list_scans():
    q = ScanRecord.query
    status = request.args.get("status")
    if status:
        q = q.filter_by(status=status)
    project_id = request.args.get("projectId")
    if project_id:
        q = q.filter_by(project_id=project_id)

    scans = q.order_by(ScanRecord.created_at.desc()).limit(200).all()
    return jsonify([scan_to_ui(s) for s in scans]), 200


# GET /scans/<id>
@scans_bp.get("/<scan_id>")
def get_scan(scan_id: str):
    record = db.session.get(ScanRecord, scan_id)
    if not record:
        return jsonify(error="scan not found"), 404
    return jsonify(scan_to_ui(record)), 200


# GET /scans/<id>/findings
@scans_bp.get("/<scan_id>/findings")
def list_scan_findings(scan_id: str):
    record = db.session.get(ScanRecord, scan_id)
    if not record:
        return jsonify(error="scan not found"), 404

    q = record.findings
    severity = request.args.get("severity")
    if severity:
        q = q.filter_by(severity=severity)

    findings = q.order_by(ScanFinding.risk_score.desc(), ScanFinding.created_at).all()
    return jsonify([finding_to_ui(f) for f in findings]), 200
