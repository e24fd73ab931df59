# scanworker/scanner/normalizers/nuclei_normalizer.py
"""
Nuclei template-match normalizer.

Nuclei already classifies severity, so this mostly reshapes the record:
    1. severity from info.severity (unknown → info)
    2. CVE / CWE ids from info.classification
    3. CVSS score and metric kept in metadata, risk score from severity
    4. references flattened into one newline-separated string
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from scanworker.scanner.base import FindingDraft, RawFinding
from scanworker.scanner.normalizers.risk import map_severity, severity_to_score

logger = logging.getLogger(__name__)


def _as_list(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value if v]
    return [str(value)]


def _text(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return value if isinstance(value, str) else str(value)


def _mapping(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def normalize_nuclei(raw: RawFinding, scan_id: str, context_name: Optional[str]) -> FindingDraft:
    finding = raw.data
    info = _mapping(finding.get("info"))
    classification = _mapping(info.get("classification"))

    template_id = _text(finding.get("template-id") or finding.get("templateID")) or "unknown"
    severity = map_severity(info.get("severity"))
    matched_at = _text(finding.get("matched-at") or finding.get("url") or finding.get("host")) or ""

    cve_ids = [c.upper() for c in _as_list(classification.get("cve-id"))]
    cwe_ids = [c.upper() for c in _as_list(classification.get("cwe-id"))]

    description = _text(info.get("description")) or ""
    if not description:
        description = f"Nuclei template '{template_id}' matched at {matched_at}."

    references = _as_list(info.get("reference"))
    extracted = _as_list(finding.get("extracted-results"))

    return FindingDraft(
        scan_id=scan_id,
        source="nuclei",
        name=_text(info.get("name")) or template_id,
        description=description,
        severity=severity,
        risk_level=severity if severity != "critical" else "high",
        risk_score=float(severity_to_score(severity)),
        plugin_id=template_id,
        url=matched_at,
        cve_id=cve_ids[0] if cve_ids else None,
        cwe_ids=cwe_ids,
        tags=_as_list(info.get("tags")),
        solution=_text(info.get("remediation")),
        reference="\n".join(references) or None,
        method=_text(finding.get("request-method")),
        parameter=_text(finding.get("matcher-name")),
        evidence="\n".join(extracted) or None,
        request_body=_text(finding.get("request")),
        metadata={
            "templateId": template_id,
            "templatePath": finding.get("template-path") or finding.get("template"),
            "type": finding.get("type"),
            "host": finding.get("host"),
            "matcherName": finding.get("matcher-name"),
            "curlCommand": finding.get("curl-command"),
            "cvssScore": classification.get("cvss-score"),
            "cvssMetrics": classification.get("cvss-metrics"),
            "cveIds": cve_ids,
            "authors": _as_list(info.get("author")),
            "contextName": context_name,
        },
    )
