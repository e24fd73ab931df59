# scanworker/scanner/normalizers/zap_normalizer.py
"""
ZAP alert normalizer.

Maps alerts from core/view/alerts into FindingDrafts. ZAP reports risk as
"High"/"Medium"/"Low"/"Informational" (or 3..0 in some versions) and
confidence as "Confirmed"/"High"/"Medium"/"Low"/"False Positive".
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from scanworker.scanner.base import FindingDraft, RawFinding
from scanworker.scanner.normalizers.risk import (
    map_confidence,
    risk_to_level,
    risk_to_score,
    risk_to_severity,
)

logger = logging.getLogger(__name__)

ZAP_TAGS = ["zap", "security"]


def parse_headers(raw: Any) -> Optional[Dict[str, str]]:
    """
    Header block → mapping.

    Accepts a mapping, a JSON object string, or raw HTTP header text (the
    request/status line is skipped). Anything else yields None.
    """
    if not raw:
        return None
    if isinstance(raw, dict):
        return {str(k): str(v) for k, v in raw.items()}
    if not isinstance(raw, str):
        return None

    text = raw.strip()
    if text.startswith("{"):
        try:
            data = json.loads(text)
        except ValueError:
            data = None
        if isinstance(data, dict):
            return {str(k): str(v) for k, v in data.items()}

    headers: Dict[str, str] = {}
    for line in text.splitlines():
        if ":" not in line or line.startswith((" ", "\t")):
            continue
        name, _, value = line.partition(":")
        if " " in name.strip():
            # "GET http://host/ HTTP/1.1" style start line
            continue
        headers[name.strip()] = value.strip()
    return headers or None


def _id_list(value: Any) -> List[str]:
    # ZAP uses -1 / 0 for "no id"
    if value in (None, "", "-1", "0", -1, 0):
        return []
    return [str(value)]


def normalize_zap(raw: RawFinding, scan_id: str, context_name: Optional[str]) -> FindingDraft:
    alert = raw.data
    risk = alert.get("risk", alert.get("riskcode"))

    return FindingDraft(
        scan_id=scan_id,
        source="zap",
        name=alert.get("name") or alert.get("alert") or "Unnamed alert",
        description=alert.get("description") or "",
        severity=risk_to_severity(risk),
        confidence=map_confidence(alert.get("confidence")),
        risk_level=risk_to_level(risk),
        risk_score=float(risk_to_score(risk)),
        plugin_id=str(alert.get("pluginId") or alert.get("pluginid") or "unknown"),
        url=alert.get("url") or "",
        cwe_ids=_id_list(alert.get("cweid")),
        wasc_ids=_id_list(alert.get("wascid")),
        tags=list(ZAP_TAGS),
        solution=alert.get("solution") or None,
        reference=alert.get("reference") or None,
        method=alert.get("method") or None,
        parameter=alert.get("param") or alert.get("parameter") or None,
        attack=alert.get("attack") or None,
        evidence=alert.get("evidence") or None,
        other_info=alert.get("otherinfo") or alert.get("other") or None,
        request_headers=parse_headers(alert.get("requestHeader")),
        request_body=alert.get("requestBody") or None,
        response_headers=parse_headers(alert.get("responseHeader")),
        metadata={
            "pluginId": alert.get("pluginId"),
            "messageId": alert.get("messageId"),
            "alertRef": alert.get("alertRef"),
            "contextName": context_name,
        },
    )
