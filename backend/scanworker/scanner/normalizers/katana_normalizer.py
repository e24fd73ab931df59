# scanworker/scanner/normalizers/katana_normalizer.py
"""Katana endpoint normalizer: one info-level finding per discovered endpoint."""

from __future__ import annotations

from typing import Optional

from scanworker.scanner.base import FindingDraft, RawFinding


def normalize_katana(raw: RawFinding, scan_id: str, context_name: Optional[str]) -> FindingDraft:
    endpoint = raw.data
    url = endpoint.get("url") or ""
    method = endpoint.get("method") or "GET"
    path = endpoint.get("path") or "/"
    response = endpoint.get("response") if isinstance(endpoint.get("response"), dict) else {}

    return FindingDraft(
        scan_id=scan_id,
        source="katana",
        name="Discovered endpoint",
        description=f"Crawler discovered {method} {path} at {url}.",
        severity="info",
        risk_level="info",
        risk_score=0.0,
        plugin_id="katana-endpoint",
        url=url,
        method=method,
        tags=["katana", "endpoint"],
        metadata={
            "path": path,
            "source": endpoint.get("source"),
            "tag": endpoint.get("tag"),
            "attribute": endpoint.get("attribute"),
            "statusCode": response.get("status_code"),
            "contextName": context_name,
        },
    )
