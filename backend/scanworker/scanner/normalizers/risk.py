# scanworker/scanner/normalizers/risk.py
"""
Translation tables between vendor classifications and ours.

Every function here is pure and total: unknown, empty or unexpected input
falls through to the lowest bucket instead of raising, so a vendor format
change can never drop a finding.
"""

from __future__ import annotations

from typing import Any

RISK_SCORES = {"high": 3, "medium": 2, "low": 1}
SCORE_TO_LEVEL = {3: "high", 2: "medium", 1: "low"}
CONFIDENCE_LEVELS = ("confirmed", "high", "medium")
SEVERITY_LEVELS = ("critical", "high", "medium", "low", "info")
SEVERITY_SCORES = {"critical": 4, "high": 3, "medium": 2, "low": 1, "info": 0}


def risk_to_score(risk: Any) -> float:
    """Numbers pass through; digit strings are parsed; high/medium/low → 3/2/1; else 0."""
    if isinstance(risk, bool):
        return 0
    if isinstance(risk, (int, float)):
        return risk
    if not isinstance(risk, str):
        return 0

    text = risk.strip().lower()
    if text.lstrip("-").isdigit():
        return int(text)
    return RISK_SCORES.get(text, 0)


def risk_to_level(risk: Any) -> str:
    return SCORE_TO_LEVEL.get(risk_to_score(risk), "info")


def risk_to_severity(risk: Any) -> str:
    # ZAP has no "critical"; its top bucket maps to high
    return SCORE_TO_LEVEL.get(risk_to_score(risk), "info")


def map_confidence(confidence: Any) -> str:
    if not isinstance(confidence, str):
        return "low"
    level = confidence.strip().lower()
    return level if level in CONFIDENCE_LEVELS else "low"


def map_severity(severity: Any) -> str:
    """Nuclei's own severity string → our severity. Unknown → info."""
    if not isinstance(severity, str):
        return "info"
    level = severity.strip().lower()
    if level == "informational":
        return "info"
    return level if level in SEVERITY_LEVELS else "info"


def severity_to_score(severity: Any) -> int:
    return SEVERITY_SCORES.get(map_severity(severity), 0)
