# scanworker/scanner/aggregation.py
"""Per-scan statistics computed from a finding set."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable

from scanworker.scanner.base import FindingDraft

SEVERITY_BUCKETS = ("critical", "high", "medium", "low", "info")


@dataclass
class ScanStats:
    critical_count: int = 0
    high_count: int = 0
    medium_count: int = 0
    low_count: int = 0
    info_count: int = 0
    total_findings: int = 0
    avg_risk_score: float = 0.0
    max_risk_score: float = 0.0

    def as_columns(self) -> Dict[str, Any]:
        """Column name → value, for writing onto a ScanRecord."""
        return {
            "critical_count": self.critical_count,
            "high_count": self.high_count,
            "medium_count": self.medium_count,
            "low_count": self.low_count,
            "info_count": self.info_count,
            "total_findings": self.total_findings,
            "avg_risk_score": self.avg_risk_score,
            "max_risk_score": self.max_risk_score,
        }

    @property
    def severity_counts(self) -> Dict[str, int]:
        return {s: getattr(self, f"{s}_count") for s in SEVERITY_BUCKETS}


def calculate_stats(findings: Iterable[FindingDraft]) -> ScanStats:
    """
    Count findings per severity and aggregate their risk scores.

    A severity outside the five buckets is counted as info, so the bucket
    counts always sum to total_findings. An empty set gives all zeros.
    """
    stats = ScanStats()
    total_risk = 0.0

    for finding in findings:
        severity = finding.severity if finding.severity in SEVERITY_BUCKETS else "info"
        attr = f"{severity}_count"
        setattr(stats, attr, getattr(stats, attr) + 1)
        stats.total_findings += 1

        risk = float(finding.risk_score or 0)
        total_risk += risk
        stats.max_risk_score = max(stats.max_risk_score, risk)

    if stats.total_findings:
        stats.avg_risk_score = total_risk / stats.total_findings
    return stats
