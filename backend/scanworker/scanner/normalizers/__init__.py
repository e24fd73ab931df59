# scanworker/scanner/normalizers/__init__.py
"""
Result normalizers.
Each normalizer reads one adapter's RawFindings and produces FindingDrafts
with severity / confidence / risk classification.
Normalizers do NOT talk to tools; they only interpret records.
"""
from __future__ import annotations

import logging
from typing import Callable, Dict, Iterable, List, Optional

from scanworker.scanner.base import FindingDraft, RawFinding
from scanworker.scanner.normalizers.katana_normalizer import normalize_katana
from scanworker.scanner.normalizers.nuclei_normalizer import normalize_nuclei
from scanworker.scanner.normalizers.zap_normalizer import normalize_zap

logger = logging.getLogger(__name__)

Normalizer = Callable[[RawFinding, str, Optional[str]], FindingDraft]

# Keyed by adapter name (RawFinding.source)
ALL_NORMALIZERS: Dict[str, Normalizer] = {
    "zap": normalize_zap,
    "nuclei": normalize_nuclei,
    "katana": normalize_katana,
}


def normalize(
    raw_findings: Iterable[RawFinding],
    scan_id: str,
    context_name: Optional[str] = None,
) -> List[FindingDraft]:
    """
    Normalize every raw finding.

    Records from an unknown source, and records a normalizer cannot read,
    are logged and skipped; the rest of the batch is still returned.
    """
    drafts: List[FindingDraft] = []
    for raw in raw_findings:
        normalizer = ALL_NORMALIZERS.get(raw.source)
        if normalizer is None:
            logger.warning(f"No normalizer for source '{raw.source}', skipping record")
            continue
        try:
            drafts.append(normalizer(raw, scan_id, context_name))
        except Exception as e:
            logger.warning(
                f"Skipping unreadable {raw.source} record for scan {scan_id}: "
                f"{e} | {str(raw.data)[:200]}"
            )
    return drafts


__all__ = [
    "normalize_zap", "normalize_nuclei", "normalize_katana",
    "ALL_NORMALIZERS", "normalize",
]
