# scanworker/scanner/__init__.py
"""
Scan pipeline.

Usage:
    from scanworker.scanner import ScanOrchestrator

    orchestrator = ScanOrchestrator(adapters, ScanStore(), notifier)
    summary = orchestrator.run_scan({"scanId": ..., "request": {...}})

Architecture:
    Orchestrator
    ├── Adapters (drive tools, gather raw records)
    │   ├── ZapAdapter      spider + active scan over the ZAP control API
    │   ├── NucleiAdapter   template scans, JSON lines on stdout
    │   └── KatanaAdapter   endpoint crawl, JSON lines on stdout
    │
    ├── Normalizers (raw records → FindingDrafts with severity/risk)
    ├── Aggregation (per-scan counts and risk scores)
    └── ScanStore (scan + finding rows, one transaction per write)
"""

from scanworker.scanner.orchestrator import AdapterScope, ScanOrchestrator, ScanStage

__all__ = ["ScanOrchestrator", "AdapterScope", "ScanStage"]
