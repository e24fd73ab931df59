# scanworker/scanner/adapters/zap_adapter.py
"""
OWASP ZAP adapter (start/poll/fetch).

Per scan:
    acquire   → check ZAP answers, create context "scan-<scanId>",
                include every target URL in it
    per target→ spider to completion, then active scan to completion
    collect   → fetch alerts scoped to the context
    release   → remove the context (always)

Alert records are passed through unchanged as RawFinding data; the ZAP
normalizer owns every classification decision.

A poll timeout stops the waiting only. The spider / active scan keeps
running inside ZAP until it finishes or the context is removed.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional, Sequence

from scanworker.errors import ParseError
from scanworker.scanner.base import ControlApiAdapter, RawFinding, RawResult
from scanworker.scanner.poller import DEFAULT_INTERVAL_MS, DEFAULT_MAX_ATTEMPTS
from scanworker.scanner.zap_client import ZapClient

logger = logging.getLogger(__name__)


def context_name_for(scan_id: str) -> str:
    return f"scan-{scan_id}"


class ZapAdapter(ControlApiAdapter):

    def __init__(
        self,
        client: ZapClient,
        poll_max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        poll_interval_ms: int = DEFAULT_INTERVAL_MS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        super().__init__(poll_max_attempts, poll_interval_ms, sleep)
        self.client = client

    @property
    def name(self) -> str:
        return "zap"

    def context_name(self, scan_id: str) -> Optional[str]:
        return context_name_for(scan_id)

    def build_invocation(self, targets: Sequence[str], options: Dict[str, Any]) -> Dict[str, Any]:
        """Describe the control-plane calls a scan of these targets makes."""
        scan_id = options.get("scan_id")
        context = options.get("context_name") or (
            context_name_for(scan_id) if scan_id else None
        )
        invocation: Dict[str, Any] = {
            "context": context,
            "targets": list(targets),
            "spider_name": f"Spider-{scan_id}" if scan_id else None,
            "scan_name": f"Scan-{scan_id}" if scan_id else None,
        }
        if options.get("scan_policy_name"):
            invocation["scan_policy_name"] = options["scan_policy_name"]
        return invocation

    # ------------------------------------------------------------------
    # Stage hooks
    # ------------------------------------------------------------------

    def acquire(self, context: Optional[str], targets: Sequence[str]) -> None:
        version = self.client.version()
        logger.debug(f"ZAP {version} reachable at {self.client.api_url}")

        self.client.create_context(context)
        logger.info(f"Created ZAP context: {context}")
        for url in targets:
            self.client.include_in_context(context, url)
            logger.debug(f"Included {url} in context {context}")

    def scan_target(
        self, target: str, options: Dict[str, Any], context: Optional[str]
    ) -> RawResult:
        scan_id = options.get("scan_id")

        logger.info(f"Starting spider scan for {target}")
        spider_id = self.client.start_spider(target, context_name=context, scan_id=scan_id)
        spider_checks = self.wait_for(
            lambda: self.client.spider_status(spider_id), operation="Spider scan"
        )
        logger.info(f"Spider scan complete for {target}")

        logger.info(f"Starting active scan for {target}")
        active_id = self.client.start_active_scan(
            target,
            context_name=context,
            scan_id=scan_id,
            scan_policy_name=options.get("scan_policy_name"),
        )
        scan_checks = self.wait_for(
            lambda: self.client.scan_status(active_id), operation="Active scan"
        )
        logger.info(f"Active scan complete for {target}")

        return RawResult(
            adapter_name=self.name,
            metadata={
                "target": target,
                "spider_id": spider_id,
                "active_scan_id": active_id,
                "status_checks": spider_checks + scan_checks,
            },
        )

    def collect(self, context: Optional[str]) -> RawResult:
        alerts = self.client.get_alerts(context_name=context)
        result = self.parse_results(alerts)
        result.metadata["context"] = context
        logger.info(f"Retrieved {len(result.findings)} alert(s) for context {context}")
        return result

    def release(self, context: Optional[str]) -> None:
        if not context:
            return
        self.client.remove_context(context)
        logger.info(f"Removed ZAP context: {context}")

    # ------------------------------------------------------------------
    # Standalone run
    # ------------------------------------------------------------------

    def execute(self, targets: Sequence[str], options: Optional[Dict[str, Any]] = None) -> RawResult:
        """Full acquire → scan → collect → release cycle outside the orchestrator."""
        options = dict(options or {})
        self.validate_targets(targets)

        scan_id = options.get("scan_id") or "adhoc"
        options["scan_id"] = scan_id
        context = context_name_for(scan_id)

        try:
            self.acquire(context, targets)
            for target in targets:
                self.scan_target(target, options, context)
            result = self.collect(context)
        finally:
            try:
                self.release(context)
            except Exception as e:
                logger.warning(f"Failed to remove ZAP context {context}: {e}")

        result.metadata["invocation"] = self.build_invocation(targets, options)
        return result

    def parse_record(self, record: Any) -> RawFinding:
        if not isinstance(record, dict):
            raise ParseError(f"ZAP alert is not an object: {record!r:.200}")
        if not record.get("name") and not record.get("alert"):
            raise ParseError("ZAP alert has no name")
        if not record.get("url"):
            raise ParseError("ZAP alert has no url")
        return RawFinding(source=self.name, data=record)
