# scanworker/scanner/adapters/katana_adapter.py
"""
Katana crawler adapter.

Wraps ProjectDiscovery's Katana binary to discover endpoints on the
targets. Every discovered endpoint becomes one RawFinding; the katana
normalizer turns them into info-level findings.

Katana's -jsonl records come in two shapes depending on version:
    flat:    {"url": "...", "path": "/login", "method": "GET", ...}
    nested:  {"timestamp": "...", "request": {"endpoint": "...", "method": "GET"}, ...}
Both are accepted.

Options (defaults in brackets):
    depth [2], concurrency [10], rate_limit [150], request_timeout [30],
    headers (list of "Name: value"), fields (list), crawl_js, crawl_robots,
    crawl_sitemap, form_fields, output_file, timeout_minutes (wall clock)
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Sequence
from urllib.parse import urlparse

from scanworker.errors import ExecutionError, ParseError
from scanworker.scanner.base import ProcessAdapter, RawFinding

logger = logging.getLogger(__name__)


class KatanaAdapter(ProcessAdapter):
    binary_name = "katana"
    default_options = {
        "depth": 2,
        "concurrency": 10,
        "rate_limit": 150,
        "request_timeout": 30,
    }

    def build_invocation(self, targets: Sequence[str], options: Dict[str, Any]) -> List[str]:
        cmd = [self.binary_path or self.binary_name, "-u", ",".join(targets)]

        for flag, key in (
            ("-d", "depth"),
            ("-c", "concurrency"),
            ("-rl", "rate_limit"),
            ("-timeout", "request_timeout"),
        ):
            value = options.get(key)
            if value:
                cmd.extend([flag, str(value)])

        for header in options.get("headers") or []:
            cmd.extend(["-H", header])

        fields = options.get("fields") or []
        if fields:
            cmd.extend(["-f", ",".join(fields)])

        if options.get("crawl_js"):
            cmd.append("-jc")
        if options.get("crawl_robots"):
            cmd.extend(["-kf", "robotstxt"])
        if options.get("crawl_sitemap"):
            cmd.extend(["-kf", "sitemapxml"])
        if options.get("form_fields"):
            cmd.append("-field")

        output_file = options.get("output_file")
        if output_file:
            cmd.extend(["-output", output_file])

        cmd.append("-jsonl")
        logger.debug(f"Generated katana command: {' '.join(cmd)}")
        return cmd

    def check_output(self, stdout: str, stderr: str) -> None:
        if not stdout and not stderr:
            raise ExecutionError(self.name, "No output received from katana")

    def parse_record(self, record: Any) -> RawFinding:
        if not isinstance(record, dict):
            raise ParseError("Invalid endpoint format: expected an object")

        request = record.get("request")
        if isinstance(request, dict) and request.get("endpoint"):
            url = request["endpoint"]
            method = request.get("method") or "GET"
            if not isinstance(url, str):
                raise ParseError("Invalid endpoint format: request.endpoint must be a string")
            path = urlparse(url).path or "/"
        else:
            url = record.get("url")
            path = record.get("path")
            method = record.get("method")
            if not url or not path or not method:
                raise ParseError("Invalid endpoint format: url, path and method are required")

        if not all(isinstance(v, str) for v in (url, path, method)):
            raise ParseError("Invalid endpoint format: url, path and method must be strings")

        data = dict(record)
        data.update({"url": url, "path": path, "method": method.upper()})
        return RawFinding(source=self.name, data=data)
