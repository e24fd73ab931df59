# scanworker/scanner/adapters/nuclei_adapter.py
"""
Nuclei vulnerability scanning adapter.

Wraps ProjectDiscovery's Nuclei binary to run template-based
vulnerability and misconfiguration checks against targets.

Requirements:
    - nuclei binary installed on the worker host
      (https://github.com/projectdiscovery/nuclei)
    - nuclei templates updated: nuclei -update-templates

Output: one JSON object per line on stdout (-jsonl), e.g.
    {
        "template-id": "cve-2021-44228-log4j",
        "info": {
            "name": "Apache Log4j RCE",
            "severity": "critical",
            "tags": ["cve", "rce"],
            "classification": {"cve-id": ["CVE-2021-44228"], "cwe-id": ["cwe-502"]}
        },
        "type": "http",
        "host": "https://example.com",
        "matched-at": "https://example.com/api",
        "extracted-results": [],
        "curl-command": "curl ..."
    }

Options:
    severity_filter:  list  severities to run (unknown values are skipped)
    templates:        list  template paths
    template_tags:    list  filter templates by tag
    rate_limit:       int   requests per second (default: 150)
    request_timeout:  int   per-request timeout in seconds (default: 5)
    output_file:      str   also write results to this file
    timeout_minutes:  int   wall-clock bound for the whole process
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Sequence

from scanworker.errors import ParseError
from scanworker.scanner.base import ProcessAdapter, RawFinding

logger = logging.getLogger(__name__)

NUCLEI_SEVERITIES = ("critical", "high", "medium", "low", "info", "unknown")


class NucleiAdapter(ProcessAdapter):
    """
    Template-based vulnerability scanning using Nuclei.

    Nuclei exits 0 whether or not templates matched, so any non-zero exit
    is a failure.
    """

    binary_name = "nuclei"
    default_options = {
        "rate_limit": 150,
        "request_timeout": 5,
    }

    def build_invocation(self, targets: Sequence[str], options: Dict[str, Any]) -> List[str]:
        cmd = [
            self.binary_path or self.binary_name,
            "-target", ",".join(targets),
            "-jsonl",
            "-silent",
            "-no-color",
        ]

        rate_limit = options.get("rate_limit")
        if rate_limit:
            cmd.extend(["-rate-limit", str(rate_limit)])

        request_timeout = options.get("request_timeout")
        if request_timeout:
            cmd.extend(["-timeout", str(request_timeout)])

        severities = [
            s for s in (options.get("severity_filter") or [])
            if s in NUCLEI_SEVERITIES
        ]
        if severities:
            cmd.extend(["-severity", ",".join(severities)])

        templates = options.get("templates") or []
        if templates:
            cmd.extend(["-t", ",".join(templates)])

        tags = options.get("template_tags") or []
        if tags:
            cmd.extend(["-tags", ",".join(tags)])

        output_file = options.get("output_file")
        if output_file:
            cmd.extend(["-output", output_file])

        return cmd

    def parse_record(self, record: Any) -> RawFinding:
        if not isinstance(record, dict):
            raise ParseError("Invalid finding format: expected an object")
        info = record.get("info")
        if info is not None and not isinstance(info, dict):
            raise ParseError("Invalid finding format: 'info' must be an object")
        if not (record.get("template-id") or record.get("templateID")):
            raise ParseError("Invalid finding format: missing template-id")
        return RawFinding(source=self.name, data=record)
