# scanworker/scanner/zap_client.py
"""
Thin client for the OWASP ZAP JSON control API.

Every call is a GET against:
    /JSON/<component>/<action|view>/<method>/<apiKey>?<params>

Spider and active-scan starts return an operation id immediately; the
matching status view reports progress as a string "0".."100", where "100"
means complete.

Transport failures (connection errors, non-2xx responses) are raised as
ExecutionError so the orchestrator records them like any other stage failure.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

import httpx

from scanworker.errors import ExecutionError, ToolNotAvailable
from scanworker.scanner.poller import OperationStatus

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "http://127.0.0.1:8080"
DEFAULT_TIMEOUT = 30.0


def escape_url_for_context(url: str) -> str:
    """Anchored regex matching exactly this URL, with an optional trailing slash."""
    return f"^{re.escape(url)}/?$"


class ZapClient:
    def __init__(
        self,
        api_url: str = DEFAULT_API_URL,
        api_key: str = "",
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key or ""
        headers = {"X-ZAP-API-Key": self.api_key} if self.api_key else {}
        self._client = httpx.Client(
            base_url=self.api_url,
            timeout=timeout,
            headers=headers,
            transport=transport,
        )

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def api_path(self, component: str, method: str, view: bool = False) -> str:
        kind = "view" if view else "action"
        return f"/JSON/{component}/{kind}/{method}/{self.api_key}"

    def _call(
        self,
        component: str,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        view: bool = False,
    ) -> Dict[str, Any]:
        path = self.api_path(component, method, view)
        clean = {k: v for k, v in (params or {}).items() if v is not None}
        try:
            resp = self._client.get(path, params=clean)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            body = (e.response.text or "")[:500]
            logger.error(f"ZAP {component}/{method} failed: HTTP {e.response.status_code} {body}")
            raise ExecutionError(
                "zap",
                f"ZAP {component}/{method} failed with HTTP {e.response.status_code}: {body}",
                stdout=e.response.text,
            )
        except httpx.HTTPError as e:
            logger.error(f"ZAP {component}/{method} failed: {e}")
            raise ExecutionError("zap", f"ZAP {component}/{method} failed: {e}")

        try:
            data = resp.json()
        except ValueError:
            raise ExecutionError(
                "zap",
                f"ZAP {component}/{method} returned a non-JSON body",
                stdout=resp.text,
            )
        if not isinstance(data, dict):
            return {}
        return data

    def close(self) -> None:
        self._client.close()

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    def version(self) -> str:
        """Reachability check. Raises ToolNotAvailable if ZAP is not answering."""
        try:
            resp = self._client.get(self.api_path("core", "version", view=True))
            resp.raise_for_status()
            return str(resp.json().get("version", ""))
        except (httpx.HTTPError, ValueError) as e:
            raise ToolNotAvailable("zap", f"ZAP API not reachable at {self.api_url}: {e}")

    def get_alerts(
        self, context_name: Optional[str] = None, base_url: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        data = self._call(
            "core", "alerts",
            {"contextName": context_name, "baseurl": base_url},
            view=True,
        )
        alerts = data.get("alerts") or []
        return alerts if isinstance(alerts, list) else []

    def shutdown(self) -> None:
        self._call("core", "shutdown")

    # ------------------------------------------------------------------
    # Contexts
    # ------------------------------------------------------------------

    def create_context(self, context_name: str) -> Optional[str]:
        data = self._call("context", "newContext", {"contextName": context_name})
        return data.get("contextId")

    def include_in_context(self, context_name: str, url: str) -> None:
        self._call(
            "context", "includeInContext",
            {"contextName": context_name, "regex": escape_url_for_context(url)},
        )

    def remove_context(self, context_name: str) -> None:
        self._call("context", "removeContext", {"contextName": context_name})

    # ------------------------------------------------------------------
    # Spider
    # ------------------------------------------------------------------

    def start_spider(
        self,
        url: str,
        context_name: Optional[str] = None,
        scan_id: Optional[str] = None,
        max_children: Optional[int] = None,
        recurse: Optional[bool] = None,
        subtree_only: Optional[bool] = None,
    ) -> str:
        data = self._call("spider", "scan", {
            "url": url,
            "contextName": context_name,
            "maxChildren": max_children,
            "recurse": _flag(recurse),
            "subtreeOnly": _flag(subtree_only),
            "scanName": f"Spider-{scan_id}" if scan_id else None,
        })
        return str(data.get("scan", ""))

    def spider_status(self, spider_id: str) -> OperationStatus:
        data = self._call("spider", "status", {"scanId": spider_id}, view=True)
        status = str(data.get("status", ""))
        return OperationStatus(is_complete=status == "100", progress=status)

    def spider_results(self, spider_id: str) -> List[str]:
        data = self._call("spider", "results", {"scanId": spider_id}, view=True)
        return list(data.get("results") or [])

    def stop_spider(self, spider_id: str) -> None:
        self._call("spider", "stop", {"scanId": spider_id})

    # ------------------------------------------------------------------
    # Active scan
    # ------------------------------------------------------------------

    def start_active_scan(
        self,
        url: str,
        context_name: Optional[str] = None,
        scan_id: Optional[str] = None,
        recurse: Optional[bool] = None,
        in_scope_only: Optional[bool] = None,
        scan_policy_name: Optional[str] = None,
    ) -> str:
        data = self._call("ascan", "scan", {
            "url": url,
            "contextName": context_name,
            "recurse": _flag(recurse),
            "inScopeOnly": _flag(in_scope_only),
            "scanPolicyName": scan_policy_name,
            "scanName": f"Scan-{scan_id}" if scan_id else None,
        })
        return str(data.get("scan", ""))

    def scan_status(self, active_scan_id: str) -> OperationStatus:
        data = self._call("ascan", "status", {"scanId": active_scan_id}, view=True)
        status = str(data.get("status", ""))
        return OperationStatus(is_complete=status == "100", progress=status)

    def stop_scan(self, active_scan_id: str) -> None:
        self._call("ascan", "stop", {"scanId": active_scan_id})


def _flag(value: Optional[bool]) -> Optional[str]:
    if value is None:
        return None
    return "true" if value else "false"
