# scanworker/scanner/adapters/__init__.py
"""
Scanner adapters.
Each adapter drives one external tool and returns RawFindings.
Adapters do NOT classify severity; normalizers do that.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from scanworker.scanner.adapters.katana_adapter import KatanaAdapter
from scanworker.scanner.adapters.nuclei_adapter import NucleiAdapter
from scanworker.scanner.adapters.zap_adapter import ZapAdapter
from scanworker.scanner.base import BaseAdapter
from scanworker.scanner.zap_client import ZapClient

logger = logging.getLogger(__name__)

# Registry of all available adapters.
# SCAN_ADAPTERS selects which of these the orchestrator drives, in order.
ALL_ADAPTERS = {
    "zap": ZapAdapter,
    "nuclei": NucleiAdapter,
    "katana": KatanaAdapter,
}


def build_adapters(
    config: Mapping[str, Any],
    zap_client: Optional[ZapClient] = None,
) -> List[BaseAdapter]:
    """Instantiate the adapters named in config["SCAN_ADAPTERS"]."""
    names = config.get("SCAN_ADAPTERS") or ["zap"]
    if isinstance(names, str):
        names = [n.strip() for n in names.split(",") if n.strip()]

    adapters: List[BaseAdapter] = []
    for name in names:
        if name not in ALL_ADAPTERS:
            raise ValueError(f"Unknown scan adapter: {name}")

        if name == "zap":
            client = zap_client or ZapClient(
                api_url=config.get("ZAP_API_URL", "http://127.0.0.1:8080"),
                api_key=config.get("ZAP_API_KEY", ""),
                timeout=float(config.get("ZAP_REQUEST_TIMEOUT", 30)),
            )
            adapters.append(ZapAdapter(
                client,
                poll_max_attempts=int(config.get("POLL_MAX_ATTEMPTS", 100)),
                poll_interval_ms=int(config.get("POLL_INTERVAL_MS", 2000)),
            ))
        elif name == "nuclei":
            defaults: Dict[str, Any] = {}
            if config.get("NUCLEI_TEMPLATES"):
                defaults["templates"] = list(config["NUCLEI_TEMPLATES"])
            adapters.append(NucleiAdapter(defaults))
        else:
            adapters.append(KatanaAdapter({"depth": int(config.get("KATANA_DEPTH", 2))}))

    logger.debug(f"Adapters enabled: {[a.name for a in adapters]}")
    return adapters


__all__ = [
    "ZapAdapter", "NucleiAdapter", "KatanaAdapter",
    "ALL_ADAPTERS", "build_adapters",
]
