"""Environment-driven settings for netemu."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Optional


def safe_float(x: Any, default: float = 0.0) -> float:
    try:
        return float(x)
    except Exception:
        return default


@dataclass
class Settings:
    """
    Runtime knobs read from the environment.

    NETEMU_POLL_INTERVAL_S   seconds between node status polls
    NETEMU_STATUS_TIMEOUT_S  default wait for nodes after push (0 = don't wait)
    NETEMU_WATCH_TIMEOUT_S   server-side window of one pod watch request
    NETEMU_LOG_LEVEL         root log level for app.py
    NETEMU_DEFAULT_IMAGE     image for node types without a known image
    NETEMU_CONFIG_PATH       file inside a node that config pushes write to
    KUBECONFIG               kubeconfig path (ambient default when unset)
    """
    poll_interval_s: float = 1.0
    status_timeout_s: float = 0.0
    watch_timeout_s: int = 30
    log_level: str = "INFO"
    default_image: str = "alpine:latest"
    config_path: str = "/tmp/startup-config"
    kubeconfig: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            poll_interval_s=max(0.05, safe_float(os.environ.get("NETEMU_POLL_INTERVAL_S", 1.0), 1.0)),
            status_timeout_s=max(0.0, safe_float(os.environ.get("NETEMU_STATUS_TIMEOUT_S", 0.0), 0.0)),
            watch_timeout_s=max(1, int(safe_float(os.environ.get("NETEMU_WATCH_TIMEOUT_S", 30), 30))),
            log_level=os.environ.get("NETEMU_LOG_LEVEL", "INFO").upper(),
            default_image=os.environ.get("NETEMU_DEFAULT_IMAGE", "alpine:latest"),
            config_path=os.environ.get("NETEMU_CONFIG_PATH", "/tmp/startup-config"),
            kubeconfig=os.environ.get("KUBECONFIG") or None,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings; tests reset via get_settings.cache_clear()."""
    return Settings.from_env()
