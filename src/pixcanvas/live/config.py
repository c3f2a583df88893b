from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

DEFAULT_BASE_URL = "https://pixelcanvas.io"
DEFAULT_FINGERPRINT = "1" * 32

_env_file_read = False


@dataclass(frozen=True, slots=True)
class LiveConfig:
    base_url: str = DEFAULT_BASE_URL
    fingerprint: str = DEFAULT_FINGERPRINT

    # Status endpoint poll period.
    status_interval_s: float = 10.0

    # Fixed delay before every connection attempt except the first.
    reconnect_backoff_s: float = 5.0

    # How long a graceful close waits for the peer before the socket is dropped.
    close_timeout_s: float = 1.0

    http_timeout_s: float = 10.0
    open_timeout_s: float = 10.0

    def url(self, path: str) -> str:
        return self.base_url.rstrip("/") + path


def read_env_file(path: Optional[str] = None) -> bool:
    """Merge PIXCANVAS_* settings from a .env file into os.environ.

    The file is `path`, else $PIXCANVAS_DOTENV_PATH, else ./.env. Only the first
    call per process does anything, and variables already in the environment win.
    Returns True when a file was read.
    """
    global _env_file_read
    if _env_file_read:
        return False
    _env_file_read = True

    target = Path(path or os.environ.get("PIXCANVAS_DOTENV_PATH") or ".env").expanduser()
    if not target.is_file():
        return False
    load_dotenv(dotenv_path=target, override=False)
    return True


def _env_text(name: str, default: str) -> str:
    v = (os.environ.get(name) or "").strip()
    return v or default


def _env_seconds(name: str, default: float) -> float:
    try:
        v = float(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default
    return max(0.0, v)


def live_config_from_env() -> LiveConfig:
    return LiveConfig(
        base_url=_env_text("PIXCANVAS_BASE_URL", DEFAULT_BASE_URL),
        fingerprint=_env_text("PIXCANVAS_FINGERPRINT", DEFAULT_FINGERPRINT),
        status_interval_s=_env_seconds("PIXCANVAS_STATUS_INTERVAL_S", 10.0),
        reconnect_backoff_s=_env_seconds("PIXCANVAS_RECONNECT_BACKOFF_S", 5.0),
        close_timeout_s=_env_seconds("PIXCANVAS_CLOSE_TIMEOUT_S", 1.0),
        http_timeout_s=_env_seconds("PIXCANVAS_HTTP_TIMEOUT_S", 10.0),
        open_timeout_s=_env_seconds("PIXCANVAS_OPEN_TIMEOUT_S", 10.0),
    )
