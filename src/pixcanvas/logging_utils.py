from __future__ import annotations

import json
import logging
import os
import sys
import time
from typing import Any, Dict, Optional, TextIO

Json = Dict[str, Any]

# Every module logs under this prefix (pixcanvas.live, pixcanvas.recording, ...).
ROOT_LOGGER = "pixcanvas"


def _now_ms() -> int:
    return int(time.time() * 1000)


class _JsonlHandler(logging.StreamHandler):
    """Marker type so repeated configuration finds the handler it installed."""


def configure_structured_logging(level: Optional[str] = None, stream: Optional[TextIO] = None) -> logging.Logger:
    """Send pixcanvas.* records to `stream` (default stdout), one JSON event per line.

    `level` defaults to $PIXCANVAS_LOG_LEVEL, then INFO. Calling again only
    updates the level.
    """
    name = (level or os.environ.get("PIXCANVAS_LOG_LEVEL") or "INFO").strip().upper()
    resolved = logging.getLevelName(name)
    if not isinstance(resolved, int):
        resolved = logging.INFO

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(resolved)
    if not any(isinstance(h, _JsonlHandler) for h in logger.handlers):
        handler = _JsonlHandler(stream or sys.stdout)
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
        logger.propagate = False
    return logger


def log_event(logger: logging.Logger, event: str, *, level: int = logging.INFO, **fields: Any) -> None:
    """Emit a single JSONL log event."""
    if not logger.isEnabledFor(level):
        return
    payload: Json = {"ts_ms": _now_ms(), "event": str(event)}
    payload.update(fields)
    try:
        logger.log(level, json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))
    except (TypeError, ValueError):
        parts = [f"event={event}"] + [f"{k}={fields.get(k)!r}" for k in sorted(fields.keys())]
        logger.log(level, " ".join(parts))
