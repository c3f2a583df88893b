from __future__ import annotations

import http.client
import json
import urllib.error
import urllib.request
from typing import Any, Dict, Optional, Tuple

from pixcanvas.errors import CanvasIOError

Json = Dict[str, Any]

_USER_AGENT = "pixcanvas/0.1"


def get_json(url: str, *, timeout_s: float = 10.0) -> Any:
    req = urllib.request.Request(url, headers={"Accept": "application/json", "User-Agent": _USER_AGENT}, method="GET")
    try:
        with urllib.request.urlopen(req, timeout=timeout_s) as resp:
            raw = resp.read()
    except urllib.error.HTTPError as e:
        raise CanvasIOError("http_error", f"GET {url} failed with status {e.code}", url) from e
    except (urllib.error.URLError, OSError, http.client.HTTPException) as e:
        raise CanvasIOError("url_error", f"GET {url} failed: {getattr(e, 'reason', e)}", url) from e

    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise CanvasIOError("bad_json", f"GET {url} returned invalid json: {e}", url) from e


def post_json(url: str, body: Json, *, referer: Optional[str] = None, timeout_s: float = 10.0) -> Tuple[int, bytes]:
    """POST a JSON body. Returns (status, raw body) for any HTTP status, including errors."""
    headers = {"Content-Type": "application/json", "User-Agent": _USER_AGENT}
    if referer:
        headers["Referer"] = referer
    data = json.dumps(body, separators=(",", ":")).encode("utf-8")
    req = urllib.request.Request(url, data=data, headers=headers, method="POST")

    try:
        with urllib.request.urlopen(req, timeout=timeout_s) as resp:
            return int(resp.status), resp.read()
    except urllib.error.HTTPError as e:
        try:
            raw = e.read()
        except (OSError, http.client.HTTPException):
            raw = b""
        return int(getattr(e, "code", 0) or 0), raw
    except (urllib.error.URLError, OSError, http.client.HTTPException) as e:
        raise CanvasIOError("url_error", f"POST {url} failed: {getattr(e, 'reason', e)}", url) from e
