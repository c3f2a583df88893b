# src/pixcanvas/live/__init__.py
"""
Live session package

  - wire: inbound websocket frame codec (bit-packed pixel updates)
  - http: minimal JSON GET/POST helpers
  - schemas: pydantic models of the JSON endpoints
  - config: LiveConfig and env loading
  - client: PixelcanvasClient (status loop, reconnecting connection loop, auth)
"""

from __future__ import annotations

__all__ = [
    "wire",
    "http",
    "schemas",
    "config",
    "client",
]
