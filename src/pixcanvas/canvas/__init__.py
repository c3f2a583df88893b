from __future__ import annotations

__all__ = [
    "geometry",
    "events",
    "imaging",
]
