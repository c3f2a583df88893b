from __future__ import annotations

import sys
from pathlib import Path
from typing import Dict, Iterable, List

import pytest

# Ensure local "src/" takes precedence over any globally-installed "pixcanvas" package.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

src_str = str(SRC)
if src_str not in sys.path:
    sys.path.insert(0, src_str)

from pixcanvas.canvas.geometry import Point, Rect  # noqa: E402


class FakeCanvas:
    """Just the subscription surface the recorder talks to."""

    def __init__(self, chunk_size: Point = Point(64, 64), origin: Point = Point(0, 0)) -> None:
        self.chunk_size = chunk_size
        self.origin = origin
        self.listeners: Dict[object, bool] = {}
        self.rects: Dict[object, List[Rect]] = {}

    def subscribe_listener(self, listener: object, manage_virtual_chunks: bool) -> None:
        self.listeners[listener] = manage_virtual_chunks

    def unsubscribe_listener(self, listener: object) -> None:
        self.listeners.pop(listener, None)

    def register_rects(self, listener: object, rects: Iterable[Rect]) -> None:
        self.rects[listener] = list(rects)


@pytest.fixture
def canvas() -> FakeCanvas:
    return FakeCanvas(origin=Point(-3, 7))


@pytest.fixture
def make_canvas():
    return FakeCanvas
