"""
pixcanvas: Canvas event contract

Every component that wants to observe a canvas implements CanvasListener and is
registered with the canvas. The canvas calls the handlers for one listener
sequentially, in the order the underlying changes happened.

The canvas itself (chunk storage, subscriber bookkeeping) lives elsewhere; this
module only describes the surface the rest of pixcanvas relies on.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, Mapping, Protocol, Sequence, runtime_checkable

from pixcanvas.canvas.geometry import CanvasImage, Color, Point, Rect


class CanvasListener(ABC):

    @abstractmethod
    def handle_set_pixel(self, pos: Point, color: Color, source_id: int) -> None:
        raise NotImplementedError

    @abstractmethod
    def handle_invalidate_rect(self, rect: Rect, source_ids: Sequence[int]) -> None:
        raise NotImplementedError

    @abstractmethod
    def handle_invalidate_all(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def handle_revalidate_rect(self, rect: Rect, source_ids: Sequence[int]) -> None:
        raise NotImplementedError

    @abstractmethod
    def handle_signal_download(self, rect: Rect, source_ids: Sequence[int]) -> None:
        raise NotImplementedError

    @abstractmethod
    def handle_set_image(self, image: CanvasImage, valid: bool, source_ids: Sequence[int]) -> None:
        raise NotImplementedError

    @abstractmethod
    def handle_chunks_change(self, created: Mapping[Rect, int], removed: Mapping[Rect, int]) -> None:
        raise NotImplementedError

    @abstractmethod
    def handle_set_time(self, t: datetime) -> None:
        raise NotImplementedError


@runtime_checkable
class Canvas(Protocol):
    """Subscription surface of the chunked canvas."""

    @property
    def chunk_size(self) -> Point: ...

    @property
    def origin(self) -> Point: ...

    def subscribe_listener(self, listener: CanvasListener, manage_virtual_chunks: bool) -> None: ...
    def unsubscribe_listener(self, listener: CanvasListener) -> None: ...
    def register_rects(self, listener: CanvasListener, rects: Iterable[Rect]) -> None: ...
