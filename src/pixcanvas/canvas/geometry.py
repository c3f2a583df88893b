from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Tuple


@dataclass(frozen=True, slots=True)
class Point:
    x: int
    y: int


@dataclass(frozen=True, slots=True)
class Rect:
    """Half-open rectangle: min is inclusive, max is exclusive."""

    min_x: int
    min_y: int
    max_x: int
    max_y: int

    @property
    def min(self) -> Point:
        return Point(self.min_x, self.min_y)

    @property
    def max(self) -> Point:
        return Point(self.max_x, self.max_y)

    @property
    def width(self) -> int:
        return self.max_x - self.min_x

    @property
    def height(self) -> int:
        return self.max_y - self.min_y

    @property
    def empty(self) -> bool:
        return self.min_x >= self.max_x or self.min_y >= self.max_y


@dataclass(frozen=True, slots=True)
class Color:
    """RGBA color with 16 bits per channel (0..65535)."""

    r: int
    g: int
    b: int
    a: int = 0xFFFF

    @classmethod
    def from_rgba8(cls, r: int, g: int, b: int, a: int = 255) -> "Color":
        return cls(r * 0x101, g * 0x101, b * 0x101, a * 0x101)

    def to_rgb8(self) -> Tuple[int, int, int]:
        # Truncates the low byte; replay consumers rely on these exact values.
        return (self.r >> 8) & 0xFF, (self.g >> 8) & 0xFF, (self.b >> 8) & 0xFF


@dataclass(frozen=True, slots=True)
class CanvasImage:
    """A still image placed on the canvas. `image` is handed to the image codec as-is."""

    rect: Rect
    image: Any

    @property
    def origin(self) -> Point:
        return self.rect.min
