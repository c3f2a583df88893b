"""
Live-update wire messages (inbound websocket frames).

Pixel update frame, 7 bytes, big-endian:
  [0xC1 | chunk_x i16 | chunk_y i16 | mixed u16]

  mixed bits (low to high):
    0..3    color index
    4..9    x offset inside the chunk
    10..15  y offset inside the chunk

Any other opcode or length is a malformed frame. The read loop logs and skips
those; they never end the connection.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Tuple

from pixcanvas.canvas.geometry import Color, Point
from pixcanvas.errors import MalformedRecord

OP_PIXEL_UPDATE = 0xC1
PIXEL_UPDATE_LEN = 7

CHUNK_SIZE = Point(64, 64)

_PIXEL_UPDATE_FMT = ">BhhH"

PALETTE: Tuple[Color, ...] = tuple(
    Color.from_rgba8(r, g, b)
    for (r, g, b) in (
        (255, 255, 255),
        (228, 228, 228),
        (136, 136, 136),
        (34, 34, 34),
        (255, 167, 209),
        (229, 0, 0),
        (229, 149, 0),
        (160, 106, 66),
        (229, 217, 0),
        (148, 224, 68),
        (2, 190, 1),
        (0, 211, 221),
        (0, 131, 199),
        (0, 0, 234),
        (207, 110, 228),
        (130, 0, 128),
    )
)


@dataclass(frozen=True, slots=True)
class PixelUpdate:
    chunk_x: int
    chunk_y: int
    color_index: int
    offset_x: int
    offset_y: int

    def position(self, chunk_size: Point = CHUNK_SIZE) -> Point:
        return Point(
            self.chunk_x * chunk_size.x + self.offset_x,
            self.chunk_y * chunk_size.y + self.offset_y,
        )

    @property
    def color(self) -> Color:
        return PALETTE[self.color_index]


def decode_frame(frame: bytes) -> PixelUpdate:
    if not frame:
        raise MalformedRecord("truncated", "empty frame")
    opcode = frame[0]
    if opcode != OP_PIXEL_UPDATE:
        raise MalformedRecord("unknown_opcode", f"unknown opcode 0x{opcode:02X}")
    if len(frame) != PIXEL_UPDATE_LEN:
        raise MalformedRecord("bad_length", f"pixel update must be {PIXEL_UPDATE_LEN} bytes, got {len(frame)}")

    _op, cx, cy, mixed = struct.unpack(_PIXEL_UPDATE_FMT, frame)
    return PixelUpdate(
        chunk_x=cx,
        chunk_y=cy,
        color_index=mixed & 0x0F,
        offset_x=(mixed >> 4) & 0x3F,
        offset_y=(mixed >> 10) & 0x3F,
    )


def encode_frame(upd: PixelUpdate) -> bytes:
    mixed = (upd.color_index & 0x0F) | ((upd.offset_x & 0x3F) << 4) | ((upd.offset_y & 0x3F) << 10)
    return struct.pack(_PIXEL_UPDATE_FMT, OP_PIXEL_UPDATE, upd.chunk_x, upd.chunk_y, mixed)
