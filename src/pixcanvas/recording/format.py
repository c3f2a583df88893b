"""pixcanvas recording format (.pixrec).

Single source of truth for the on-disk layout. Writer and reader must stay in sync.

The file is one gzip member. Decompressed, it holds a fixed header followed by
framed records. All integers are little-endian.

Header (54 bytes):
    [Magic(4) | Version u16 | CreatedAt i64 ns | ChunkW u32 | ChunkH u32 |
     OriginX i32 | OriginY i32 | Reserved 6 x u32]

Record:
    [Type u8 | Time i64 ns | payload]

    SET_PIXEL        x i32, y i32, r u8, g u8, b u8
    INVALIDATE_RECT  min_x, min_y, max_x, max_y  (i32 each, half-open)
    INVALIDATE_ALL   -
    REVALIDATE_RECT  same as INVALIDATE_RECT
    SET_IMAGE        x i32, y i32, size u32, then `size` encoded image bytes

Signal-download, chunk-change and set-time events have no record type.
"""

from __future__ import annotations

import io
import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import BinaryIO, Iterator, Optional, Union

from pixcanvas.errors import MalformedRecord

MAGIC = b"PREC"
VERSION = 1

FILE_EXTENSION = ".pixrec"
GZIP_COMMENT = "pixcanvas recording"

HEADER_FMT = "<4sHqIIii6I"
HEADER_LEN = struct.calcsize(HEADER_FMT)

REC_PREFIX_FMT = "<Bq"
REC_PREFIX_LEN = struct.calcsize(REC_PREFIX_FMT)

_SET_PIXEL_FMT = "<iiBBB"
_RECT_FMT = "<iiii"
_SET_IMAGE_FMT = "<iiI"

# Zip bomb protection for the reader; BMP chunks are far smaller in practice.
DEFAULT_MAX_IMAGE_SIZE = 64 * 1024 * 1024


class RecordType(IntEnum):
    SET_PIXEL = 10
    INVALIDATE_RECT = 20
    INVALIDATE_ALL = 21
    REVALIDATE_RECT = 22
    SET_IMAGE = 30


@dataclass(frozen=True, slots=True)
class RecordingHeader:
    created_at_ns: int
    chunk_width: int
    chunk_height: int
    origin_x: int
    origin_y: int
    version: int = VERSION


@dataclass(frozen=True, slots=True)
class SetPixelRecord:
    time_ns: int
    x: int
    y: int
    r: int
    g: int
    b: int


@dataclass(frozen=True, slots=True)
class InvalidateRectRecord:
    time_ns: int
    min_x: int
    min_y: int
    max_x: int
    max_y: int


@dataclass(frozen=True, slots=True)
class InvalidateAllRecord:
    time_ns: int


@dataclass(frozen=True, slots=True)
class RevalidateRectRecord:
    time_ns: int
    min_x: int
    min_y: int
    max_x: int
    max_y: int


@dataclass(frozen=True, slots=True)
class SetImageRecord:
    time_ns: int
    x: int
    y: int
    data: bytes


AnyRecord = Union[SetPixelRecord, InvalidateRectRecord, InvalidateAllRecord, RevalidateRectRecord, SetImageRecord]


# ---------------------------------------------------------------------
# Header
# ---------------------------------------------------------------------

def encode_header(h: RecordingHeader) -> bytes:
    return struct.pack(
        HEADER_FMT,
        MAGIC,
        int(h.version),
        int(h.created_at_ns),
        int(h.chunk_width),
        int(h.chunk_height),
        int(h.origin_x),
        int(h.origin_y),
        0, 0, 0, 0, 0, 0,
    )


def decode_header(data: bytes) -> RecordingHeader:
    if len(data) < HEADER_LEN:
        raise MalformedRecord("truncated", f"header needs {HEADER_LEN} bytes, got {len(data)}", offset=0)
    magic, version, created, cw, ch, ox, oy, *_reserved = struct.unpack_from(HEADER_FMT, data, 0)
    if magic != MAGIC:
        raise MalformedRecord("bad_magic", f"not a recording: magic {magic!r}", offset=0)
    return RecordingHeader(
        created_at_ns=created,
        chunk_width=cw,
        chunk_height=ch,
        origin_x=ox,
        origin_y=oy,
        version=version,
    )


# ---------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------

def encode_record(rec: AnyRecord) -> bytes:
    """Frame one record. The result is meant to be written in a single call."""
    if isinstance(rec, SetPixelRecord):
        prefix = struct.pack(REC_PREFIX_FMT, RecordType.SET_PIXEL, rec.time_ns)
        return prefix + struct.pack(_SET_PIXEL_FMT, rec.x, rec.y, rec.r, rec.g, rec.b)
    if isinstance(rec, InvalidateRectRecord):
        prefix = struct.pack(REC_PREFIX_FMT, RecordType.INVALIDATE_RECT, rec.time_ns)
        return prefix + struct.pack(_RECT_FMT, rec.min_x, rec.min_y, rec.max_x, rec.max_y)
    if isinstance(rec, InvalidateAllRecord):
        return struct.pack(REC_PREFIX_FMT, RecordType.INVALIDATE_ALL, rec.time_ns)
    if isinstance(rec, RevalidateRectRecord):
        prefix = struct.pack(REC_PREFIX_FMT, RecordType.REVALIDATE_RECT, rec.time_ns)
        return prefix + struct.pack(_RECT_FMT, rec.min_x, rec.min_y, rec.max_x, rec.max_y)
    if isinstance(rec, SetImageRecord):
        data = bytes(rec.data)
        prefix = struct.pack(REC_PREFIX_FMT, RecordType.SET_IMAGE, rec.time_ns)
        return prefix + struct.pack(_SET_IMAGE_FMT, rec.x, rec.y, len(data)) + data
    raise TypeError(f"not a record: {type(rec).__name__}")


def _read_exact(stream: BinaryIO, n: int, what: str, offset: int) -> bytes:
    data = stream.read(n)
    if len(data) != n:
        raise MalformedRecord("truncated", f"truncated {what}: wanted {n} bytes, got {len(data)}", offset=offset)
    return data


def read_record(stream: BinaryIO, *, max_image_size: int = DEFAULT_MAX_IMAGE_SIZE) -> Optional[AnyRecord]:
    """Read the next record from `stream`. Returns None on a clean end of stream."""
    offset = stream.tell() if stream.seekable() else -1
    first = stream.read(1)
    if not first:
        return None
    prefix = first + _read_exact(stream, REC_PREFIX_LEN - 1, "record prefix", offset)
    tag, time_ns = struct.unpack(REC_PREFIX_FMT, prefix)

    if tag == RecordType.SET_PIXEL:
        x, y, r, g, b = struct.unpack(_SET_PIXEL_FMT, _read_exact(stream, struct.calcsize(_SET_PIXEL_FMT), "pixel", offset))
        return SetPixelRecord(time_ns, x, y, r, g, b)

    if tag in (RecordType.INVALIDATE_RECT, RecordType.REVALIDATE_RECT):
        vals = struct.unpack(_RECT_FMT, _read_exact(stream, struct.calcsize(_RECT_FMT), "rect", offset))
        cls = InvalidateRectRecord if tag == RecordType.INVALIDATE_RECT else RevalidateRectRecord
        return cls(time_ns, *vals)

    if tag == RecordType.INVALIDATE_ALL:
        return InvalidateAllRecord(time_ns)

    if tag == RecordType.SET_IMAGE:
        x, y, size = struct.unpack(_SET_IMAGE_FMT, _read_exact(stream, struct.calcsize(_SET_IMAGE_FMT), "image header", offset))
        if size > max_image_size:
            raise MalformedRecord("bad_length", f"image payload of {size} bytes exceeds limit {max_image_size}", offset=offset)
        data = stream.read(size)
        if len(data) != size:
            raise MalformedRecord("bad_length", f"image declares {size} bytes, only {len(data)} available", offset=offset)
        return SetImageRecord(time_ns, x, y, data)

    raise MalformedRecord("unknown_type", f"unknown record type {tag}", offset=offset)


def iter_records(stream: BinaryIO) -> Iterator[AnyRecord]:
    while True:
        rec = read_record(stream)
        if rec is None:
            return
        yield rec


def decode_record(data: bytes) -> AnyRecord:
    """Decode exactly one framed record."""
    buf = io.BytesIO(data)
    rec = read_record(buf)
    if rec is None:
        raise MalformedRecord("truncated", "empty input", offset=0)
    if buf.tell() != len(data):
        raise MalformedRecord("bad_length", f"{len(data) - buf.tell()} trailing bytes after record", offset=buf.tell())
    return rec
