"""
Streaming gzip member writer (RFC 1952).

gzip.GzipFile cannot set the FCOMMENT header field, and recordings carry a
descriptive comment next to the original name. This writer emits a single
member with FNAME and FCOMMENT set and deflates through zlib as data arrives.
Any gzip reader (gzip.open included) can decompress the result.

The underlying file object is NOT closed by close(); its owner does that.
"""

from __future__ import annotations

import struct
import time
import zlib
from typing import BinaryIO, Optional

_FNAME = 0x08
_FCOMMENT = 0x10
_OS_UNKNOWN = 255


def _zstr(s: str) -> bytes:
    return s.encode("latin-1", errors="replace").replace(b"\x00", b"_") + b"\x00"


class GzipStreamWriter:
    def __init__(
        self,
        fileobj: BinaryIO,
        *,
        name: str = "",
        comment: str = "",
        level: int = zlib.Z_DEFAULT_COMPRESSION,
        mtime: Optional[int] = None,
    ) -> None:
        self._fileobj = fileobj
        self._crc = 0
        self._size = 0
        self._closed = False
        self._compressor = zlib.compressobj(level, zlib.DEFLATED, -zlib.MAX_WBITS, zlib.DEF_MEM_LEVEL, 0)

        flags = 0
        extra = b""
        if name:
            flags |= _FNAME
            extra += _zstr(name)
        if comment:
            flags |= _FCOMMENT
            extra += _zstr(comment)
        if mtime is None:
            mtime = int(time.time())
        header = b"\x1f\x8b\x08" + struct.pack("<BIBB", flags, mtime & 0xFFFFFFFF, 0, _OS_UNKNOWN) + extra
        self._fileobj.write(header)

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, data: bytes) -> int:
        if self._closed:
            raise ValueError("write to closed gzip stream")
        data = bytes(data)
        self._crc = zlib.crc32(data, self._crc)
        self._size += len(data)
        out = self._compressor.compress(data)
        if out:
            self._fileobj.write(out)
        return len(data)

    def flush(self) -> None:
        """Push everything written so far to the file (sync flush point)."""
        if self._closed:
            return
        self._fileobj.write(self._compressor.flush(zlib.Z_SYNC_FLUSH))
        self._fileobj.flush()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._fileobj.write(self._compressor.flush(zlib.Z_FINISH))
        self._fileobj.write(struct.pack("<II", self._crc & 0xFFFFFFFF, self._size & 0xFFFFFFFF))
        self._fileobj.flush()
