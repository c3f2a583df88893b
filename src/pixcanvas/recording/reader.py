from __future__ import annotations

import gzip
import os
import zlib
from typing import Any, BinaryIO, Callable, Iterator, Optional

from pixcanvas.canvas.events import CanvasListener
from pixcanvas.canvas.geometry import CanvasImage, Color, Point, Rect
from pixcanvas.canvas.imaging import decode_image
from pixcanvas.errors import CanvasIOError, MalformedRecord
from pixcanvas.recording.format import (
    HEADER_LEN,
    VERSION,
    AnyRecord,
    InvalidateAllRecord,
    InvalidateRectRecord,
    RecordingHeader,
    RevalidateRectRecord,
    SetImageRecord,
    SetPixelRecord,
    decode_header,
    read_record,
)

ImageDecoder = Callable[[bytes], Any]


class RecordingReader:
    """Sequential reader for .pixrec files.

    records() yields the decoded records in file order. replay() feeds them to a
    CanvasListener. Chunk-change and download signals are not synthesized.
    """

    def __init__(self, path: os.PathLike[str] | str, *, tolerate_truncation: bool = False) -> None:
        self.path = str(path)
        self.tolerate_truncation = bool(tolerate_truncation)
        try:
            self._fh: BinaryIO = gzip.open(self.path, "rb")  # type: ignore[assignment]
            raw = self._fh.read(HEADER_LEN)
        except (OSError, EOFError) as e:
            self._close_quietly()
            raise CanvasIOError("read_failed", f"can't read recording {self.path}: {e}", self.path) from e

        try:
            self.header: RecordingHeader = decode_header(raw)
            if self.header.version > VERSION:
                raise MalformedRecord(
                    "unsupported_version",
                    f"recording version {self.header.version} is newer than supported version {VERSION}",
                    offset=0,
                )
        except MalformedRecord:
            self._close_quietly()
            raise

    def _close_quietly(self) -> None:
        fh = getattr(self, "_fh", None)
        if fh is not None:
            fh.close()

    def records(self) -> Iterator[AnyRecord]:
        while True:
            try:
                rec = read_record(self._fh)
            except MalformedRecord as e:
                if self.tolerate_truncation and e.code in {"truncated", "bad_length"}:
                    return
                raise
            except (EOFError, zlib.error, gzip.BadGzipFile) as e:
                # Compressed stream cut short, e.g. the recorder was killed mid-write.
                if self.tolerate_truncation:
                    return
                raise MalformedRecord("truncated", f"compressed stream of {self.path} ends early: {e}") from e
            if rec is None:
                return
            yield rec

    def replay(self, listener: CanvasListener, *, image_decoder: Optional[ImageDecoder] = None) -> int:
        """Drive `listener` with every record. Returns the number of records replayed."""
        decode = image_decoder or decode_image
        n = 0
        for rec in self.records():
            if isinstance(rec, SetPixelRecord):
                listener.handle_set_pixel(Point(rec.x, rec.y), Color.from_rgba8(rec.r, rec.g, rec.b), 0)
            elif isinstance(rec, InvalidateRectRecord):
                listener.handle_invalidate_rect(Rect(rec.min_x, rec.min_y, rec.max_x, rec.max_y), [])
            elif isinstance(rec, InvalidateAllRecord):
                listener.handle_invalidate_all()
            elif isinstance(rec, RevalidateRectRecord):
                listener.handle_revalidate_rect(Rect(rec.min_x, rec.min_y, rec.max_x, rec.max_y), [])
            elif isinstance(rec, SetImageRecord):
                img = decode(rec.data)
                w, h = getattr(img, "size", (0, 0))
                rect = Rect(rec.x, rec.y, rec.x + int(w), rec.y + int(h))
                listener.handle_set_image(CanvasImage(rect=rect, image=img), True, [])
            n += 1
        return n

    def close(self) -> None:
        self._fh.close()

    def __enter__(self) -> "RecordingReader":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def open_recording(path: os.PathLike[str] | str, *, tolerate_truncation: bool = False) -> RecordingReader:
    return RecordingReader(path, tolerate_truncation=tolerate_truncation)
