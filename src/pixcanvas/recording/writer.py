# src/pixcanvas/recording/writer.py
from __future__ import annotations

import logging
import os
import re
import struct
import threading
import time
import zlib
from contextlib import contextmanager, suppress
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, BinaryIO, Callable, Iterable, Iterator, Mapping, Optional, Sequence

from pixcanvas.canvas.events import Canvas, CanvasListener
from pixcanvas.canvas.geometry import CanvasImage, Color, Point, Rect
from pixcanvas.canvas.imaging import encode_bmp
from pixcanvas.errors import CanvasIOError, ClosedError
from pixcanvas.logging_utils import log_event
from pixcanvas.recording.format import (
    FILE_EXTENSION,
    GZIP_COMMENT,
    AnyRecord,
    InvalidateAllRecord,
    InvalidateRectRecord,
    RecordingHeader,
    RevalidateRectRecord,
    SetImageRecord,
    SetPixelRecord,
    encode_header,
    encode_record,
)
from pixcanvas.recording.gzip_stream import GzipStreamWriter

ImageEncoder = Callable[[Any], bytes]

_LABEL_RE = re.compile(r"[^A-Za-z0-9.\-]")

log = logging.getLogger("pixcanvas.recording")


def sanitize_label(label: str) -> str:
    """Replace every character outside [A-Za-z0-9.-] with "_"."""
    return _LABEL_RE.sub("_", str(label))


def recording_file_name(now: datetime, suffix: str = "") -> str:
    # RFC 3339 shaped, but without ":" so the name is valid everywhere and sorts by time.
    return now.astimezone(timezone.utc).strftime("%Y-%m-%dT%H%M%S") + suffix + FILE_EXTENSION


class _RWLock:
    """Readers-writer lock. Pending writers block new readers."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class CanvasDiskWriter(CanvasListener):
    """Canvas listener that appends every persisted event to a .pixrec file.

    Use open_disk_writer() to create one. Handlers raise ClosedError once close()
    has run, and CanvasIOError (naming the file) when the write fails.
    """

    def __init__(
        self,
        *,
        canvas: Canvas,
        label: str,
        path: Path,
        fileobj: BinaryIO,
        zip_writer: GzipStreamWriter,
        image_encoder: ImageEncoder,
    ) -> None:
        self.canvas = canvas
        self.label = label
        self.path = path

        self._file = fileobj
        self._zip = zip_writer
        self._image_encoder = image_encoder

        self._closed = False
        self._closed_lock = _RWLock()

        # Guards the compressor so one record is one uninterrupted write.
        self._zip_mu = threading.Lock()
        self._last_ns = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def _write(self, make: Callable[[int], AnyRecord]) -> None:
        with self._zip_mu:
            now_ns = max(time.time_ns(), self._last_ns)
            self._last_ns = now_ns
            frame = encode_record(make(now_ns))
            try:
                self._zip.write(frame)
            except (OSError, ValueError, zlib.error) as e:
                log_event(log, "recording_write_failed", level=logging.WARNING, path=str(self.path), error=str(e))
                raise CanvasIOError("write_failed", f"can't write to file {self.path}: {e}", str(self.path)) from e

    def set_interest_rects(self, rects: Iterable[Rect]) -> None:
        with self._closed_lock.read():
            if self._closed:
                raise ClosedError()
            self.canvas.register_rects(self, list(rects))

    # -------------------------
    # Persisted events
    # -------------------------

    def handle_set_pixel(self, pos: Point, color: Color, source_id: int) -> None:
        with self._closed_lock.read():
            if self._closed:
                raise ClosedError()
            r, g, b = color.to_rgb8()
            self._write(lambda t: SetPixelRecord(t, pos.x, pos.y, r, g, b))

    def handle_invalidate_rect(self, rect: Rect, source_ids: Sequence[int]) -> None:
        with self._closed_lock.read():
            if self._closed:
                raise ClosedError()
            self._write(lambda t: InvalidateRectRecord(t, rect.min_x, rect.min_y, rect.max_x, rect.max_y))

    def handle_invalidate_all(self) -> None:
        with self._closed_lock.read():
            if self._closed:
                raise ClosedError()
            self._write(InvalidateAllRecord)

    def handle_revalidate_rect(self, rect: Rect, source_ids: Sequence[int]) -> None:
        with self._closed_lock.read():
            if self._closed:
                raise ClosedError()
            self._write(lambda t: RevalidateRectRecord(t, rect.min_x, rect.min_y, rect.max_x, rect.max_y))

    def handle_set_image(self, image: CanvasImage, valid: bool, source_ids: Sequence[int]) -> None:
        with self._closed_lock.read():
            if self._closed:
                raise ClosedError()

            # Out of sync with the game; a valid image will follow.
            if not valid:
                return

            try:
                raw = bytes(self._image_encoder(image.image))
            except Exception as e:
                raise CanvasIOError("image_encode_failed", f"can't create image for {self.path}: {e}", str(self.path)) from e

            origin = image.origin
            self._write(lambda t: SetImageRecord(t, origin.x, origin.y, raw))

    # -------------------------
    # Not persisted (a replay can derive these)
    # -------------------------

    def handle_signal_download(self, rect: Rect, source_ids: Sequence[int]) -> None:
        with self._closed_lock.read():
            if self._closed:
                raise ClosedError()

    def handle_chunks_change(self, created: Mapping[Rect, int], removed: Mapping[Rect, int]) -> None:
        with self._closed_lock.read():
            if self._closed:
                raise ClosedError()

    def handle_set_time(self, t: datetime) -> None:
        with self._closed_lock.read():
            if self._closed:
                raise ClosedError()

    # -------------------------
    # Lifecycle
    # -------------------------

    def close(self) -> None:
        """Finish the recording. Call exactly once."""
        self.canvas.unsubscribe_listener(self)

        with self._closed_lock.write():
            # A replay must always end invalidated. Written under the exclusive
            # lock so no in-flight event can land after it.
            try:
                self._write(InvalidateAllRecord)
            except CanvasIOError as e:
                log_event(log, "recording_final_invalidate_failed", level=logging.WARNING, path=str(self.path), error=str(e))
            self._closed = True

        try:
            with self._zip_mu:
                self._zip.close()
        except (OSError, zlib.error) as e:
            raise CanvasIOError("close_failed", f"can't finish file {self.path}: {e}", str(self.path)) from e
        finally:
            self._file.close()

        log_event(log, "recording_closed", path=str(self.path))

    def __enter__(self) -> "CanvasDiskWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def _create_unique(directory: Path, now: datetime) -> tuple[Path, BinaryIO]:
    n = 0
    while True:
        path = directory / recording_file_name(now, f"_{n}" if n else "")
        try:
            return path, open(path, "xb")
        except FileExistsError:
            n += 1


def open_disk_writer(
    canvas: Canvas,
    label: str,
    *,
    base_dir: Optional[os.PathLike[str] | str] = None,
    image_encoder: ImageEncoder = encode_bmp,
) -> CanvasDiskWriter:
    """Create recordings/<label>/<utc time>.pixrec and subscribe it to `canvas`."""
    short = sanitize_label(label)
    base = Path(base_dir or os.environ.get("PIXCANVAS_RECORDINGS_DIR") or ".")
    directory = base / "recordings" / short
    now = datetime.now(timezone.utc)

    try:
        directory.mkdir(parents=True, exist_ok=True)
        path, fh = _create_unique(directory, now)
    except OSError as e:
        raise CanvasIOError("create_failed", f"can't create file in {directory}: {e}", str(directory)) from e

    zw: Optional[GzipStreamWriter] = None
    try:
        zw = GzipStreamWriter(fh, name=short, comment=GZIP_COMMENT, mtime=int(now.timestamp()))
        chunk = canvas.chunk_size
        origin = canvas.origin
        zw.write(
            encode_header(
                RecordingHeader(
                    created_at_ns=time.time_ns(),
                    chunk_width=chunk.x,
                    chunk_height=chunk.y,
                    origin_x=origin.x,
                    origin_y=origin.y,
                )
            )
        )
    except (OSError, zlib.error, struct.error) as e:
        if zw is not None:
            with suppress(OSError, zlib.error):
                zw.close()
        fh.close()
        raise CanvasIOError("header_write_failed", f"can't write to file {path}: {e}", str(path)) from e

    writer = CanvasDiskWriter(
        canvas=canvas,
        label=short,
        path=path,
        fileobj=fh,
        zip_writer=zw,
        image_encoder=image_encoder,
    )
    # Raw events only; the canvas must not manage virtual chunks for us.
    canvas.subscribe_listener(writer, False)

    log_event(log, "recording_opened", path=str(path), label=short)
    return writer
