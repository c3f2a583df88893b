from __future__ import annotations

import gzip
import logging
import re
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Tuple

import pytest
from PIL import Image

from pixcanvas.canvas.geometry import CanvasImage, Color, Point, Rect
from pixcanvas.errors import CanvasIOError, ClosedError
from pixcanvas.recording.format import (
    GZIP_COMMENT,
    HEADER_LEN,
    InvalidateAllRecord,
    InvalidateRectRecord,
    RecordingHeader,
    RevalidateRectRecord,
    SetImageRecord,
    SetPixelRecord,
    decode_header,
    iter_records,
)
from pixcanvas.recording import writer as writer_mod
from pixcanvas.recording.gzip_stream import GzipStreamWriter
from pixcanvas.recording.writer import open_disk_writer, sanitize_label


def _read(path: Path) -> Tuple[RecordingHeader, list]:
    with gzip.open(path, "rb") as fh:
        header = decode_header(fh.read(HEADER_LEN))
        return header, list(iter_records(fh))


def _gzip_name_and_comment(path: Path) -> Tuple[str, str]:
    raw = path.read_bytes()
    assert raw[:3] == b"\x1f\x8b\x08"
    flags = raw[3]
    assert flags & 0x08 and flags & 0x10
    rest = raw[10:]
    name, rest = rest.split(b"\x00", 1)
    comment, _ = rest.split(b"\x00", 1)
    return name.decode("latin-1"), comment.decode("latin-1")


def test_sanitize_label() -> None:
    assert sanitize_label("My Canvas!/weird") == "My_Canvas__weird"
    assert sanitize_label("pixelcanvas.io-main") == "pixelcanvas.io-main"
    assert sanitize_label("ä:b") == "__b"


def test_open_creates_file_header_and_subscription(tmp_path: Path, canvas) -> None:
    w = open_disk_writer(canvas, "My Canvas!/weird", base_dir=tmp_path)
    try:
        assert w.path.parent == tmp_path / "recordings" / "My_Canvas__weird"
        assert re.fullmatch(r"\d{4}-\d{2}-\d{2}T\d{6}(_\d+)?\.pixrec", w.path.name)
        assert canvas.listeners == {w: False}
    finally:
        w.close()

    header, records = _read(w.path)
    assert header.version == 1
    assert (header.chunk_width, header.chunk_height) == (64, 64)
    assert (header.origin_x, header.origin_y) == (-3, 7)
    created = datetime.fromtimestamp(header.created_at_ns / 1e9, tz=timezone.utc)
    assert abs((datetime.now(timezone.utc) - created).total_seconds()) < 60
    assert records == [InvalidateAllRecord(records[0].time_ns)]

    with gzip.open(w.path, "rb") as fh:
        assert fh.read(4) == b"PREC"


def test_gzip_metadata_carries_label_and_comment(tmp_path: Path, canvas) -> None:
    w = open_disk_writer(canvas, "pixelcanvas.io", base_dir=tmp_path)
    w.close()
    assert _gzip_name_and_comment(w.path) == ("pixelcanvas.io", GZIP_COMMENT)


def test_two_writers_in_the_same_second_get_distinct_files(tmp_path: Path, canvas) -> None:
    a = open_disk_writer(canvas, "x", base_dir=tmp_path)
    b = open_disk_writer(canvas, "x", base_dir=tmp_path)
    try:
        assert a.path != b.path
    finally:
        a.close()
        b.close()


def test_persisted_subset_in_delivery_order(tmp_path: Path, canvas) -> None:
    w = open_disk_writer(canvas, "order", base_dir=tmp_path, image_encoder=lambda img: b"IMG:" + img)
    r = Rect(0, 0, 64, 64)

    w.handle_set_pixel(Point(1, 2), Color(0x12FF, 0xAB01, 0x0080), 0)
    w.handle_signal_download(r, [1])
    w.handle_invalidate_rect(r, [1])
    w.handle_chunks_change({r: 1}, {})
    w.handle_set_time(datetime.now(timezone.utc))
    w.handle_revalidate_rect(Rect(-64, -64, 0, 0), [2])
    w.handle_invalidate_all()
    w.handle_set_image(CanvasImage(Rect(64, 0, 128, 64), b"stale"), False, [1])
    w.handle_set_image(CanvasImage(Rect(64, 0, 128, 64), b"fresh"), True, [1])
    w.close()

    _, records = _read(w.path)
    kinds = [type(x) for x in records]
    assert kinds == [
        SetPixelRecord,
        InvalidateRectRecord,
        RevalidateRectRecord,
        InvalidateAllRecord,
        SetImageRecord,
        InvalidateAllRecord,
    ]

    px = records[0]
    # 16 bit channels are truncated, not rounded.
    assert (px.x, px.y, px.r, px.g, px.b) == (1, 2, 0x12, 0xAB, 0x00)
    assert (records[2].min_x, records[2].max_y) == (-64, 0)
    assert (records[4].x, records[4].y, records[4].data) == (64, 0, b"IMG:fresh")

    times = [x.time_ns for x in records]
    assert times == sorted(times)


def test_default_image_codec_writes_bmp(tmp_path: Path, canvas) -> None:
    w = open_disk_writer(canvas, "bmp", base_dir=tmp_path)
    w.handle_set_image(CanvasImage(Rect(0, 0, 2, 2), Image.new("RGB", (2, 2), (255, 0, 0))), True, [])
    w.close()

    _, records = _read(w.path)
    assert isinstance(records[0], SetImageRecord)
    assert records[0].data[:2] == b"BM"


def test_close_always_ends_with_invalidate_all(tmp_path: Path, canvas) -> None:
    w = open_disk_writer(canvas, "tail", base_dir=tmp_path)
    w.handle_set_pixel(Point(0, 0), Color.from_rgba8(1, 2, 3), 0)
    w.close()

    _, records = _read(w.path)
    assert isinstance(records[-1], InvalidateAllRecord)
    assert canvas.listeners == {}


def test_events_after_close_are_rejected_without_io(tmp_path: Path, canvas) -> None:
    w = open_disk_writer(canvas, "closed", base_dir=tmp_path)
    w.close()
    size = w.path.stat().st_size
    r = Rect(0, 0, 1, 1)

    calls = [
        lambda: w.handle_set_pixel(Point(0, 0), Color(0, 0, 0), 0),
        lambda: w.handle_invalidate_rect(r, []),
        lambda: w.handle_invalidate_all(),
        lambda: w.handle_revalidate_rect(r, []),
        lambda: w.handle_signal_download(r, []),
        lambda: w.handle_set_image(CanvasImage(r, b""), True, []),
        lambda: w.handle_chunks_change({}, {}),
        lambda: w.handle_set_time(datetime.now(timezone.utc)),
        lambda: w.set_interest_rects([r]),
    ]
    for call in calls:
        with pytest.raises(ClosedError):
            call()

    assert w.closed
    assert w.path.stat().st_size == size


def test_set_interest_rects_forwards_to_canvas(tmp_path: Path, canvas) -> None:
    w = open_disk_writer(canvas, "rects", base_dir=tmp_path)
    try:
        w.set_interest_rects([Rect(0, 0, 64, 64), Rect(64, 0, 128, 64)])
        assert canvas.rects[w] == [Rect(0, 0, 64, 64), Rect(64, 0, 128, 64)]
    finally:
        w.close()


def test_open_fails_when_directory_cannot_be_created(tmp_path: Path, canvas) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")

    with pytest.raises(CanvasIOError) as ei:
        open_disk_writer(canvas, "x", base_dir=blocker)
    assert ei.value.code == "create_failed"
    assert str(blocker) in str(ei.value)
    assert canvas.listeners == {}


def test_image_encoder_failure_names_the_file(tmp_path: Path, canvas) -> None:
    def broken(_img: object) -> bytes:
        raise ValueError("unsupported mode")

    w = open_disk_writer(canvas, "enc", base_dir=tmp_path, image_encoder=broken)
    try:
        with pytest.raises(CanvasIOError) as ei:
            w.handle_set_image(CanvasImage(Rect(0, 0, 1, 1), object()), True, [])
        assert ei.value.code == "image_encode_failed"
        assert str(w.path) in str(ei.value)
    finally:
        w.close()


def test_close_races_with_concurrent_events(tmp_path: Path, canvas) -> None:
    w = open_disk_writer(canvas, "race", base_dir=tmp_path)
    outcomes: List[str] = []
    lock = threading.Lock()
    start = threading.Event()

    def spam(tid: int) -> None:
        start.wait()
        for i in range(300):
            try:
                w.handle_set_pixel(Point(tid, i), Color.from_rgba8(tid, i % 256, 0), tid)
                res = "ok"
            except ClosedError:
                res = "closed"
            with lock:
                outcomes.append(res)

    threads = [threading.Thread(target=spam, args=(t,)) for t in range(4)]
    for t in threads:
        t.start()
    start.set()
    w.close()
    for t in threads:
        t.join(10)

    _, records = _read(w.path)
    written = sum(1 for x in records if isinstance(x, SetPixelRecord))
    assert written == outcomes.count("ok")
    assert isinstance(records[-1], InvalidateAllRecord)
    assert len(outcomes) == 4 * 300


def _track_opened_files(monkeypatch: pytest.MonkeyPatch) -> List[Tuple[Path, object]]:
    opened: List[Tuple[Path, object]] = []
    real = writer_mod._create_unique

    def tracking(directory: Path, now: datetime):
        path, fh = real(directory, now)
        opened.append((path, fh))
        return path, fh

    monkeypatch.setattr(writer_mod, "_create_unique", tracking)
    return opened


def test_header_write_failure_closes_the_file(tmp_path: Path, canvas, monkeypatch: pytest.MonkeyPatch) -> None:
    opened = _track_opened_files(monkeypatch)

    def full_disk(self, data: bytes) -> int:
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(GzipStreamWriter, "write", full_disk)

    with pytest.raises(CanvasIOError) as ei:
        open_disk_writer(canvas, "full", base_dir=tmp_path)

    [(path, fh)] = opened
    assert ei.value.code == "header_write_failed"
    assert str(path) in str(ei.value)
    assert fh.closed
    assert canvas.listeners == {}


def test_unencodable_canvas_geometry_fails_the_header(tmp_path: Path, make_canvas, monkeypatch: pytest.MonkeyPatch) -> None:
    opened = _track_opened_files(monkeypatch)
    bad = make_canvas(chunk_size=Point(-1, 64))

    with pytest.raises(CanvasIOError) as ei:
        open_disk_writer(bad, "geom", base_dir=tmp_path)

    [(path, fh)] = opened
    assert ei.value.code == "header_write_failed"
    assert str(path) in str(ei.value)
    assert fh.closed
    assert bad.listeners == {}


def test_write_failure_names_the_file_and_close_still_finishes(
    tmp_path: Path, canvas, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    w = open_disk_writer(canvas, "broken", base_dir=tmp_path)

    def full_disk(data: bytes) -> int:
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(w._zip, "write", full_disk)

    with pytest.raises(CanvasIOError) as ei:
        w.handle_set_pixel(Point(0, 0), Color.from_rgba8(1, 2, 3), 0)
    assert ei.value.code == "write_failed"
    assert str(w.path) in str(ei.value)

    with caplog.at_level(logging.WARNING, logger="pixcanvas.recording"):
        w.close()

    assert any("recording_final_invalidate_failed" in r.getMessage() for r in caplog.records)
    assert w.closed
    assert w._file.closed
    assert canvas.listeners == {}
    with pytest.raises(ClosedError):
        w.handle_invalidate_all()

    # Only the header made it to disk, and the gzip member is complete.
    header, records = _read(w.path)
    assert header.origin_x == -3
    assert records == []
