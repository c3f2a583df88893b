# src/pixcanvas/recording/__init__.py
"""
Recording package

  - format: .pixrec header/record layouts and the binary record codec
  - gzip_stream: streaming gzip writer with name/comment metadata
  - writer: CanvasDiskWriter, a canvas listener that appends records to disk
  - reader: RecordingReader, decoding and replay into a listener
"""

from __future__ import annotations

from pixcanvas.recording.reader import RecordingReader, open_recording
from pixcanvas.recording.writer import CanvasDiskWriter, open_disk_writer, sanitize_label

__all__ = [
    "CanvasDiskWriter",
    "RecordingReader",
    "open_disk_writer",
    "open_recording",
    "sanitize_label",
]
