"""
pixcanvas: live client and recorder for multiplayer pixel canvases

Subpackages:
  - canvas: geometry/color value types and the listener contract
  - recording: the .pixrec container (format, writer, reader)
  - live: live-update wire codec and the auto-reconnecting session client
"""

from __future__ import annotations

__version__ = "0.1.0"
