# src/pixcanvas/errors.py
from __future__ import annotations

from typing import Optional


class PixcanvasError(RuntimeError):
    def __init__(self, code: str, msg: str) -> None:
        super().__init__(msg)
        self.code = code


class CanvasIOError(PixcanvasError):
    """File or network failure. `resource` is the path or URL involved."""

    def __init__(self, code: str, msg: str, resource: str) -> None:
        resource = str(resource)
        if resource not in msg:
            msg = f"{msg} ({resource})"
        super().__init__(code, msg)
        self.resource = resource


class ClosedError(PixcanvasError):
    def __init__(self, msg: str = "listener is closed") -> None:
        super().__init__("closed", msg)


class MalformedRecord(PixcanvasError):
    def __init__(self, code: str, msg: str, offset: Optional[int] = None) -> None:
        super().__init__(code, msg)
        self.offset = offset


class AuthError(PixcanvasError):
    pass


class SessionConnectError(PixcanvasError):
    pass
