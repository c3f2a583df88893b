"""
pixcanvas: Live session client

One client owns one logical connection to the live-update websocket.

Threads per client:
  - status loop: polls /api/online now and every `status_interval_s`
  - connection loop: backoff -> resolve /api/ws -> dial -> read until the
    connection ends, forever, until close() is called
  - watcher (only while connected): waits for either close() or the end of the
    connection; on close() it sends a normal-closure frame, gives the peer
    `close_timeout_s` to finish, then drops the socket

close() is a one-shot broadcast followed by a join on both loops. When it
returns no thread of this client is running and no more I/O will happen.

Per-connection failures are logged and retried; they never leave the loop.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, List, Optional, Protocol, Tuple, Union
from urllib.parse import urlencode, urlsplit, urlunsplit

from pydantic import ValidationError
from websockets.frames import CloseCode
from websockets.sync.client import connect as ws_connect

from pixcanvas.canvas.geometry import Color, Point
from pixcanvas.errors import AuthError, CanvasIOError, MalformedRecord, SessionConnectError
from pixcanvas.live import http
from pixcanvas.live.config import LiveConfig, live_config_from_env
from pixcanvas.live.schemas import MeReq, MeResp, OnlineResp, WebsocketUrlResp
from pixcanvas.live.wire import decode_frame
from pixcanvas.logging_utils import log_event

log = logging.getLogger("pixcanvas.live")


def _now_ms() -> int:
    return int(time.time() * 1000)


class SessionState(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    RESOLVING_ENDPOINT = "RESOLVING_ENDPOINT"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"


@dataclass
class LiveSession:
    """One connection attempt. A new one is made for every attempt."""

    url: str
    state: SessionState = SessionState.CONNECTING
    opened_at_ms: Optional[int] = None
    frames: int = 0
    malformed_frames: int = 0


class _AtomicInt:
    """Single-word cell. Rebinding one attribute is atomic, so no lock is needed."""

    __slots__ = ("_v",)

    def __init__(self, v: int = 0) -> None:
        self._v = int(v)

    def load(self) -> int:
        return self._v

    def store(self, v: int) -> None:
        self._v = int(v)


class CanvasSink(Protocol):
    """Where decoded live updates go."""

    def set_pixel(self, pos: Point, color: Color) -> None: ...
    def invalidate_all(self) -> None: ...


class WebsocketConn(Protocol):
    def recv(self) -> Union[bytes, str]: ...
    def close(self, code: int = CloseCode.NORMAL_CLOSURE, reason: str = "") -> None: ...


GetJson = Callable[..., Any]
PostJson = Callable[..., Tuple[int, bytes]]
Dialer = Callable[..., WebsocketConn]


def dial_websocket(url: str, *, open_timeout_s: float, close_timeout_s: float) -> WebsocketConn:
    return ws_connect(url, open_timeout=open_timeout_s, close_timeout=close_timeout_s)


def _drop(conn: WebsocketConn) -> None:
    """Close the underlying socket without a closing handshake."""
    sock = getattr(conn, "socket", None)
    if sock is not None:
        sock.close()
    else:
        conn.close()


class PixelcanvasClient:
    def __init__(
        self,
        cfg: Optional[LiveConfig] = None,
        *,
        sink: Optional[CanvasSink] = None,
        get_json: GetJson = http.get_json,
        post_json: PostJson = http.post_json,
        dial: Dialer = dial_websocket,
    ) -> None:
        self.cfg = cfg or live_config_from_env()
        self.sink = sink

        self._get_json = get_json
        self._post_json = post_json
        self._dial = dial

        self._online = _AtomicInt(0)
        self._state = SessionState.DISCONNECTED
        self.session: Optional[LiveSession] = None

        # Filled by authenticate_me().
        self.auth_id = ""
        self.auth_name = ""
        self.center = Point(0, 0)
        self.next_pixel_at: Optional[datetime] = None

        self._quit = threading.Event()
        self._cv = threading.Condition()
        self._threads: List[threading.Thread] = []

    @property
    def fingerprint(self) -> str:
        return self.cfg.fingerprint

    @property
    def state(self) -> SessionState:
        return self._state

    def online_players(self) -> int:
        return self._online.load()

    # -------------------------
    # Lifecycle
    # -------------------------

    def start(self) -> "PixelcanvasClient":
        if self._threads or self._quit.is_set():
            return self
        for name, target in (("pixcanvas-status", self._status_loop), ("pixcanvas-conn", self._connection_loop)):
            t = threading.Thread(target=target, name=name, daemon=True)
            t.start()
            self._threads.append(t)
        return self

    def close(self) -> None:
        """Request shutdown and block until every loop has exited."""
        self._quit.set()
        with self._cv:
            self._cv.notify_all()
        for t in self._threads:
            t.join()
        self._threads = []
        log_event(log, "client_closed", fingerprint=self.cfg.fingerprint)

    def __enter__(self) -> "PixelcanvasClient":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # -------------------------
    # Status loop
    # -------------------------

    def _status_loop(self) -> None:
        while True:
            self._poll_online()
            if self._quit.wait(self.cfg.status_interval_s):
                return

    def _poll_online(self) -> None:
        url = self.cfg.url("/api/online")
        try:
            resp = OnlineResp.model_validate(self._get_json(url, timeout_s=self.cfg.http_timeout_s))
        except (CanvasIOError, ValidationError) as e:
            log_event(log, "online_players_failed", level=logging.WARNING, url=url, error=str(e))
            return
        except Exception as e:
            # Next tick retries; the loop only ends on close().
            log_event(log, "online_players_failed", level=logging.ERROR, url=url, error=repr(e))
            return
        self._online.store(resp.online)
        log_event(log, "online_players", online=resp.online)

    # -------------------------
    # Connection loop
    # -------------------------

    def websocket_url(self) -> str:
        url = self.cfg.url("/api/ws")
        try:
            resp = WebsocketUrlResp.model_validate(self._get_json(url, timeout_s=self.cfg.http_timeout_s))
        except (CanvasIOError, ValidationError) as e:
            raise SessionConnectError("resolve_failed", f"couldn't retrieve websocket URL from {url}: {e}") from e

        try:
            parts = urlsplit(resp.url)
        except ValueError as e:
            raise SessionConnectError("bad_ws_url", f"retrieved invalid websocket URL: {resp.url!r}: {e}") from e
        if parts.scheme not in {"ws", "wss"} or not parts.netloc:
            raise SessionConnectError("bad_ws_url", f"retrieved invalid websocket URL: {resp.url!r}")
        query = urlencode({"fingerprint": self.cfg.fingerprint})
        return urlunsplit((parts.scheme, parts.netloc, parts.path, query, ""))

    def _connection_loop(self) -> None:
        wait_s = 0.0
        while True:
            if self._quit.wait(wait_s):
                return
            # Every attempt after the first is delayed.
            wait_s = self.cfg.reconnect_backoff_s

            try:
                self._run_connection()
            except SessionConnectError as e:
                event = "ws_connect_failed" if e.code == "connect_failed" else "ws_resolve_failed"
                log_event(log, event, level=logging.WARNING, code=e.code, error=str(e))
            except Exception as e:
                log_event(log, "ws_attempt_failed", level=logging.ERROR, error=repr(e))
            finally:
                self._state = SessionState.DISCONNECTED

    def _run_connection(self) -> None:
        self._state = SessionState.RESOLVING_ENDPOINT
        url = self.websocket_url()
        if self._quit.is_set():
            return

        self._state = SessionState.CONNECTING
        try:
            conn = self._dial(url, open_timeout_s=self.cfg.open_timeout_s, close_timeout_s=self.cfg.close_timeout_s)
        except Exception as e:
            raise SessionConnectError("connect_failed", f"failed to connect to websocket server {url}: {e}") from e

        # Only established connections become the current session.
        session = LiveSession(url=url, state=SessionState.CONNECTED, opened_at_ms=_now_ms())
        self.session = session
        self._state = SessionState.CONNECTED
        log_event(log, "ws_connected", url=url)

        done = threading.Event()
        watcher = threading.Thread(target=self._watch, args=(conn, done), name="pixcanvas-ws-watch", daemon=True)
        watcher.start()
        try:
            self._read_loop(conn, session)
        finally:
            done.set()
            with self._cv:
                self._cv.notify_all()
            watcher.join()
            session.state = SessionState.DISCONNECTED
            log_event(log, "ws_closed", url=url, frames=session.frames, malformed=session.malformed_frames)
            # Updates may have been missed while disconnected.
            self._forward(lambda s: s.invalidate_all())

    def _watch(self, conn: WebsocketConn, done: threading.Event) -> None:
        with self._cv:
            self._cv.wait_for(lambda: self._quit.is_set() or done.is_set())

        if not done.is_set():
            try:
                conn.close(CloseCode.NORMAL_CLOSURE)
            except Exception as e:
                log_event(log, "ws_close_failed", level=logging.WARNING, error=str(e))
            done.wait(self.cfg.close_timeout_s)
        try:
            _drop(conn)
        except OSError as e:
            log_event(log, "ws_drop_failed", level=logging.WARNING, error=str(e))

    def _read_loop(self, conn: WebsocketConn, session: LiveSession) -> None:
        while True:
            try:
                message = conn.recv()
            except Exception as e:
                log_event(log, "ws_read_error", error=str(e) or type(e).__name__)
                return
            self._handle_frame(message, session)

    def _handle_frame(self, message: Union[bytes, str], session: LiveSession) -> None:
        session.frames += 1
        if isinstance(message, str):
            session.malformed_frames += 1
            log_event(log, "ws_frame_unrecognized", level=logging.WARNING, code="text_frame", size=len(message))
            return
        try:
            upd = decode_frame(bytes(message))
        except MalformedRecord as e:
            session.malformed_frames += 1
            log_event(log, "ws_frame_unrecognized", level=logging.WARNING, code=e.code, error=str(e), size=len(message))
            return

        log_event(
            log,
            "pixel_update",
            level=logging.DEBUG,
            color=upd.color_index,
            chunk=[upd.chunk_x, upd.chunk_y],
            offset=[upd.offset_x, upd.offset_y],
        )
        self._forward(lambda s: s.set_pixel(upd.position(), upd.color))

    def _forward(self, fn: Callable[[CanvasSink], None]) -> None:
        if self.sink is None:
            return
        try:
            fn(self.sink)
        except Exception as e:
            log_event(log, "sink_error", level=logging.WARNING, error=str(e))

    # -------------------------
    # Authentication
    # -------------------------

    def authenticate_me(self) -> None:
        url = self.cfg.url("/api/me")
        body = MeReq(fingerprint=self.cfg.fingerprint).model_dump()
        status, raw = self._post_json(url, body, referer=self.cfg.url("/"), timeout_s=self.cfg.http_timeout_s)

        if status != 200:
            raise AuthError("bad_status", f"authentication failed with status {status} (body: {raw[:256]!r})")
        try:
            resp = MeResp.model_validate_json(raw)
        except ValidationError as e:
            raise AuthError("bad_body", f"invalid authentication response: {e}") from e
        if len(resp.center) < 2:
            raise AuthError("bad_center", "invalid center given in authentication response")

        self.auth_id = resp.id
        self.auth_name = resp.name
        self.center = Point(resp.center[0], resp.center[1])
        self.next_pixel_at = datetime.now(timezone.utc) + timedelta(milliseconds=int(resp.waitSeconds * 1000))
        log_event(log, "auth_ok", id=resp.id, name=resp.name, center=[self.center.x, self.center.y])
