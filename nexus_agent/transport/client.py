from __future__ import annotations

import functools
import queue
import threading
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol, Union

from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.sync.client import connect as ws_connect

from ..context import AgentContext
from ..errors import TransportError
from .protocol import Codec, Event, EventKind, Frame, FrameKind, ProtocolError, codec_for, parse_event


USER_AGENT = "NexusAgent/1.0"
# Upper bound on how long an emitted frame waits in the outbound queue.
RECV_TIMEOUT_SECONDS = 0.2


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class Connection(Protocol):
    def send(self, frame: str) -> None: ...

    def recv(self, timeout: float) -> Union[str, bytes]: ...

    def close(self) -> None: ...


Connector = Callable[[str], Connection]
EventHandler = Callable[[Event], None]
Callback = Callable[[], None]


class WebSocketConnection:
    """Adapts a websockets sync client to the `Connection` protocol.

    `recv` raises TimeoutError when nothing arrived in time and TransportError
    once the peer has gone away.
    """

    def __init__(self, ws: Any) -> None:
        self.ws = ws

    def send(self, frame: str) -> None:
        try:
            self.ws.send(frame)
        except ConnectionClosed as e:
            raise TransportError(f"connection closed: {e}") from e

    def recv(self, timeout: float) -> Union[str, bytes]:
        try:
            return self.ws.recv(timeout=timeout)
        except ConnectionClosed as e:
            raise TransportError(f"connection closed: {e}") from e

    def close(self) -> None:
        self.ws.close()


def websocket_connector(url: str, *, token: str = "", open_timeout: float = 10.0) -> WebSocketConnection:
    headers = {"Authorization": f"Bearer {token}"} if token else None
    try:
        ws = ws_connect(
            url,
            additional_headers=headers,
            user_agent_header=USER_AGENT,
            open_timeout=open_timeout,
        )
    except WebSocketException as e:
        raise TransportError(f"handshake with {url} failed: {e}") from e
    return WebSocketConnection(ws)


class DuplexTransport:
    """Persistent, reconnecting connection to the backend.

    A single background thread owns the connection: it connects, flushes the
    outbound queue, reads with a short timeout and dispatches what it reads.
    Other threads only ever enqueue through `emit`. Event handlers must be
    registered before `connect()`; they run on the transport thread.
    """

    def __init__(
        self,
        ctx: AgentContext,
        identity: Dict[str, Any],
        *,
        connector: Optional[Connector] = None,
        codec: Optional[Codec] = None,
        recv_timeout: float = RECV_TIMEOUT_SECONDS,
    ) -> None:
        s = ctx.settings
        self.log = ctx.logger("transport")
        self.url = s.transport_url()
        self.identity = identity
        self.reconnect_delay = s.reconnect_delay_seconds
        self.recv_timeout = recv_timeout
        self.codec = codec or codec_for(s.transport_protocol)
        self.connector: Connector = connector or functools.partial(
            websocket_connector, token=s.agent_token, open_timeout=s.http_timeout_seconds
        )
        self.agent_id: Optional[str] = None

        self._handlers: Dict[EventKind, EventHandler] = {}
        self._on_connect: List[Callback] = []
        self._on_disconnect: List[Callback] = []
        self._frozen = False

        self._outbound: "queue.Queue[str]" = queue.Queue()
        self._lock = threading.Lock()
        self._state = ConnectionState.DISCONNECTED
        self._conn: Optional[Connection] = None
        self._running = threading.Event()
        self._wake = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # --- registration -------------------------------------------------------

    def _check_mutable(self) -> None:
        if self._frozen:
            raise RuntimeError("handlers cannot be registered after connect()")

    def on(self, kind: EventKind, handler: EventHandler) -> None:
        self._check_mutable()
        self._handlers[EventKind(kind)] = handler

    def on_connect(self, callback: Callback) -> None:
        self._check_mutable()
        self._on_connect.append(callback)

    def on_disconnect(self, callback: Callback) -> None:
        self._check_mutable()
        self._on_disconnect.append(callback)

    # --- state --------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        with self._lock:
            return self._state

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    def _set_state(self, state: ConnectionState) -> None:
        with self._lock:
            self._state = state

    # --- public API ---------------------------------------------------------

    def connect(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._frozen = True
        self._running.set()
        self._wake.clear()
        self._thread = threading.Thread(target=self._run, name="transport", daemon=True)
        self._thread.start()

    def emit(self, event: str, data: Any) -> bool:
        """Queue an event for the transport thread.

        Frames go out when the thread next wakes from `recv`, so with an idle
        connection an event can wait up to `recv_timeout` before it is sent.
        Returns False when not connected; nothing is buffered for later.
        """
        if not self.is_connected:
            self.log.debug("Not connected, dropping %s", event)
            return False
        try:
            frame = self.codec.encode_event(event, data)
        except (TypeError, ValueError) as e:
            self.log.error("Cannot encode %s: %s", event, e)
            return False
        self._outbound.put(frame)
        return True

    def disconnect(self) -> None:
        self._running.clear()
        self._wake.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.recv_timeout + 5.0)
        self._thread = None
        self._drop_connection()

    # --- loop ---------------------------------------------------------------

    def _run(self) -> None:
        while self._running.is_set():
            conn = self._conn
            if conn is None:
                if not self._open():
                    self._wake.wait(self.reconnect_delay)
                continue
            try:
                self._flush(conn)
                raw = conn.recv(self.recv_timeout)
                self._handle_raw(raw)
                self._flush(conn)
            except TimeoutError:
                continue
            except (TransportError, OSError) as e:
                if not self._running.is_set():
                    break
                self.log.warning("Connection lost: %s; reconnecting in %.0fs", e, self.reconnect_delay)
                self._drop_connection()
                self._wake.wait(self.reconnect_delay)

    def _open(self) -> bool:
        self._set_state(ConnectionState.CONNECTING)
        try:
            conn = self.connector(self.url)
        except (TransportError, OSError) as e:
            self._set_state(ConnectionState.DISCONNECTED)
            self.log.warning("Failed to connect to %s: %s; retrying in %.0fs", self.url, e, self.reconnect_delay)
            return False
        if not self._running.is_set():
            # disconnect() gave up waiting for us
            conn.close()
            self._set_state(ConnectionState.DISCONNECTED)
            return False
        with self._lock:
            self._conn = conn
            self._state = ConnectionState.CONNECTED
        self.log.info("Connected to %s", self.url)
        return True

    def _flush(self, conn: Connection) -> None:
        while True:
            try:
                frame = self._outbound.get_nowait()
            except queue.Empty:
                return
            conn.send(frame)

    def _drop_connection(self) -> None:
        with self._lock:
            conn, self._conn = self._conn, None
            was_connected = self._state is ConnectionState.CONNECTED
            self._state = ConnectionState.DISCONNECTED
        if conn is not None:
            try:
                conn.close()
            except (TransportError, OSError) as e:
                self.log.debug("Error closing connection: %s", e)
        # Frames queued for a dead connection are not replayed on the next one.
        while True:
            try:
                self._outbound.get_nowait()
            except queue.Empty:
                break
        if was_connected:
            self.agent_id = None
            self._fire(self._on_disconnect, "disconnect")

    def _fire(self, callbacks: List[Callback], what: str) -> None:
        for cb in callbacks:
            try:
                cb()
            except Exception:
                self.log.exception("%s callback failed", what)

    # --- inbound ------------------------------------------------------------

    def _handle_raw(self, raw: Union[str, bytes]) -> None:
        try:
            frame = self.codec.decode(raw)
        except ProtocolError as e:
            self.log.warning("Dropping malformed frame: %s", e)
            return
        self._handle_frame(frame)

    def _handle_frame(self, frame: Frame) -> None:
        kind = frame.kind
        if kind is FrameKind.CONNECTED:
            self.log.info("Server ready, registering as %s", self.identity.get("name"))
            self._outbound.put(self.codec.encode_register(self.identity))
        elif kind is FrameKind.REGISTERED:
            self.agent_id = frame.agent_id
            if frame.agent_id:
                self.log.info("Registered with server, agent ID: %s", frame.agent_id)
            else:
                self.log.info("Registered with server")
            self._fire(self._on_connect, "connect")
        elif kind is FrameKind.PING:
            self._outbound.put(self.codec.encode_pong())
        elif kind is FrameKind.PONG:
            pass
        elif kind is FrameKind.ERROR:
            self.log.error("Server reported %s: %s", frame.event or "error", frame.message)
        elif kind is FrameKind.EVENT:
            self._dispatch(frame.event, frame.data)
        else:
            self.log.debug("Ignoring packet %r", frame.message)

    def _dispatch(self, name: str, data: Dict[str, Any]) -> None:
        try:
            kind = EventKind(name)
        except ValueError:
            self.log.debug("No handler for event %s", name)
            return
        handler = self._handlers.get(kind)
        if handler is None:
            self.log.debug("No handler for event %s", name)
            return
        try:
            event = parse_event(kind, data)
        except ProtocolError as e:
            self.log.warning("Malformed %s event: %s", name, e)
            return
        try:
            handler(event)
        except Exception:
            self.log.exception("Handler for %s failed", name)
