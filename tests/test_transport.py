import json
import queue
import threading
import time

import pytest

from nexus_agent.errors import TransportError
from nexus_agent.transport import ConnectionState, DuplexTransport, EventKind, FsListEvent, SocketIOCodec
from nexus_agent.transport.protocol import ContainerEvent

IDENTITY = {"name": "test-host", "token": "secret", "hostname": "test-host"}


class FakeConnection:
    def __init__(self):
        self.inbound = queue.Queue()
        self.sent = []
        self.closed = False

    def feed(self, frame):
        self.inbound.put(frame)

    def fail(self):
        self.inbound.put(TransportError("peer went away"))

    def send(self, frame):
        if self.closed:
            raise TransportError("closed")
        self.sent.append(frame)

    def recv(self, timeout):
        try:
            item = self.inbound.get(timeout=timeout)
        except queue.Empty:
            raise TimeoutError() from None
        if isinstance(item, Exception):
            raise item
        return item

    def close(self):
        self.closed = True

    def sent_json(self):
        return [json.loads(s) for s in list(self.sent)]


class FakeConnector:
    def __init__(self, failures=0):
        self.failures = failures
        self.urls = []
        self.connections = []

    def __call__(self, url):
        self.urls.append(url)
        if self.failures:
            self.failures -= 1
            raise OSError("connection refused")
        conn = FakeConnection()
        self.connections.append(conn)
        return conn


class Counter:
    def __init__(self):
        self.count = 0
        self.lock = threading.Lock()

    def __call__(self):
        with self.lock:
            self.count += 1


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def transport(ctx, connector):
    t = DuplexTransport(ctx, IDENTITY, connector=connector, recv_timeout=0.02)
    yield t
    t.disconnect()


def connected(transport, connector, wait_for, n=1):
    assert wait_for(lambda: len(connector.connections) >= n and transport.is_connected)
    return connector.connections[n - 1]


def test_connects_to_websocket_url(transport, connector, wait_for):
    transport.connect()
    connected(transport, connector, wait_for)
    assert connector.urls == ["ws://backend.test/ws/agent"]
    assert transport.state is ConnectionState.CONNECTED


def test_registers_after_connected_frame(transport, connector, wait_for):
    transport.connect()
    conn = connected(transport, connector, wait_for)
    conn.feed(json.dumps({"type": "connected", "message": "welcome"}))
    assert wait_for(lambda: conn.sent_json() == [{"type": "register", "data": IDENTITY}])


def test_auth_success_fires_on_connect(transport, connector, wait_for):
    on_connect = Counter()
    transport.on_connect(on_connect)
    transport.connect()
    conn = connected(transport, connector, wait_for)
    conn.feed(json.dumps({"type": "auth_success", "agentId": "a-9"}))
    assert wait_for(lambda: on_connect.count == 1)
    assert transport.agent_id == "a-9"


def test_ping_is_answered_with_pong(transport, connector, wait_for):
    transport.connect()
    conn = connected(transport, connector, wait_for)
    conn.feed(json.dumps({"type": "ping"}))
    assert wait_for(lambda: {"type": "pong"} in conn.sent_json())


def test_events_are_routed_to_typed_handlers(transport, connector, wait_for):
    received = []
    transport.on(EventKind.FS_LIST, received.append)
    transport.on(EventKind.LOGS_START, received.append)
    transport.connect()
    conn = connected(transport, connector, wait_for)
    conn.feed(json.dumps({"type": "event", "event": "system:fs:list", "data": {"path": "/tmp", "requestId": "r1"}}))
    conn.feed(json.dumps({"type": "docker:logs:start", "data": {"containerId": "c1"}}))
    assert wait_for(lambda: len(received) == 2)
    assert received == [FsListEvent(path="/tmp", request_id="r1"), ContainerEvent(container_id="c1")]


def test_bad_frames_and_failing_handlers_keep_connection(transport, connector, wait_for):
    def boom(event):
        raise RuntimeError("handler bug")

    transport.on(EventKind.LOGS_STOP, boom)
    transport.connect()
    conn = connected(transport, connector, wait_for)
    conn.feed("not json")
    conn.feed(json.dumps({"type": "event", "event": "docker:logs:stop", "data": {"containerId": "c1"}}))
    conn.feed(json.dumps({"type": "event", "event": "system:fs:list", "data": {"path": "/"}}))
    conn.feed(json.dumps({"type": "event", "event": "no:such:event", "data": {}}))
    conn.feed(json.dumps({"type": "error", "message": "server unhappy"}))
    conn.feed(json.dumps({"type": "ping"}))
    assert wait_for(lambda: {"type": "pong"} in conn.sent_json())
    assert len(connector.connections) == 1
    assert transport.is_connected


def test_handlers_frozen_after_connect(transport):
    transport.connect()
    with pytest.raises(RuntimeError):
        transport.on(EventKind.FS_LIST, lambda event: None)
    with pytest.raises(RuntimeError):
        transport.on_disconnect(lambda: None)


def test_emit_drops_when_disconnected(transport):
    assert transport.emit("docker:logs:data", {"containerId": "c1", "data": "x"}) is False


def test_emit_when_connected(transport, connector, wait_for):
    transport.connect()
    conn = connected(transport, connector, wait_for)
    assert transport.emit("docker:logs:data", {"containerId": "c1", "data": "x"}) is True
    expected = {"type": "event", "event": "docker:logs:data", "data": {"containerId": "c1", "data": "x"}}
    assert wait_for(lambda: expected in conn.sent_json())


def test_retries_until_connected(ctx, wait_for):
    connector = FakeConnector(failures=2)
    transport = DuplexTransport(ctx, IDENTITY, connector=connector, recv_timeout=0.02)
    transport.connect()
    try:
        connected(transport, connector, wait_for)
        assert len(connector.urls) == 3
    finally:
        transport.disconnect()


def test_connection_loss_fires_on_disconnect_once_and_reconnects(transport, connector, wait_for):
    on_disconnect = Counter()
    transport.on_disconnect(on_disconnect)
    transport.connect()
    first = connected(transport, connector, wait_for)

    first.fail()
    second = connected(transport, connector, wait_for, n=2)
    assert first.closed
    assert on_disconnect.count == 1

    second.feed(json.dumps({"type": "ping"}))
    assert wait_for(lambda: {"type": "pong"} in second.sent_json())

    transport.disconnect()
    assert second.closed
    assert on_disconnect.count == 2
    transport.disconnect()
    assert on_disconnect.count == 2
    assert transport.state is ConnectionState.DISCONNECTED


def test_disconnect_before_any_connection(ctx):
    on_disconnect = Counter()
    transport = DuplexTransport(ctx, IDENTITY, connector=FakeConnector(failures=10**6), recv_timeout=0.02)
    transport.on_disconnect(on_disconnect)
    transport.connect()
    transport.disconnect()
    assert on_disconnect.count == 0
    assert transport.state is ConnectionState.DISCONNECTED


def test_socketio_codec_handshake(ctx, wait_for):
    connector = FakeConnector()
    transport = DuplexTransport(ctx, IDENTITY, connector=connector, codec=SocketIOCodec(), recv_timeout=0.02)
    on_connect = Counter()
    transport.on_connect(on_connect)
    transport.connect()
    try:
        conn = connected(transport, connector, wait_for)
        conn.feed('0{"sid": "e1", "pingInterval": 25000, "pingTimeout": 20000}')
        assert wait_for(lambda: len(conn.sent) == 1)
        assert conn.sent[0] == '40{"token": "secret", "agentName": "test-host", "os": "linux"}'
        conn.feed('40{"sid": "s1"}')
        conn.feed("2")
        assert wait_for(lambda: "3" in conn.sent)
        assert on_connect.count == 1
    finally:
        transport.disconnect()


def test_emit_is_sent_promptly_on_idle_connection(ctx, connector, wait_for):
    transport = DuplexTransport(ctx, IDENTITY, connector=connector)
    transport.connect()
    try:
        conn = connected(transport, connector, wait_for)
        time.sleep(0.05)
        sent_at = time.monotonic()
        assert transport.emit("docker:control:result", {"success": True})
        assert wait_for(lambda: conn.sent, timeout=1.0, interval=0.005)
        assert time.monotonic() - sent_at < 0.5
    finally:
        transport.disconnect()
