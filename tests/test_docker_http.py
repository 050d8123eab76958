import json
import os
import shutil
import socketserver
import tempfile
import threading

import pytest

from nexus_agent.docker.http import UnixSocketHttpClient, decode_chunked, is_chunked, split_response
from nexus_agent.errors import ControlPlaneError, DockerUnavailable, MalformedResponse


def test_decode_chunked_joins_chunks():
    assert decode_chunked(b"4\r\nWiki\r\n5\r\npedia\r\n0\r\n\r\n") == b"Wikipedia"


def test_decode_chunked_ignores_extensions():
    assert decode_chunked(b"4;name=value\r\nWiki\r\n0\r\n\r\n") == b"Wiki"


def test_decode_chunked_stops_at_bad_size_line():
    assert decode_chunked(b"4\r\nWiki\r\nzz\r\npedia\r\n0\r\n\r\n") == b"Wiki"


def test_decode_chunked_stops_at_truncated_chunk():
    assert decode_chunked(b"4\r\nWiki\r\n10\r\nped") == b"Wiki"


@pytest.mark.parametrize("size_line", [b"0x4", b"+4", b"0_4", b"4 4"])
def test_decode_chunked_rejects_non_hex_size(size_line):
    body = b"4\r\nWiki\r\n" + size_line + b"\r\npedi\r\n0\r\n\r\n"
    assert decode_chunked(body) == b"Wiki"


def test_split_response_requires_header_terminator():
    with pytest.raises(MalformedResponse):
        split_response(b"HTTP/1.1 200 OK\r\nContent-Length: 2\r\n")


def test_chunked_header_is_case_insensitive():
    assert is_chunked("HTTP/1.1 200 OK\r\ntransfer-ENCODING: Chunked")
    assert not is_chunked("HTTP/1.1 200 OK\r\nContent-Length: 4")


class _Handler(socketserver.StreamRequestHandler):
    def handle(self):
        request_line = self.rfile.readline().decode("ascii").strip()
        if not request_line:
            # bare connect from is_available()
            return
        while self.rfile.readline() not in (b"\r\n", b""):
            pass
        self.server.requests.append(request_line)
        path = request_line.split()[1]
        self.wfile.write(self.server.routes.get(path, b"HTTP/1.1 404 Not Found\r\nContent-Length: 0\r\n\r\n"))


class FakeDockerDaemon(socketserver.ThreadingMixIn, socketserver.UnixStreamServer):
    daemon_threads = True

    def __init__(self, path):
        super().__init__(path, _Handler)
        self.routes = {}
        self.requests = []


def chunked_json(obj):
    body = json.dumps(obj).encode()
    half = len(body) // 2
    return (
        b"HTTP/1.1 200 OK\r\nContent-Type: application/json\r\nTransfer-Encoding: chunked\r\n\r\n"
        + b"%x\r\n" % half + body[:half] + b"\r\n"
        + b"%x\r\n" % (len(body) - half) + body[half:] + b"\r\n"
        + b"0\r\n\r\n"
    )


@pytest.fixture
def daemon():
    # AF_UNIX paths are length-limited; keep it short.
    tmpdir = tempfile.mkdtemp(prefix="nx")
    server = FakeDockerDaemon(os.path.join(tmpdir, "d.sock"))
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server
    server.shutdown()
    server.server_close()
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
def client(ctx, daemon):
    return UnixSocketHttpClient(ctx, socket_path=daemon.server_address, timeout=5.0)


def test_is_available_is_a_bare_connect(client, daemon):
    assert client.is_available()
    assert client.is_available()
    assert daemon.requests == []


def test_is_available_false_without_socket(ctx):
    client = UnixSocketHttpClient(ctx, socket_path="/nonexistent/docker.sock")
    assert client.is_available() is False
    assert client.is_available() is False


def test_request_decodes_chunked_json(client, daemon):
    daemon.routes["/info"] = chunked_json({"ID": "abc", "Containers": 3})
    assert client.request_json("/info") == {"ID": "abc", "Containers": 3}
    assert daemon.requests == ["GET /info HTTP/1.1"]


def test_request_plain_body(client, daemon):
    daemon.routes["/_ping"] = b"HTTP/1.1 200 OK\r\nContent-Length: 2\r\n\r\nOK"
    assert client.request("/_ping") == b"OK"


def test_error_status_raises(client):
    with pytest.raises(ControlPlaneError):
        client.request("/missing")


def test_invalid_json_raises_malformed(client, daemon):
    daemon.routes["/info"] = b"HTTP/1.1 200 OK\r\n\r\nnot json"
    with pytest.raises(MalformedResponse):
        client.request_json("/info")


def test_unreachable_socket_raises_unavailable(ctx):
    client = UnixSocketHttpClient(ctx, socket_path="/nonexistent/docker.sock")
    with pytest.raises(DockerUnavailable):
        client.request("/info")
