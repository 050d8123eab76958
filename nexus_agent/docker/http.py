"""Minimal HTTP/1.1 over the container runtime's unix socket.

Only what the agent needs: one GET per connection with ``Connection: close``,
the whole response read until the peer closes, and chunked bodies decoded.
"""

from __future__ import annotations

import json
import socket
from typing import Any, Optional, Tuple

from ..context import AgentContext
from ..errors import ControlPlaneError, DockerUnavailable, MalformedResponse


DEFAULT_SOCKET_PATH = "/var/run/docker.sock"
_RECV_SIZE = 4096


def build_request(path: str) -> bytes:
    return (
        f"GET {path} HTTP/1.1\r\n"
        "Host: localhost\r\n"
        "Connection: close\r\n"
        "\r\n"
    ).encode("ascii")


def split_response(raw: bytes) -> Tuple[str, bytes]:
    """Split a raw response at the first blank line into (headers, body)."""
    head, sep, body = raw.partition(b"\r\n\r\n")
    if not sep:
        raise MalformedResponse("response has no header terminator")
    return head.decode("iso-8859-1"), body


def status_code(headers: str) -> int:
    status_line = headers.split("\r\n", 1)[0]
    parts = status_line.split()
    if len(parts) < 2 or not parts[0].startswith("HTTP/"):
        raise MalformedResponse(f"bad status line: {status_line!r}")
    try:
        return int(parts[1])
    except ValueError:
        raise MalformedResponse(f"bad status line: {status_line!r}") from None


def is_chunked(headers: str) -> bool:
    for line in headers.split("\r\n")[1:]:
        name, _, value = line.partition(":")
        if name.strip().lower() == "transfer-encoding" and "chunked" in value.lower():
            return True
    return False


_HEX_DIGITS = b"0123456789abcdefABCDEF"


def decode_chunked(body: bytes) -> bytes:
    """Decode a chunked body.

    Stops at the zero-size chunk. A size line that does not parse as hex, or a
    chunk running past the end of the data, ends decoding early and whatever
    was decoded so far is returned.
    """
    out = bytearray()
    pos = 0
    while pos < len(body):
        line_end = body.find(b"\r\n", pos)
        if line_end == -1:
            break
        size_field = body[pos:line_end].split(b";", 1)[0].strip()
        if not size_field or size_field.strip(_HEX_DIGITS):
            break
        size = int(size_field, 16)
        if size <= 0:
            break

        start = line_end + 2
        if start + size > len(body):
            break
        out += body[start:start + size]
        pos = start + size + 2
    return bytes(out)


class UnixSocketHttpClient:
    def __init__(self, ctx: AgentContext, socket_path: Optional[str] = None, timeout: Optional[float] = None) -> None:
        self.log = ctx.logger("docker.http")
        self.socket_path = socket_path or ctx.settings.docker_socket_path or DEFAULT_SOCKET_PATH
        self.timeout = timeout

    def _connect(self) -> socket.socket:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        if self.timeout is not None:
            sock.settimeout(self.timeout)
        try:
            sock.connect(self.socket_path)
        except OSError:
            sock.close()
            raise
        return sock

    def is_available(self) -> bool:
        """Bare connect to the socket; nothing is sent."""
        try:
            sock = self._connect()
        except OSError:
            return False
        sock.close()
        return True

    def request(self, path: str) -> bytes:
        try:
            sock = self._connect()
        except OSError as e:
            raise DockerUnavailable(f"cannot connect to {self.socket_path}: {e}") from e

        chunks = []
        try:
            sock.sendall(build_request(path))
            while True:
                data = sock.recv(_RECV_SIZE)
                if not data:
                    break
                chunks.append(data)
        except OSError as e:
            raise ControlPlaneError(f"GET {path} failed: {e}") from e
        finally:
            sock.close()

        headers, body = split_response(b"".join(chunks))
        status = status_code(headers)
        if is_chunked(headers):
            body = decode_chunked(body)
        if status >= 400:
            raise ControlPlaneError(f"GET {path} returned {status}: {body[:200]!r}")
        return body

    def request_json(self, path: str) -> Any:
        body = self.request(path)
        try:
            return json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise MalformedResponse(f"GET {path}: invalid JSON body: {e}") from e
