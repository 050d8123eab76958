"""Wire framing for the agent's duplex connection.

Two framings exist. The canonical one is a JSON object per message with a
``type`` field. The legacy one is the Socket.IO packet scheme (``0`` open,
``2``/``3`` ping/pong, ``40`` namespace connect, ``42[...]`` event). Both
decode into the same `Frame` so the transport logic does not care which is on
the wire.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union


class ProtocolError(ValueError):
    pass


class FrameKind(Enum):
    CONNECTED = "connected"
    REGISTERED = "registered"
    PING = "ping"
    PONG = "pong"
    ERROR = "error"
    EVENT = "event"
    IGNORED = "ignored"


@dataclass(frozen=True)
class Frame:
    kind: FrameKind
    event: str = ""
    data: Dict[str, Any] = field(default_factory=dict)
    message: str = ""
    agent_id: Optional[str] = None


class EventKind(str, Enum):
    DOCKER_CONTROL = "docker:control"
    LOGS_START = "docker:logs:start"
    LOGS_STOP = "docker:logs:stop"
    TERMINAL_START = "docker:terminal:start"
    TERMINAL_STOP = "docker:terminal:stop"
    TERMINAL_DATA = "docker:terminal:data"
    FS_LIST = "system:fs:list"
    DEPLOY_COMPOSE = "agent:deploy:compose"


# Agent -> server event names
DOCKER_CONTROL_RESULT = "docker:control:result"
FS_LIST_RESULT = "system:fs:list:result"
LOGS_DATA = "docker:logs:data"
TERMINAL_OUTPUT = "docker:terminal:data"
DEPLOY_COMPOSE_RESULT = "agent:deploy:compose:result"


@dataclass(frozen=True)
class DockerControlEvent:
    action: str
    container_id: str = ""
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ContainerEvent:
    container_id: str


@dataclass(frozen=True)
class TerminalDataEvent:
    container_id: str
    data: str


@dataclass(frozen=True)
class FsListEvent:
    path: str
    request_id: str


@dataclass(frozen=True)
class DeployComposeEvent:
    compose_content: str


Event = Union[DockerControlEvent, ContainerEvent, TerminalDataEvent, FsListEvent, DeployComposeEvent]


def _required_str(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str):
        raise ProtocolError(f"missing or non-string field {key!r}")
    return value


def parse_event(kind: EventKind, data: Dict[str, Any]) -> Event:
    if kind is EventKind.DOCKER_CONTROL:
        payload = data.get("payload")
        return DockerControlEvent(
            action=_required_str(data, "action"),
            container_id=str(data.get("containerId") or ""),
            payload=payload if isinstance(payload, dict) else {},
        )
    if kind in (EventKind.LOGS_START, EventKind.LOGS_STOP, EventKind.TERMINAL_START, EventKind.TERMINAL_STOP):
        return ContainerEvent(container_id=_required_str(data, "containerId"))
    if kind is EventKind.TERMINAL_DATA:
        return TerminalDataEvent(container_id=_required_str(data, "containerId"), data=_required_str(data, "data"))
    if kind is EventKind.FS_LIST:
        return FsListEvent(path=_required_str(data, "path"), request_id=_required_str(data, "requestId"))
    if kind is EventKind.DEPLOY_COMPOSE:
        return DeployComposeEvent(compose_content=str(data.get("composeContent") or ""))
    raise ProtocolError(f"unhandled event kind {kind!r}")


class JsonEnvelopeCodec:
    """Canonical framing: one JSON object with a `type` field per message."""

    name = "json"

    def decode(self, raw: Union[str, bytes]) -> Frame:
        try:
            msg = json.loads(raw)
        except ValueError as e:
            raise ProtocolError(f"invalid JSON frame: {e}") from e
        if not isinstance(msg, dict) or not isinstance(msg.get("type"), str):
            raise ProtocolError("frame without a type field")

        msg_type = msg["type"]
        if msg_type == "connected":
            return Frame(FrameKind.CONNECTED, message=str(msg.get("message") or ""))
        if msg_type in ("auth_success", "register_success"):
            agent_id = msg.get("agentId")
            return Frame(FrameKind.REGISTERED, agent_id=str(agent_id) if agent_id is not None else None)
        if msg_type == "ping":
            return Frame(FrameKind.PING)
        if msg_type == "pong":
            return Frame(FrameKind.PONG)
        if msg_type in ("error", "auth_error"):
            return Frame(FrameKind.ERROR, event=msg_type, message=str(msg.get("message") or "Unknown error"))

        event = msg.get("event") or msg_type
        data = msg.get("data")
        if not isinstance(data, dict):
            data = {k: v for k, v in msg.items() if k not in ("type", "event")}
        return Frame(FrameKind.EVENT, event=str(event), data=data)

    def encode_register(self, identity: Dict[str, Any]) -> str:
        return json.dumps({"type": "register", "data": identity})

    def encode_pong(self) -> str:
        return json.dumps({"type": "pong"})

    def encode_event(self, event: str, data: Any) -> str:
        return json.dumps({"type": "event", "event": event, "data": data})


class SocketIOCodec:
    """Legacy framing: Engine.IO v4 / Socket.IO v5 text packets."""

    name = "socketio"

    def decode(self, raw: Union[str, bytes]) -> Frame:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        if not raw:
            raise ProtocolError("empty packet")

        if raw[0] == "0":
            # Engine.IO open; the namespace connect (our registration) follows.
            return Frame(FrameKind.CONNECTED, message=raw[1:])
        if raw == "2":
            return Frame(FrameKind.PING)
        if raw == "3":
            return Frame(FrameKind.PONG)
        if raw.startswith("40"):
            sid = None
            if len(raw) > 2:
                try:
                    sid = json.loads(raw[2:]).get("sid")
                except (ValueError, AttributeError):
                    sid = None
            return Frame(FrameKind.REGISTERED, agent_id=sid)
        if raw.startswith("44"):
            try:
                message = str(json.loads(raw[2:]).get("message") or raw[2:])
            except (ValueError, AttributeError):
                message = raw[2:]
            return Frame(FrameKind.ERROR, event="connect_error", message=message)
        if raw.startswith("42"):
            try:
                parts = json.loads(raw[2:])
            except ValueError as e:
                raise ProtocolError(f"invalid event packet: {e}") from e
            if not isinstance(parts, list) or not parts or not isinstance(parts[0], str):
                raise ProtocolError("event packet is not [name, data]")
            data = parts[1] if len(parts) > 1 and isinstance(parts[1], dict) else {}
            return Frame(FrameKind.EVENT, event=parts[0], data=data)
        return Frame(FrameKind.IGNORED, message=raw)

    def encode_register(self, identity: Dict[str, Any]) -> str:
        auth = {"token": identity.get("token", ""), "agentName": identity.get("name", ""), "os": "linux"}
        return "40" + json.dumps(auth)

    def encode_pong(self) -> str:
        return "3"

    def encode_event(self, event: str, data: Any) -> str:
        return "42" + json.dumps([event, data])


Codec = Union[JsonEnvelopeCodec, SocketIOCodec]


def codec_for(name: str) -> Codec:
    if name == "json":
        return JsonEnvelopeCodec()
    if name == "socketio":
        return SocketIOCodec()
    raise ValueError(f"unknown transport protocol: {name!r}")
