from .client import ConnectionState, DuplexTransport, WebSocketConnection, websocket_connector
from .protocol import (
    ContainerEvent,
    DeployComposeEvent,
    DockerControlEvent,
    EventKind,
    FsListEvent,
    JsonEnvelopeCodec,
    SocketIOCodec,
    TerminalDataEvent,
    codec_for,
)

__all__ = [
    "ConnectionState",
    "ContainerEvent",
    "DeployComposeEvent",
    "DockerControlEvent",
    "DuplexTransport",
    "EventKind",
    "FsListEvent",
    "JsonEnvelopeCodec",
    "SocketIOCodec",
    "TerminalDataEvent",
    "WebSocketConnection",
    "codec_for",
    "websocket_connector",
]
