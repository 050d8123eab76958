from .control import DOCKER_ACTIONS, DockerControl
from .http import UnixSocketHttpClient, decode_chunked
from .monitor import DockerMonitor, compute_container_stats
from .streams import ManagedProcess, ProcessRegistry, log_streams, terminal_sessions

__all__ = [
    "DOCKER_ACTIONS",
    "DockerControl",
    "DockerMonitor",
    "ManagedProcess",
    "ProcessRegistry",
    "UnixSocketHttpClient",
    "compute_container_stats",
    "decode_chunked",
    "log_streams",
    "terminal_sessions",
]
