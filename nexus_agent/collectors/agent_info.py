from __future__ import annotations

import platform
import socket
from pathlib import Path

import psutil

from .. import __version__
from ..models import AgentInfo


def _os_release(path: Path = Path("/etc/os-release")) -> str:
    try:
        txt = path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return platform.system()
    for line in txt.splitlines():
        if line.startswith("PRETTY_NAME="):
            pretty = line.split("=", 1)[1].strip().strip('"')
            if pretty:
                return pretty
    return platform.system()


def collect_agent_info(agent_name: str) -> AgentInfo:
    return AgentInfo(
        name=agent_name,
        hostname=socket.gethostname(),
        os=_os_release(),
        platform=platform.system(),
        arch=platform.machine(),
        cpus=psutil.cpu_count(logical=True) or 1,
        total_memory=int(psutil.virtual_memory().total),
        version=__version__,
    )
