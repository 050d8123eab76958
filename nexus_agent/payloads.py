"""Shape collected samples into the JSON document POSTed to /api/agent/metrics."""

from __future__ import annotations

import time
from typing import Any, Dict, List, Optional

import psutil

from .models import AgentInfo, DockerSnapshot, SystemSnapshot


def _cpu(snap: SystemSnapshot) -> Dict[str, Any]:
    cpu = snap.cpu
    return {
        "usage_percent": round(cpu.usage_percent, 2),
        "load": round(cpu.usage_percent, 2),
        "loadAvg": [cpu.load1, cpu.load5, cpu.load15],
        "perCore": [round(v, 2) for v in cpu.per_core_usage],
        "temperature": cpu.temperature_c,
        "cores": cpu.logical_cores,
        "physicalCores": cpu.physical_cores,
    }


def _memory(snap: SystemSnapshot) -> Dict[str, Any]:
    mem = snap.memory
    return {
        "total": mem.total_bytes,
        "used": mem.used_bytes,
        "free": mem.free_bytes,
        "cached": mem.cached_bytes,
        "swapTotal": mem.swap_total_bytes,
        "swapUsed": mem.swap_used_bytes,
        "usage_percent": round(mem.usage_percent, 2),
    }


def _disks(snap: SystemSnapshot) -> List[Dict[str, Any]]:
    return [
        {
            "mount": d.mount,
            "device": d.device,
            "fs": d.fs_type,
            "use": round(d.used_percent, 2),
            "used": d.used_bytes,
            "size": d.total_bytes,
        }
        for d in snap.disks
    ]


def _networks(snap: SystemSnapshot) -> List[Dict[str, Any]]:
    return [
        {
            "interface": n.interface,
            "rx_bytes": n.bytes_recv,
            "tx_bytes": n.bytes_sent,
            "rx_sec": round(n.rx_per_sec, 2),
            "tx_sec": round(n.tx_per_sec, 2),
        }
        for n in snap.networks
    ]


def docker_payload(docker: DockerSnapshot) -> Dict[str, Any]:
    containers = [
        {
            "id": c.id,
            "name": c.name,
            "image": c.image,
            "state": c.state,
            "status": c.status,
            "ports": [
                {"privatePort": p.private_port, "publicPort": p.public_port, "type": p.type} for p in c.ports
            ],
            "stats": {
                "cpuPercent": c.stats.cpu_percent,
                "memUsage": c.stats.mem_usage,
                "memPercent": c.stats.mem_percent,
            },
        }
        for c in docker.containers
    ]
    images = [
        {
            "id": i.id,
            "repoTags": i.repo_tags,
            "size": i.size,
            "history": [
                {
                    "Id": h.id,
                    "Created": h.created,
                    "CreatedBy": h.created_by,
                    "Size": h.size,
                    "Comment": h.comment,
                    "Tags": h.tags,
                }
                for h in i.history
            ],
        }
        for i in docker.images
    ]
    return {
        "containers": containers,
        "images": images,
        "volumes": [{"name": v.name, "driver": v.driver, "mountpoint": v.mountpoint} for v in docker.volumes],
        "networks": [
            {"id": n.id, "name": n.name, "driver": n.driver, "scope": n.scope, "internal": n.internal}
            for n in docker.networks
        ],
        "info": {
            "containers": docker.info.containers,
            "containersRunning": docker.info.containers_running,
            "containersStopped": docker.info.containers_stopped,
            "images": docker.info.images,
        },
    }


def _boot_time() -> float:
    try:
        return float(psutil.boot_time())
    except (OSError, RuntimeError):
        return 0.0


def metrics_payload(
    info: AgentInfo,
    snap: SystemSnapshot,
    docker: Optional[DockerSnapshot] = None,
    *,
    agent_uptime: float = 0.0,
    now: Optional[float] = None,
) -> Dict[str, Any]:
    now = time.time() if now is None else now
    boot = _boot_time()
    payload: Dict[str, Any] = {
        "agent": info.name,
        "timestamp": int(now * 1000),
        "os": {
            "distro": info.os,
            "platform": info.platform,
            "arch": info.arch,
            "hostname": info.hostname,
            "release": info.version,
        },
        "uptime": int(now - boot) if boot else 0,
        "bootTime": int(boot),
        "agentUptime": int(agent_uptime),
        "cpu": _cpu(snap),
        "memory": _memory(snap),
        "disk": _disks(snap),
        "network": _networks(snap),
    }
    if docker is not None:
        details = docker_payload(docker)
        payload["docker"] = details["containers"]
        payload["dockerDetails"] = details
    return payload
