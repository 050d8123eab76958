from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from ..context import AgentContext
from ..errors import ControlPlaneError
from ..models import (
    Container,
    ContainerMount,
    ContainerPort,
    ContainerStats,
    DockerImage,
    DockerInfo,
    DockerNetwork,
    DockerSnapshot,
    DockerVolume,
    ImageLayer,
)
from .http import UnixSocketHttpClient


def _int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _obj(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def compute_container_stats(raw: Dict[str, Any]) -> ContainerStats:
    """Ratios from one `/containers/{id}/stats?stream=false` document.

    The runtime ships both the current (`cpu_stats`) and previous
    (`precpu_stats`) cumulative counters, so no history is kept here.
    """
    cpu_stats = _obj(raw.get("cpu_stats"))
    precpu_stats = _obj(raw.get("precpu_stats"))

    cpu_delta = _int(_obj(cpu_stats.get("cpu_usage")).get("total_usage")) - _int(
        _obj(precpu_stats.get("cpu_usage")).get("total_usage")
    )
    system_delta = _int(cpu_stats.get("system_cpu_usage")) - _int(precpu_stats.get("system_cpu_usage"))
    online_cpus = _int(cpu_stats.get("online_cpus")) or len(_list(_obj(cpu_stats.get("cpu_usage")).get("percpu_usage"))) or 1

    cpu_percent = 0.0
    if system_delta > 0 and cpu_delta > 0:
        cpu_percent = (cpu_delta / system_delta) * online_cpus * 100.0

    memory_stats = _obj(raw.get("memory_stats"))
    mem_usage = _int(memory_stats.get("usage"))
    mem_limit = _int(memory_stats.get("limit"))

    net_rx = net_tx = 0
    for iface in _obj(raw.get("networks")).values():
        iface = _obj(iface)
        net_rx += _int(iface.get("rx_bytes"))
        net_tx += _int(iface.get("tx_bytes"))

    block_read = block_write = 0
    for entry in _list(_obj(raw.get("blkio_stats")).get("io_service_bytes_recursive")):
        entry = _obj(entry)
        op = str(entry.get("op") or "").lower()
        if op == "read":
            block_read += _int(entry.get("value"))
        elif op == "write":
            block_write += _int(entry.get("value"))

    return ContainerStats(
        cpu_percent=cpu_percent,
        mem_usage=mem_usage,
        mem_limit=mem_limit,
        mem_percent=(mem_usage / mem_limit * 100.0) if mem_limit > 0 else 0.0,
        net_rx=net_rx,
        net_tx=net_tx,
        block_read=block_read,
        block_write=block_write,
        pid_count=_int(_obj(raw.get("pids_stats")).get("current")),
    )


def parse_container(c: Dict[str, Any]) -> Container:
    names = _list(c.get("Names"))
    name = str(names[0]) if names else ""
    return Container(
        id=str(c.get("Id") or ""),
        name=name[1:] if name.startswith("/") else name,
        image=str(c.get("Image") or ""),
        image_id=str(c.get("ImageID") or ""),
        state=str(c.get("State") or ""),
        status=str(c.get("Status") or ""),
        created=_int(c.get("Created")),
        command=str(c.get("Command") or ""),
        ports=[
            ContainerPort(
                private_port=_int(p.get("PrivatePort")),
                public_port=_int(p.get("PublicPort")),
                type=str(p.get("Type") or "tcp"),
            )
            for p in map(_obj, _list(c.get("Ports")))
        ],
        mounts=[
            ContainerMount(
                source=str(m.get("Source") or ""),
                destination=str(m.get("Destination") or ""),
                mode=str(m.get("Mode") or ""),
            )
            for m in map(_obj, _list(c.get("Mounts")))
        ],
    )


def parse_layer(layer: Dict[str, Any]) -> ImageLayer:
    return ImageLayer(
        id=str(layer.get("Id") or ""),
        created=_int(layer.get("Created")),
        created_by=str(layer.get("CreatedBy") or ""),
        size=_int(layer.get("Size")),
        comment=str(layer.get("Comment") or ""),
        # Tags is null for untagged layers
        tags=[str(t) for t in _list(layer.get("Tags"))],
    )


class DockerMonitor:
    """Read path of the container control plane.

    Every entity group is fetched independently and a bad element is skipped,
    so one broken image history or stats document never costs the rest of the
    cycle.
    """

    def __init__(self, ctx: AgentContext, client: Optional[UnixSocketHttpClient] = None) -> None:
        self.log = ctx.logger("docker.monitor")
        self.client = client or UnixSocketHttpClient(ctx)
        self.last = DockerSnapshot()

    def is_available(self) -> bool:
        return self.client.is_available()

    def list_containers(self, with_stats: bool = True) -> List[Container]:
        containers: List[Container] = []
        for raw in _list(self.client.request_json("/containers/json?all=true")):
            try:
                container = parse_container(_obj(raw))
            except ValidationError as e:
                self.log.debug("Skipping malformed container entry: %s", e)
                continue
            if with_stats and container.state == "running":
                stats = self.get_container_stats(container.id)
                if stats is not None:
                    container.stats = stats
            containers.append(container)
        self.log.debug("Collected %d containers", len(containers))
        return containers

    def get_container_stats(self, container_id: str) -> Optional[ContainerStats]:
        try:
            raw = self.client.request_json(f"/containers/{container_id}/stats?stream=false")
        except ControlPlaneError as e:
            self.log.debug("Failed to get stats for container %s: %s", container_id, e)
            return None
        return compute_container_stats(_obj(raw))

    def image_history(self, image_id: str) -> List[ImageLayer]:
        layers: List[ImageLayer] = []
        try:
            raw = self.client.request_json(f"/images/{image_id}/history")
        except ControlPlaneError as e:
            self.log.debug("Failed to get history for image %s: %s", image_id, e)
            return layers
        for layer in _list(raw):
            try:
                layers.append(parse_layer(_obj(layer)))
            except ValidationError as e:
                self.log.debug("Skipping malformed layer of %s: %s", image_id, e)
        return layers

    def list_images(self) -> List[DockerImage]:
        images: List[DockerImage] = []
        for raw in map(_obj, _list(self.client.request_json("/images/json"))):
            image_id = str(raw.get("Id") or "")
            if not image_id:
                continue
            # One extra round trip per image.
            images.append(
                DockerImage(
                    id=image_id,
                    repo_tags=[str(t) for t in _list(raw.get("RepoTags"))],
                    size=_int(raw.get("Size")),
                    created=_int(raw.get("Created")),
                    history=self.image_history(image_id),
                )
            )
        self.log.debug("Collected %d images", len(images))
        return images

    def list_volumes(self) -> List[DockerVolume]:
        raw = _obj(self.client.request_json("/volumes"))
        volumes = [
            DockerVolume(
                name=str(v.get("Name") or ""),
                driver=str(v.get("Driver") or ""),
                mountpoint=str(v.get("Mountpoint") or ""),
            )
            for v in map(_obj, _list(raw.get("Volumes")))
            if v.get("Name")
        ]
        self.log.debug("Collected %d volumes", len(volumes))
        return volumes

    def list_networks(self) -> List[DockerNetwork]:
        networks = [
            DockerNetwork(
                id=str(n.get("Id") or ""),
                name=str(n.get("Name") or ""),
                driver=str(n.get("Driver") or ""),
                scope=str(n.get("Scope") or ""),
                internal=bool(n.get("Internal", False)),
            )
            for n in map(_obj, _list(self.client.request_json("/networks")))
            if n.get("Id")
        ]
        self.log.debug("Collected %d networks", len(networks))
        return networks

    def get_info(self) -> DockerInfo:
        raw = _obj(self.client.request_json("/info"))
        return DockerInfo(
            id=str(raw.get("ID") or ""),
            containers=_int(raw.get("Containers")),
            containers_running=_int(raw.get("ContainersRunning")),
            containers_paused=_int(raw.get("ContainersPaused")),
            containers_stopped=_int(raw.get("ContainersStopped")),
            images=_int(raw.get("Images")),
            driver=str(raw.get("Driver") or ""),
            server_version=str(raw.get("ServerVersion") or ""),
            operating_system=str(raw.get("OperatingSystem") or ""),
            architecture=str(raw.get("Architecture") or ""),
            ncpu=_int(raw.get("NCPU")),
            mem_total=_int(raw.get("MemTotal")),
        )

    def collect(self) -> bool:
        if not self.is_available():
            self.log.warning("Docker is not available at %s", self.client.socket_path)
            self.last = DockerSnapshot()
            return False

        ok = True
        snapshot = DockerSnapshot()
        for field_name, fn in (
            ("containers", self.list_containers),
            ("images", self.list_images),
            ("volumes", self.list_volumes),
            ("networks", self.list_networks),
            ("info", self.get_info),
        ):
            try:
                setattr(snapshot, field_name, fn())
            except ControlPlaneError as e:
                self.log.error("Failed to collect docker %s: %s", field_name, e)
                ok = False
        self.last = snapshot
        return ok
