from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# --- host samples -----------------------------------------------------------


class CpuSample(BaseModel):
    model_config = ConfigDict(frozen=True)

    usage_percent: float = 0.0
    per_core_usage: List[float] = Field(default_factory=list)
    temperature_c: float = 0.0
    logical_cores: int = 0
    physical_cores: int = 0
    load1: float = 0.0
    load5: float = 0.0
    load15: float = 0.0


class MemorySample(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_bytes: int = 0
    used_bytes: int = 0
    free_bytes: int = 0
    cached_bytes: int = 0
    swap_total_bytes: int = 0
    swap_used_bytes: int = 0
    usage_percent: float = 0.0


class DiskSample(BaseModel):
    model_config = ConfigDict(frozen=True)

    device: str
    mount: str
    fs_type: str
    total_bytes: int
    used_bytes: int
    free_bytes: int = Field(..., description="Bytes available to unprivileged users")
    used_percent: float


class NetworkSample(BaseModel):
    model_config = ConfigDict(frozen=True)

    interface: str
    bytes_sent: int
    bytes_recv: int
    packets_sent: int = 0
    packets_recv: int = 0
    tx_per_sec: float = 0.0
    rx_per_sec: float = 0.0

    @property
    def total_bytes(self) -> int:
        return self.bytes_sent + self.bytes_recv


class SystemSnapshot(BaseModel):
    ts: float
    cpu: CpuSample = Field(default_factory=CpuSample)
    memory: MemorySample = Field(default_factory=MemorySample)
    disks: List[DiskSample] = Field(default_factory=list)
    networks: List[NetworkSample] = Field(default_factory=list)


# --- container runtime ------------------------------------------------------


class ContainerStats(BaseModel):
    cpu_percent: float = 0.0
    mem_usage: int = 0
    mem_limit: int = 0
    mem_percent: float = 0.0
    net_rx: int = 0
    net_tx: int = 0
    block_read: int = 0
    block_write: int = 0
    pid_count: int = 0


class ContainerPort(BaseModel):
    private_port: int = 0
    public_port: int = 0
    type: str = "tcp"


class ContainerMount(BaseModel):
    source: str = ""
    destination: str = ""
    mode: str = ""


class Container(BaseModel):
    id: str
    name: str = ""
    image: str = ""
    image_id: str = ""
    state: str = ""
    status: str = ""
    created: int = 0
    command: str = ""
    ports: List[ContainerPort] = Field(default_factory=list)
    mounts: List[ContainerMount] = Field(default_factory=list)
    # Only populated for running containers.
    stats: ContainerStats = Field(default_factory=ContainerStats)


class ImageLayer(BaseModel):
    id: str = ""
    created: int = 0
    created_by: str = ""
    size: int = 0
    comment: str = ""
    tags: List[str] = Field(default_factory=list)


class DockerImage(BaseModel):
    id: str
    repo_tags: List[str] = Field(default_factory=list)
    size: int = 0
    created: int = 0
    history: List[ImageLayer] = Field(default_factory=list)


class DockerVolume(BaseModel):
    name: str
    driver: str = ""
    mountpoint: str = ""


class DockerNetwork(BaseModel):
    id: str
    name: str = ""
    driver: str = ""
    scope: str = ""
    internal: bool = False


class DockerInfo(BaseModel):
    id: str = ""
    containers: int = 0
    containers_running: int = 0
    containers_paused: int = 0
    containers_stopped: int = 0
    images: int = 0
    driver: str = ""
    server_version: str = ""
    operating_system: str = ""
    architecture: str = ""
    ncpu: int = 0
    mem_total: int = 0


class DockerSnapshot(BaseModel):
    containers: List[Container] = Field(default_factory=list)
    images: List[DockerImage] = Field(default_factory=list)
    volumes: List[DockerVolume] = Field(default_factory=list)
    networks: List[DockerNetwork] = Field(default_factory=list)
    info: DockerInfo = Field(default_factory=DockerInfo)


# --- commands ---------------------------------------------------------------


class PendingCommand(BaseModel):
    id: str
    type: str = ""
    action: str = ""
    params: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("type", "action", mode="before")
    @classmethod
    def _null_str(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("params", mode="before")
    @classmethod
    def _null_params(cls, v: Any) -> Any:
        return {} if v is None else v


class CommandResult(BaseModel):
    status: Literal["completed", "failed"]
    result: Dict[str, Any] = Field(default_factory=dict)


class ControlResult(BaseModel):
    success: bool = False
    message: str = ""
    output: str = ""


# --- identity ---------------------------------------------------------------


class AgentInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    hostname: str
    os: str
    platform: str
    arch: str
    cpus: int
    total_memory: int = Field(0, alias="totalMemory")
    version: str
    token: Optional[str] = None
