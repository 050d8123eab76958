import pytest

from nexus_agent import payloads
from nexus_agent.models import (
    AgentInfo,
    Container,
    ContainerStats,
    CpuSample,
    DiskSample,
    DockerSnapshot,
    MemorySample,
    NetworkSample,
    SystemSnapshot,
)


@pytest.fixture
def info():
    return AgentInfo(name="web-1", hostname="web-1", os="Fedora Linux 40", platform="Linux", arch="x86_64", cpus=4, version="1.0.0")


@pytest.fixture
def snapshot():
    return SystemSnapshot(
        ts=0.0,
        cpu=CpuSample(usage_percent=12.346, logical_cores=4, physical_cores=2, load1=1.0, load5=0.5, load15=0.25),
        memory=MemorySample(total_bytes=1000, used_bytes=600, free_bytes=200, cached_bytes=200, usage_percent=60.0),
        disks=[DiskSample(device="/dev/sda1", mount="/", fs_type="ext4", total_bytes=100, used_bytes=40, free_bytes=50, used_percent=50.0)],
        networks=[NetworkSample(interface="eth0", bytes_sent=10, bytes_recv=20, tx_per_sec=1.5, rx_per_sec=2.5)],
    )


def test_metrics_payload_shape(info, snapshot, monkeypatch):
    monkeypatch.setattr(payloads.psutil, "boot_time", lambda: 1000.0)
    body = payloads.metrics_payload(info, snapshot, agent_uptime=42.9, now=1600.0)

    assert body["agent"] == "web-1"
    assert body["timestamp"] == 1600000
    assert body["uptime"] == 600
    assert body["agentUptime"] == 42
    assert body["os"]["distro"] == "Fedora Linux 40"
    assert body["cpu"]["usage_percent"] == 12.35
    assert body["cpu"]["loadAvg"] == [1.0, 0.5, 0.25]
    assert body["cpu"]["physicalCores"] == 2
    assert body["memory"]["usage_percent"] == 60.0
    assert body["disk"] == [{"mount": "/", "device": "/dev/sda1", "fs": "ext4", "use": 50.0, "used": 40, "size": 100}]
    assert body["network"] == [{"interface": "eth0", "rx_bytes": 20, "tx_bytes": 10, "rx_sec": 2.5, "tx_sec": 1.5}]
    assert "docker" not in body


def test_docker_section(info, snapshot, monkeypatch):
    monkeypatch.setattr(payloads.psutil, "boot_time", lambda: 0.0)
    docker = DockerSnapshot(containers=[Container(id="c1", name="web", state="running", stats=ContainerStats(cpu_percent=40.0))])
    body = payloads.metrics_payload(info, snapshot, docker, now=10.0)
    assert body["uptime"] == 0
    assert body["docker"][0]["stats"]["cpuPercent"] == 40.0
    assert body["dockerDetails"]["info"]["containersRunning"] == 0
    assert body["dockerDetails"]["volumes"] == []
