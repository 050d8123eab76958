from __future__ import annotations

import time
from pathlib import Path
from typing import Callable, List, Optional, Set, Tuple

import psutil

from ..context import AgentContext
from ..counters import SampledCounterStore
from ..models import CpuSample, DiskSample, MemorySample, NetworkSample, SystemSnapshot


CPUINFO_PATH = Path("/proc/cpuinfo")
THERMAL_ZONE_PATH = Path("/sys/class/thermal/thermal_zone0/temp")

_BUSY_FIELDS = ("user", "nice", "system", "irq", "softirq", "steal")
_IDLE_FIELDS = ("idle", "iowait")

_LOOPBACK = ("lo",)


def split_cpu_times(times) -> Tuple[int, int]:
    """Return (busy_ticks, idle_ticks) from a psutil cpu_times tuple."""
    busy = sum(float(getattr(times, name, 0.0) or 0.0) for name in _BUSY_FIELDS)
    idle = sum(float(getattr(times, name, 0.0) or 0.0) for name in _IDLE_FIELDS)
    # psutil reports seconds; scale to centiseconds to keep integer tick semantics.
    return int(round(busy * 100)), int(round(idle * 100))


def count_physical_cores(cpuinfo_text: str) -> int:
    """Number of distinct (physical id, core id) pairs in a /proc/cpuinfo listing."""
    seen: Set[Tuple[int, int]] = set()
    phys_id = 0
    core_id: Optional[int] = None
    for line in cpuinfo_text.splitlines() + [""]:
        if not line.strip():
            if core_id is not None:
                seen.add((phys_id, core_id))
            phys_id, core_id = 0, None
            continue
        key, _, value = line.partition(":")
        key = key.strip()
        try:
            if key == "physical id":
                phys_id = int(value.strip())
            elif key == "core id":
                core_id = int(value.strip())
        except ValueError:
            continue
    return len(seen)


def physical_core_count(logical: int, cpuinfo_path: Path = CPUINFO_PATH) -> int:
    try:
        text = cpuinfo_path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return max(1, logical)
    n = count_physical_cores(text)
    if n > 0:
        return n
    return max(1, logical // 2)


def _cpu_temp_c(thermal_path: Path = THERMAL_ZONE_PATH) -> float:
    """Best-effort CPU temperature, 0.0 when nothing is exposed."""
    try:
        temps = psutil.sensors_temperatures(fahrenheit=False)  # type: ignore[attr-defined]
    except Exception:
        temps = {}

    candidates = []
    for name, entries in (temps or {}).items():
        for e in entries or []:
            label = (getattr(e, "label", "") or "").lower()
            cur = getattr(e, "current", None)
            if cur is None:
                continue
            score = 0
            if "package" in label or "tctl" in label:
                score += 3
            if "cpu" in label or "core" in label:
                score += 2
            if name.lower() in ("coretemp", "k10temp", "cpu_thermal"):
                score += 2
            candidates.append((score, float(cur)))
    if candidates:
        candidates.sort(key=lambda x: x[0], reverse=True)
        return candidates[0][1]

    try:
        return int(thermal_path.read_text(encoding="utf-8").strip()) / 1000.0
    except (OSError, ValueError):
        return 0.0


def _is_block_device_mount(device: str, mount: str, fs_type: str) -> bool:
    if not device.startswith("/dev/"):
        return False
    if fs_type == "squashfs" or mount.startswith("/snap"):
        return False
    return True


class SystemMetrics:
    """CPU, memory, disk and network samplers sharing one counter store.

    Each sub-collector fails on its own: a counter source that cannot be read
    makes that collector report False for the cycle and keeps its previous
    sample, while the others carry on.
    """

    def __init__(
        self,
        ctx: AgentContext,
        *,
        store: Optional[SampledCounterStore] = None,
        clock: Callable[[], float] = time.monotonic,
        cpuinfo_path: Path = CPUINFO_PATH,
    ) -> None:
        self.log = ctx.logger("collectors.system")
        self.store = store or SampledCounterStore()
        self.clock = clock
        self.cpuinfo_path = cpuinfo_path

        self.cpu = CpuSample()
        self.memory = MemorySample()
        self.disks: List[DiskSample] = []
        self.networks: List[NetworkSample] = []

    def collect(self) -> Tuple[bool, SystemSnapshot]:
        ok = True
        for name, fn in (
            ("cpu", self.collect_cpu),
            ("memory", self.collect_memory),
            ("disk", self.collect_disk),
            ("network", self.collect_network),
        ):
            try:
                ok = fn() and ok
            except Exception as e:
                self.log.error("%s collection failed: %s", name, e)
                ok = False
        return ok, self.snapshot()

    def snapshot(self) -> SystemSnapshot:
        return SystemSnapshot(
            ts=time.time(),
            cpu=self.cpu,
            memory=self.memory,
            disks=list(self.disks),
            networks=list(self.networks),
        )

    def collect_cpu(self) -> bool:
        now = self.clock()
        try:
            total_times = psutil.cpu_times(percpu=False)
            per_core_times = psutil.cpu_times(percpu=True)
        except Exception as e:
            self.log.error("Failed to read CPU counters: %s", e)
            return False

        busy, idle = split_cpu_times(total_times)
        usage = self.store.cpu_usage("total", busy, idle, now)

        per_core: List[float] = []
        for i, times in enumerate(per_core_times):
            busy, idle = split_cpu_times(times)
            per_core.append(self.store.cpu_usage(f"cpu{i}", busy, idle, now))

        logical = psutil.cpu_count(logical=True) or len(per_core) or 1
        try:
            l1, l5, l15 = psutil.getloadavg()
        except (AttributeError, OSError):
            l1 = l5 = l15 = 0.0

        self.cpu = CpuSample(
            usage_percent=usage,
            per_core_usage=per_core,
            temperature_c=_cpu_temp_c(),
            logical_cores=int(logical),
            physical_cores=physical_core_count(int(logical), self.cpuinfo_path),
            load1=float(l1),
            load5=float(l5),
            load15=float(l15),
        )
        return True

    def collect_memory(self) -> bool:
        try:
            vm = psutil.virtual_memory()
            sm = psutil.swap_memory()
        except Exception as e:
            self.log.error("Failed to read memory counters: %s", e)
            return False

        total = int(vm.total)
        free = int(getattr(vm, "free", 0))
        cached = int(getattr(vm, "cached", 0)) + int(getattr(vm, "buffers", 0))
        used = max(0, total - free - cached)
        self.memory = MemorySample(
            total_bytes=total,
            used_bytes=used,
            free_bytes=free,
            cached_bytes=cached,
            swap_total_bytes=int(sm.total),
            swap_used_bytes=max(0, int(sm.total) - int(sm.free)),
            usage_percent=(100.0 * used / total) if total > 0 else 0.0,
        )
        return True

    def collect_disk(self) -> bool:
        try:
            partitions = psutil.disk_partitions(all=True)
        except Exception as e:
            self.log.error("Failed to read mount table: %s", e)
            return False

        disks: List[DiskSample] = []
        for part in partitions:
            if not _is_block_device_mount(part.device, part.mountpoint, part.fstype):
                continue
            try:
                usage = psutil.disk_usage(part.mountpoint)
            except OSError:
                # Permission denied or vanished mount
                continue
            total = int(usage.total)
            avail = int(usage.free)
            disks.append(
                DiskSample(
                    device=part.device,
                    mount=part.mountpoint,
                    fs_type=part.fstype,
                    total_bytes=total,
                    used_bytes=int(usage.used),
                    free_bytes=avail,
                    # Reserved superuser blocks count as used, like df.
                    used_percent=(100.0 * (1.0 - avail / total)) if total > 0 else 0.0,
                )
            )
        self.disks = disks
        return True

    def collect_network(self) -> bool:
        now = self.clock()
        try:
            counters = psutil.net_io_counters(pernic=True)
        except Exception as e:
            self.log.error("Failed to read network counters: %s", e)
            return False

        networks: List[NetworkSample] = []
        for name, c in counters.items():
            if name in _LOOPBACK:
                continue
            tx, rx = self.store.net_rates(name, c.bytes_sent, c.bytes_recv, now)
            networks.append(
                NetworkSample(
                    interface=name,
                    bytes_sent=int(c.bytes_sent),
                    bytes_recv=int(c.bytes_recv),
                    packets_sent=int(c.packets_sent),
                    packets_recv=int(c.packets_recv),
                    tx_per_sec=tx,
                    rx_per_sec=rx,
                )
            )
        networks.sort(key=lambda n: n.total_bytes, reverse=True)
        self.networks = networks
        return True
