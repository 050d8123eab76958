from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple


@dataclass(frozen=True)
class CpuCounters:
    busy: int
    idle: int
    timestamp: float

    @property
    def total(self) -> int:
        return self.busy + self.idle


@dataclass(frozen=True)
class NetCounters:
    bytes_sent: int
    bytes_recv: int
    timestamp: float

    @property
    def total(self) -> int:
        return self.bytes_sent + self.bytes_recv


class SampledCounterStore:
    """Previous raw counter snapshot per source key, and the deltas against it.

    Keys are caller-chosen ("total", "cpu3", "eth0"). Every call overwrites the
    stored snapshot for its key. A first read, or a counter that went backwards
    (reset, wraparound), yields 0 for that cycle instead of a negative value.

    Not thread-safe: only the collection cycle touches it.
    """

    def __init__(self) -> None:
        self._cpu: Dict[str, CpuCounters] = {}
        self._net: Dict[str, NetCounters] = {}

    def cpu_usage(self, key: str, busy: int, idle: int, timestamp: float) -> float:
        current = CpuCounters(busy=int(busy), idle=int(idle), timestamp=timestamp)
        previous = self._cpu.get(key)
        self._cpu[key] = current
        if previous is None:
            return 0.0

        total_delta = current.total - previous.total
        idle_delta = current.idle - previous.idle
        if total_delta <= 0 or idle_delta < 0:
            return 0.0

        usage = 100.0 * (1.0 - idle_delta / total_delta)
        return min(100.0, max(0.0, usage))

    def net_rates(self, key: str, bytes_sent: int, bytes_recv: int, timestamp: float) -> Tuple[float, float]:
        """Return (tx_per_sec, rx_per_sec) for `key` since its previous sample."""
        current = NetCounters(bytes_sent=int(bytes_sent), bytes_recv=int(bytes_recv), timestamp=timestamp)
        previous = self._net.get(key)
        self._net[key] = current
        if previous is None:
            return 0.0, 0.0

        seconds = current.timestamp - previous.timestamp
        if seconds <= 0:
            return 0.0, 0.0

        tx = max(0, current.bytes_sent - previous.bytes_sent) / seconds
        rx = max(0, current.bytes_recv - previous.bytes_recv) / seconds
        return tx, rx

    def has_cpu(self, key: str) -> bool:
        return key in self._cpu

    def has_net(self, key: str) -> bool:
        return key in self._net
