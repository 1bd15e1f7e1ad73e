"""Data models for zenith."""

from dataclasses import dataclass, field
from typing import NamedTuple


class StreamKey(NamedTuple):
    """Identifies one history stream: a metric kind and its instance."""

    kind: str  # 'cpu', 'mem', 'net_rx', 'net_tx', 'disk_read', 'disk_write', 'sensor'
    instance: str

    def encode(self) -> str:
        return f"{self.kind}:{self.instance}"

    @classmethod
    def decode(cls, text: str) -> "StreamKey":
        kind, sep, instance = text.partition(":")
        if not sep or not kind:
            raise ValueError(f"not a stream key: {text!r}")
        return cls(kind, instance)


@dataclass(slots=True, frozen=True)
class ProcessRecord:
    """Immutable snapshot of a process state."""

    pid: int
    ppid: int
    name: str
    command: str
    username: str
    status: str  # 'running', 'sleeping', 'zombie', etc.
    nice: int
    threads: int
    memory_rss: int  # Bytes
    cpu_time: float  # user + system seconds, absolute
    read_bytes: int  # absolute
    write_bytes: int  # absolute
    cpu_percent: float = 0.0  # 0.0 - 100.0 * core_count, since last snapshot
    read_rate: float = 0.0  # Bytes/s
    write_rate: float = 0.0  # Bytes/s


@dataclass(slots=True, frozen=True)
class NetworkReading:
    """Receive/transmit rate of one interface."""

    name: str
    rx_rate: float  # Bytes/s
    tx_rate: float  # Bytes/s


@dataclass(slots=True, frozen=True)
class DiskReading:
    """Throughput and fill level of one block device."""

    name: str
    read_rate: float  # Bytes/s
    write_rate: float  # Bytes/s
    used: int = 0
    total: int = 0


@dataclass(slots=True, frozen=True)
class SensorReading:
    """One temperature sensor."""

    label: str
    celsius: float


@dataclass(slots=True, frozen=True)
class Snapshot:
    """One tick's complete set of sampled host metrics."""

    timestamp: float
    cpu_per_core: tuple[float, ...]
    memory_used: int
    memory_total: int
    swap_used: int = 0
    swap_total: int = 0
    networks: tuple[NetworkReading, ...] = ()
    disks: tuple[DiskReading, ...] = ()
    processes: tuple[ProcessRecord, ...] = ()
    sensors: tuple[SensorReading, ...] = ()
    load_avg: tuple[float, float, float] = (0.0, 0.0, 0.0)
    uptime_seconds: float = 0.0
    stale: frozenset[str] = frozenset()

    @property
    def core_count(self) -> int:
        return max(1, len(self.cpu_per_core))

    @property
    def cpu_total(self) -> float:
        if not self.cpu_per_core:
            return 0.0
        return sum(self.cpu_per_core) / len(self.cpu_per_core)

    @property
    def memory_percent(self) -> float:
        if self.memory_total <= 0:
            return 0.0
        return 100.0 * self.memory_used / self.memory_total


@dataclass(slots=True)
class RawMetrics:
    """
    Absolute host counters as returned by a telemetry provider.

    Any section may be None when the OS refused or failed to report it; the
    sampler then repeats the last known value for that section.
    """

    cpu_times: list[tuple[float, float]] | None = None  # per core: (busy, total) seconds
    memory: tuple[int, int] | None = None  # (used, total)
    swap: tuple[int, int] | None = None  # (used, total)
    net_counters: dict[str, tuple[int, int]] | None = None  # name -> (recv, sent)
    disk_counters: dict[str, tuple[int, int]] | None = None  # name -> (read, written)
    disk_usage: dict[str, tuple[int, int]] = field(default_factory=dict)  # name -> (used, total)
    processes: list[ProcessRecord] | None = None
    sensors: list[SensorReading] | None = None
    load_avg: tuple[float, float, float] | None = None
    boot_time: float | None = None
