"""Metric sampling for zenith."""

import asyncio
import os
import time
from collections.abc import Callable
from typing import Any, Protocol, TypeVar

import psutil
import structlog

from zenith.errors import SampleFault
from zenith.models import (
    DiskReading,
    NetworkReading,
    ProcessRecord,
    RawMetrics,
    SensorReading,
    Snapshot,
)

log = structlog.get_logger()

T = TypeVar("T")


class TelemetryProvider(Protocol):
    """Anything that can be polled for absolute host counters."""

    def poll(self) -> RawMetrics: ...


class PsutilTelemetry:
    """
    Telemetry provider backed by psutil.

    Each section is read independently; a section the OS refuses comes back
    as None instead of failing the whole poll.
    """

    def __init__(self) -> None:
        # io_counters is not available on every platform (macOS)
        self._process_attrs = [
            "pid",
            "ppid",
            "name",
            "username",
            "status",
            "nice",
            "num_threads",
            "memory_info",
            "cpu_times",
            "cmdline",
        ]
        if hasattr(psutil.Process, "io_counters"):
            self._process_attrs.append("io_counters")

    def poll(self) -> RawMetrics:
        return RawMetrics(
            cpu_times=self._guarded("cpu", self._cpu_times),
            memory=self._guarded("memory", self._memory),
            swap=self._guarded("swap", self._swap),
            net_counters=self._guarded("net", self._net_counters),
            disk_counters=self._guarded("disk", self._disk_counters),
            disk_usage=self._guarded("disk_usage", self._disk_usage) or {},
            processes=self._guarded("processes", self._collect_processes),
            sensors=self._guarded("sensors", self._sensors),
            load_avg=self._guarded("load", psutil.getloadavg),
            boot_time=self._guarded("boot_time", psutil.boot_time),
        )

    @staticmethod
    def _guarded(section: str, reader: Callable[[], T]) -> T | None:
        try:
            return reader()
        except (OSError, psutil.Error, AttributeError, RuntimeError) as exc:
            log.debug("telemetry_section_failed", section=section, error=str(exc))
            return None

    @staticmethod
    def _cpu_times() -> list[tuple[float, float]]:
        result = []
        for times in psutil.cpu_times(percpu=True):
            total = sum(times)
            idle = times.idle + getattr(times, "iowait", 0.0)
            result.append((total - idle, total))
        return result

    @staticmethod
    def _memory() -> tuple[int, int]:
        mem = psutil.virtual_memory()
        return mem.used, mem.total

    @staticmethod
    def _swap() -> tuple[int, int]:
        swap = psutil.swap_memory()
        return swap.used, swap.total

    @staticmethod
    def _net_counters() -> dict[str, tuple[int, int]]:
        counters = psutil.net_io_counters(pernic=True) or {}
        return {name: (c.bytes_recv, c.bytes_sent) for name, c in counters.items()}

    @staticmethod
    def _disk_counters() -> dict[str, tuple[int, int]]:
        counters = psutil.disk_io_counters(perdisk=True) or {}
        return {name: (c.read_bytes, c.write_bytes) for name, c in counters.items()}

    @staticmethod
    def _disk_usage() -> dict[str, tuple[int, int]]:
        usage: dict[str, tuple[int, int]] = {}
        for part in psutil.disk_partitions(all=False):
            name = os.path.basename(part.device)
            if not name or name in usage:
                continue
            try:
                du = psutil.disk_usage(part.mountpoint)
            except OSError:
                continue
            usage[name] = (du.used, du.total)
        return usage

    @staticmethod
    def _sensors() -> list[SensorReading]:
        readings = []
        for chip, entries in psutil.sensors_temperatures().items():
            for index, entry in enumerate(entries):
                label = f"{chip} {entry.label or index}"
                readings.append(SensorReading(label=label, celsius=float(entry.current)))
        return readings

    def _collect_processes(self) -> list[ProcessRecord]:
        """
        Collect absolute counters for all running processes.

        Uses psutil.process_iter() with oneshot() context manager for efficiency.
        Handles AccessDenied and ZombieProcess errors gracefully.
        """
        processes: list[ProcessRecord] = []

        for proc in psutil.process_iter(attrs=self._process_attrs):
            try:
                with proc.oneshot():
                    info: dict[str, Any] = proc.info

                    cmdline = info.get("cmdline") or []
                    command = " ".join(cmdline) if cmdline else info.get("name") or ""

                    mem_info = info.get("memory_info")
                    cpu_times = info.get("cpu_times")
                    io = info.get("io_counters")

                    processes.append(
                        ProcessRecord(
                            pid=info.get("pid", 0),
                            ppid=info.get("ppid") or 0,
                            name=info.get("name") or "",
                            command=command,
                            username=info.get("username") or "",
                            status=info.get("status") or "?",
                            nice=info.get("nice") or 0,
                            threads=info.get("num_threads") or 0,
                            memory_rss=mem_info.rss if mem_info else 0,
                            cpu_time=(cpu_times.user + cpu_times.system) if cpu_times else 0.0,
                            read_bytes=io.read_bytes if io else 0,
                            write_bytes=io.write_bytes if io else 0,
                        )
                    )

            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                # Died mid-poll or not ours to read
                continue

        return processes


class MetricSampler:
    """
    Turns provider counters into Snapshots, once per tick.

    The provider runs in a worker thread bounded by ``timeout``. A timed-out or
    failing poll, and any section the provider could not read, repeats the last
    known value for that section and is listed in ``Snapshot.stale``.
    """

    def __init__(
        self,
        provider: TelemetryProvider | None = None,
        timeout: float = 1.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize the MetricSampler.

        Args:
            provider: Source of raw counters. Defaults to PsutilTelemetry.
            timeout: Upper bound for one poll (seconds).
            clock: Wall clock used for snapshot timestamps.
        """
        self._provider = provider if provider is not None else PsutilTelemetry()
        self._timeout = timeout
        self._clock = clock
        self._last: Snapshot | None = None
        self._prev_cpu: list[tuple[float, float]] | None = None
        self._prev_counters: dict[str, tuple[float, dict[str, tuple[int, int]]]] = {}
        self.fault_count = 0

    @property
    def last(self) -> Snapshot | None:
        """The most recent snapshot, if any."""
        return self._last

    async def sample(self) -> Snapshot:
        """Poll the provider and produce the next snapshot."""
        timestamp = self._next_timestamp()
        try:
            raw = await self._poll()
        except SampleFault as fault:
            self.fault_count += 1
            log.warning("sample_fault", error=str(fault))
            raw = RawMetrics()
        return self.normalize(raw, timestamp)

    async def _poll(self) -> RawMetrics:
        try:
            return await asyncio.wait_for(asyncio.to_thread(self._provider.poll), self._timeout)
        except asyncio.TimeoutError:
            raise SampleFault(f"telemetry poll exceeded {self._timeout:.1f}s") from None
        except Exception as exc:
            raise SampleFault(f"telemetry poll failed: {exc}") from exc

    def _next_timestamp(self) -> float:
        now = self._clock()
        if self._last is not None and now <= self._last.timestamp:
            now = self._last.timestamp + 0.001
        return now

    def normalize(self, raw: RawMetrics, timestamp: float) -> Snapshot:
        """Build a snapshot from raw counters, repeating stale sections."""
        last = self._last
        stale: set[str] = set()

        if raw.cpu_times is not None:
            cpu = self._cpu_percents(raw.cpu_times)
        else:
            stale.add("cpu")
            cpu = last.cpu_per_core if last else ()

        if raw.memory is not None:
            memory_used, memory_total = raw.memory
        else:
            stale.add("memory")
            memory_used, memory_total = (last.memory_used, last.memory_total) if last else (0, 0)

        if raw.swap is not None:
            swap_used, swap_total = raw.swap
        else:
            stale.add("swap")
            swap_used, swap_total = (last.swap_used, last.swap_total) if last else (0, 0)

        if raw.net_counters is not None:
            rates = self._rates("net", raw.net_counters, timestamp)
            networks = tuple(
                NetworkReading(name=name, rx_rate=rx, tx_rate=tx)
                for name, (rx, tx) in sorted(rates.items())
            )
        else:
            stale.add("net")
            networks = last.networks if last else ()

        if raw.disk_counters is not None:
            rates = self._rates("disk", raw.disk_counters, timestamp)
            disks = tuple(
                DiskReading(
                    name=name,
                    read_rate=read,
                    write_rate=write,
                    used=raw.disk_usage.get(name, (0, 0))[0],
                    total=raw.disk_usage.get(name, (0, 0))[1],
                )
                for name, (read, write) in sorted(rates.items())
            )
        else:
            stale.add("disk")
            disks = last.disks if last else ()

        if raw.processes is not None:
            processes = tuple(raw.processes)
        else:
            stale.add("processes")
            processes = last.processes if last else ()

        if raw.sensors is not None:
            sensors = tuple(raw.sensors)
        else:
            stale.add("sensors")
            sensors = last.sensors if last else ()

        if raw.load_avg is not None:
            load_avg = tuple(raw.load_avg)
        else:
            stale.add("load")
            load_avg = last.load_avg if last else (0.0, 0.0, 0.0)

        if raw.boot_time is not None:
            uptime = max(0.0, timestamp - raw.boot_time)
        elif last is not None:
            uptime = last.uptime_seconds + (timestamp - last.timestamp)
        else:
            uptime = 0.0

        snapshot = Snapshot(
            timestamp=timestamp,
            cpu_per_core=cpu,
            memory_used=memory_used,
            memory_total=memory_total,
            swap_used=swap_used,
            swap_total=swap_total,
            networks=networks,
            disks=disks,
            processes=processes,
            sensors=sensors,
            load_avg=load_avg,
            uptime_seconds=uptime,
            stale=frozenset(stale),
        )
        self._last = snapshot
        return snapshot

    def _cpu_percents(self, times: list[tuple[float, float]]) -> tuple[float, ...]:
        prev = self._prev_cpu
        self._prev_cpu = list(times)
        if prev is None or len(prev) != len(times):
            # Nothing to diff against yet: average since boot
            pairs = [(busy, total) for busy, total in times]
        else:
            pairs = [(b - pb, t - pt) for (b, t), (pb, pt) in zip(times, prev)]
        return tuple(
            min(100.0, max(0.0, 100.0 * busy / total)) if total > 0 else 0.0
            for busy, total in pairs
        )

    def _rates(
        self,
        section: str,
        counters: dict[str, tuple[int, int]],
        timestamp: float,
    ) -> dict[str, tuple[float, float]]:
        previous = self._prev_counters.get(section)
        self._prev_counters[section] = (timestamp, dict(counters))
        rates: dict[str, tuple[float, float]] = {}
        for name, (first, second) in counters.items():
            if previous is None or name not in previous[1] or timestamp <= previous[0]:
                rates[name] = (0.0, 0.0)
                continue
            elapsed = timestamp - previous[0]
            prev_first, prev_second = previous[1][name]
            # Counters can wrap or reset when an interface bounces
            rates[name] = (
                max(0.0, (first - prev_first) / elapsed),
                max(0.0, (second - prev_second) / elapsed),
            )
        return rates
