"""Fixed-capacity history streams for zenith charts."""

from collections import deque
from collections.abc import Iterable, Iterator

from zenith.models import Snapshot, StreamKey

Point = tuple[float, float]  # (timestamp, value)


def snapshot_values(snapshot: Snapshot) -> Iterator[tuple[StreamKey, float]]:
    """Yield every charted stream value carried by a snapshot."""
    for core, percent in enumerate(snapshot.cpu_per_core):
        yield StreamKey("cpu", str(core)), percent
    yield StreamKey("cpu", "total"), snapshot.cpu_total
    yield StreamKey("mem", "used"), float(snapshot.memory_used)
    yield StreamKey("mem", "swap"), float(snapshot.swap_used)
    for net in snapshot.networks:
        yield StreamKey("net_rx", net.name), net.rx_rate
        yield StreamKey("net_tx", net.name), net.tx_rate
    for disk in snapshot.disks:
        yield StreamKey("disk_read", disk.name), disk.read_rate
        yield StreamKey("disk_write", disk.name), disk.write_rate
    for sensor in snapshot.sensors:
        yield StreamKey("sensor", sensor.label), sensor.celsius


def downsample(points: list[Point], factor: int) -> list[Point]:
    """
    Collapse every ``factor`` consecutive points into one, keeping the peak.

    Buckets are aligned to the newest point so the right edge of a chart stays
    put as new samples arrive. The bucket's timestamp is its newest one.
    """
    if factor <= 1 or not points:
        return list(points)
    buckets: list[Point] = []
    end = len(points)
    while end > 0:
        start = max(0, end - factor)
        chunk = points[start:end]
        buckets.append((chunk[-1][0], max(value for _, value in chunk)))
        end = start
    buckets.reverse()
    return buckets


class HistoryBuffer:
    """
    One ring buffer per metric stream.

    Streams are created lazily on first append. Every stream shares the same
    capacity; ``ensure_capacity`` grows it (never shrinks) when a chart asks
    for more points than are retained.
    """

    def __init__(self, capacity: int = 300, max_capacity: int | None = None) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._capacity = capacity
        self._max_capacity = max(capacity, max_capacity or capacity)
        self._streams: dict[StreamKey, deque[Point]] = {}

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def max_capacity(self) -> int:
        return self._max_capacity

    def __len__(self) -> int:
        return len(self._streams)

    def __contains__(self, key: object) -> bool:
        return key in self._streams

    def append(self, key: StreamKey, timestamp: float, value: float) -> None:
        """Append one point, evicting the oldest when the stream is full."""
        stream = self._streams.get(key)
        if stream is None:
            stream = self._streams[key] = deque(maxlen=self._capacity)
        stream.append((timestamp, value))

    def record(self, snapshot: Snapshot) -> None:
        """Append every stream carried by a snapshot."""
        for key, value in snapshot_values(snapshot):
            self.append(key, snapshot.timestamp, value)

    def load(self, records: Iterable[tuple[float, dict[StreamKey, float]]]) -> int:
        """Hydrate from (timestamp, values) pairs in time order. Returns points loaded."""
        count = 0
        for timestamp, values in records:
            for key, value in values.items():
                self.append(key, timestamp, value)
                count += 1
        return count

    def window(self, key: StreamKey, n: int, offset: int = 0) -> list[Point]:
        """
        Return up to ``n`` points in time order, ending ``offset`` points before the newest.

        Never mutates the buffer. An unknown or empty stream yields an empty list.
        """
        stream = self._streams.get(key)
        if not stream or n <= 0:
            return []
        end = max(0, len(stream) - max(0, offset))
        start = max(0, end - n)
        # deque slicing is not supported; walk only the part we need
        return [stream[i] for i in range(start, end)]

    def latest(self, key: StreamKey) -> float | None:
        stream = self._streams.get(key)
        if not stream:
            return None
        return stream[-1][1]

    def length(self, key: StreamKey) -> int:
        stream = self._streams.get(key)
        return len(stream) if stream is not None else 0

    def keys(self, kind: str | None = None) -> list[StreamKey]:
        """Known stream keys, optionally filtered by kind, in creation order."""
        return [key for key in self._streams if kind is None or key.kind == kind]

    def ensure_capacity(self, needed: int) -> int:
        """Grow every stream to hold at least ``needed`` points, up to max_capacity."""
        target = min(needed, self._max_capacity)
        if target <= self._capacity:
            return self._capacity
        self._capacity = target
        for key, stream in self._streams.items():
            self._streams[key] = deque(stream, maxlen=target)
        return self._capacity
