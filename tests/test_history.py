"""Tests for HistoryBuffer and downsampling."""

import pytest

from zenith.history import HistoryBuffer, downsample, snapshot_values
from zenith.models import DiskReading, NetworkReading, SensorReading, Snapshot, StreamKey

CPU0 = StreamKey("cpu", "0")


def make_snapshot(timestamp: float, cpu: float = 10.0) -> Snapshot:
    return Snapshot(
        timestamp=timestamp,
        cpu_per_core=(cpu, cpu * 2),
        memory_used=100,
        memory_total=400,
        networks=(NetworkReading("eth0", 1.0, 2.0),),
        disks=(DiskReading("sda", 3.0, 4.0),),
        sensors=(SensorReading("coretemp 0", 55.0),),
    )


class TestHistoryBuffer:
    """Tests for HistoryBuffer."""

    def test_streams_are_created_lazily(self):
        history = HistoryBuffer(capacity=4)

        assert len(history) == 0
        assert CPU0 not in history
        assert history.window(CPU0, 10) == []
        assert history.latest(CPU0) is None
        assert history.length(CPU0) == 0

        history.append(CPU0, 1.0, 5.0)

        assert CPU0 in history
        assert history.latest(CPU0) == 5.0

    def test_oldest_points_are_evicted_first(self):
        history = HistoryBuffer(capacity=3)

        for i in range(5):
            history.append(CPU0, float(i), float(i * 10))

        assert history.length(CPU0) == 3
        assert history.window(CPU0, 10) == [(2.0, 20.0), (3.0, 30.0), (4.0, 40.0)]

    def test_window_is_newest_last_and_bounded(self):
        history = HistoryBuffer(capacity=10)
        for i in range(6):
            history.append(CPU0, float(i), float(i))

        assert history.window(CPU0, 2) == [(4.0, 4.0), (5.0, 5.0)]
        assert history.window(CPU0, 2, offset=3) == [(1.0, 1.0), (2.0, 2.0)]
        assert history.window(CPU0, 3, offset=5) == [(0.0, 0.0)]
        assert history.window(CPU0, 3, offset=50) == []
        assert history.window(CPU0, 0) == []

    def test_window_does_not_mutate(self):
        history = HistoryBuffer(capacity=10)
        for i in range(4):
            history.append(CPU0, float(i), float(i))

        first = history.window(CPU0, 3)
        second = history.window(CPU0, 3)

        assert first == second
        assert history.length(CPU0) == 4

    def test_record_snapshot(self):
        history = HistoryBuffer()

        history.record(make_snapshot(1.0))

        assert history.keys("cpu") == [StreamKey("cpu", "0"), StreamKey("cpu", "1"), StreamKey("cpu", "total")]
        assert history.latest(StreamKey("cpu", "total")) == pytest.approx(15.0)
        assert history.latest(StreamKey("net_tx", "eth0")) == 2.0
        assert history.latest(StreamKey("disk_read", "sda")) == 3.0
        assert history.latest(StreamKey("sensor", "coretemp 0")) == 55.0

    def test_load_returns_point_count(self):
        history = HistoryBuffer(capacity=5)
        records = [(float(t), {CPU0: float(t), StreamKey("mem", "used"): 1.0}) for t in range(3)]

        assert history.load(records) == 6
        assert history.window(CPU0, 5) == [(0.0, 0.0), (1.0, 1.0), (2.0, 2.0)]

    def test_ensure_capacity_grows_and_keeps_points(self):
        history = HistoryBuffer(capacity=2, max_capacity=5)
        for i in range(2):
            history.append(CPU0, float(i), float(i))

        assert history.ensure_capacity(4) == 4
        for i in range(2, 6):
            history.append(CPU0, float(i), float(i))

        assert history.length(CPU0) == 4
        assert history.window(CPU0, 10)[0] == (2.0, 2.0)

    def test_ensure_capacity_is_capped_and_never_shrinks(self):
        history = HistoryBuffer(capacity=3, max_capacity=6)

        assert history.ensure_capacity(100) == 6
        assert history.ensure_capacity(1) == 6
        assert history.capacity == 6

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            HistoryBuffer(capacity=0)


class TestDownsample:
    """Tests for downsample."""

    def test_factor_one_is_identity(self):
        points = [(1.0, 1.0), (2.0, 2.0)]
        assert downsample(points, 1) == points

    def test_buckets_keep_peak_and_align_to_newest(self):
        points = [(float(t), v) for t, v in enumerate([1.0, 9.0, 2.0, 3.0, 4.0])]

        assert downsample(points, 2) == [(0.0, 1.0), (2.0, 9.0), (4.0, 4.0)]

    def test_empty(self):
        assert downsample([], 4) == []


def test_snapshot_values_cover_every_stream():
    """Test every charted metric yields one stream value."""
    keys = [key for key, _ in snapshot_values(make_snapshot(1.0))]

    assert {key.kind for key in keys} == {
        "cpu",
        "mem",
        "net_rx",
        "net_tx",
        "disk_read",
        "disk_write",
        "sensor",
    }
