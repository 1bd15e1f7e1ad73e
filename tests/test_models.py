"""Tests for zenith data models."""

import dataclasses

import pytest

from zenith.models import ProcessRecord, Snapshot, StreamKey

from conftest import make_process


def test_process_record_creation():
    """Test ProcessRecord dataclass creation."""
    record = ProcessRecord(
        pid=123,
        ppid=1,
        name="test_process",
        command="/usr/bin/test",
        username="testuser",
        status="running",
        nice=0,
        threads=4,
        memory_rss=1024000,
        cpu_time=12.5,
        read_bytes=10,
        write_bytes=20,
    )

    assert record.pid == 123
    assert record.name == "test_process"
    assert record.username == "testuser"
    assert record.cpu_time == 12.5
    # Rates stay zero until the process table derives them
    assert record.cpu_percent == 0.0
    assert record.read_rate == 0.0
    assert record.write_rate == 0.0


def test_process_record_is_frozen():
    """Test that ProcessRecord is immutable (frozen)."""
    record = make_process(1)

    with pytest.raises(dataclasses.FrozenInstanceError):
        record.pid = 2


def test_process_record_uses_slots():
    """Test ProcessRecord uses __slots__ for memory efficiency."""
    assert not hasattr(make_process(1), "__dict__")


class TestSnapshot:
    """Tests for Snapshot dataclass."""

    def test_derived_fields(self):
        snapshot = Snapshot(
            timestamp=1.0,
            cpu_per_core=(10.0, 30.0),
            memory_used=4 * 1024**3,
            memory_total=16 * 1024**3,
        )
        assert snapshot.core_count == 2
        assert snapshot.cpu_total == 20.0
        assert snapshot.memory_percent == 25.0

    def test_empty_snapshot_has_safe_defaults(self):
        snapshot = Snapshot(timestamp=1.0, cpu_per_core=(), memory_used=0, memory_total=0)
        assert snapshot.core_count == 1
        assert snapshot.cpu_total == 0.0
        assert snapshot.memory_percent == 0.0
        assert snapshot.processes == ()
        assert snapshot.stale == frozenset()

    def test_snapshot_is_frozen(self):
        snapshot = Snapshot(timestamp=1.0, cpu_per_core=(1.0,), memory_used=0, memory_total=0)
        with pytest.raises(dataclasses.FrozenInstanceError):
            snapshot.timestamp = 2.0


class TestStreamKey:
    """Tests for StreamKey encoding used by the history store."""

    def test_encode(self):
        assert StreamKey("net_rx", "eth0").encode() == "net_rx:eth0"

    def test_decode_keeps_colons_in_instance(self):
        assert StreamKey.decode("sensor:acpitz 0:1") == StreamKey("sensor", "acpitz 0:1")

    @pytest.mark.parametrize("text", ["", "cpu", ":0"])
    def test_decode_rejects_garbage(self, text):
        with pytest.raises(ValueError):
            StreamKey.decode(text)
