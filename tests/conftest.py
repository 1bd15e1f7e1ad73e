"""Shared fakes for zenith tests."""

import asyncio
from collections import deque

import pytest

from zenith.errors import RenderFault
from zenith.models import ProcessRecord, RawMetrics
from zenith.ui import Frame, InputEvent


def make_process(pid: int, cpu_time: float = 0.0, **overrides) -> ProcessRecord:
    """Build a ProcessRecord with sensible defaults."""
    fields = dict(
        pid=pid,
        ppid=1,
        name=f"proc{pid}",
        command=f"/usr/bin/proc{pid} --flag",
        username="user",
        status="sleeping",
        nice=0,
        threads=1,
        memory_rss=1024 * 1024,
        cpu_time=cpu_time,
        read_bytes=0,
        write_bytes=0,
    )
    fields.update(overrides)
    return ProcessRecord(**fields)


def make_raw(tick: int = 0, processes: list[ProcessRecord] | None = None, cores: int = 2) -> RawMetrics:
    """Raw counters that grow steadily with ``tick``: each core 25% busy per second."""
    return RawMetrics(
        cpu_times=[(tick * 0.25 + core, tick * 1.0 + 4) for core in range(cores)],
        memory=(4 * 1024**3, 16 * 1024**3),
        swap=(0, 2 * 1024**3),
        net_counters={"eth0": (tick * 1000, tick * 500)},
        disk_counters={"sda": (tick * 4096, tick * 8192)},
        disk_usage={"sda": (100, 400)},
        processes=processes if processes is not None else [make_process(1, cpu_time=tick * 0.5)],
        sensors=[],
        load_avg=(0.5, 0.25, 0.1),
        boot_time=0.0,
    )


class FakeProvider:
    """Telemetry provider replaying a script of RawMetrics (the last one repeats)."""

    def __init__(self, script: list[RawMetrics] | None = None) -> None:
        self.script = deque(script or [])
        self.polls = 0
        self.tick = 0

    def poll(self) -> RawMetrics:
        self.polls += 1
        if self.script:
            raw = self.script.popleft()
            if not self.script:
                self.script.append(raw)
            return raw
        self.tick += 1
        return make_raw(self.tick)


class FakeClock:
    """A clock that advances by ``step`` on every read."""

    def __init__(self, start: float = 1_000_000.0, step: float = 1.0) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> float:
        self.now += self.step
        return self.now


class FakeBackend:
    """Terminal backend that records frames and replays scripted input."""

    def __init__(self, width: int = 100, height: int = 40, quit_after_frames: int | None = None) -> None:
        self.width = width
        self.height = height
        self.frames: list[Frame] = []
        self.events: deque[InputEvent] = deque()
        self.resizes: deque[tuple[int, int]] = deque()
        self.quit_after_frames = quit_after_frames
        self.fail = False

    def size(self) -> tuple[int, int]:
        return self.width, self.height

    def submit_frame(self, frame: Frame) -> None:
        if self.fail:
            raise RenderFault("terminal went away")
        self.frames.append(frame)
        if self.quit_after_frames is not None and len(self.frames) == self.quit_after_frames:
            self.events.append(InputEvent("key", key="q"))

    def poll_input(self) -> InputEvent | None:
        return self.events.popleft() if self.events else None

    async def wait_input(self, timeout: float) -> InputEvent | None:
        await asyncio.sleep(min(max(timeout, 0.0), 0.005))
        return self.poll_input()

    def notify_resize(self) -> tuple[int, int] | None:
        if not self.resizes:
            return None
        self.width, self.height = self.resizes.popleft()
        return self.width, self.height


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()
