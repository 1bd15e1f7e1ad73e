"""The cooperative driver: tick timer and input merged on one asyncio task."""

import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

import structlog

from zenith.errors import InputDecodeFault, PersistenceFault, RenderFault
from zenith.history import HistoryBuffer
from zenith.models import Snapshot, StreamKey
from zenith.monitor import MetricSampler
from zenith.processes import ProcessTable
from zenith.store import PersistentHistoryStore
from zenith.ui import Frame, InputEvent, UIState

log = structlog.get_logger()

DEPTH_KEY = StreamKey("cpu", "total")


class TerminalBackend(Protocol):
    """What the loop needs from the terminal."""

    def size(self) -> tuple[int, int]: ...

    def submit_frame(self, frame: Frame) -> None: ...

    def poll_input(self) -> InputEvent | None: ...

    async def wait_input(self, timeout: float) -> InputEvent | None: ...

    def notify_resize(self) -> tuple[int, int] | None: ...


class ExitReason(Enum):
    QUIT = "quit"
    RENDER_FAULT = "render_fault"


@dataclass(slots=True, frozen=True)
class ExitStatus:
    """Why the loop stopped, for the entry point to report."""

    reason: ExitReason
    detail: str = ""
    ticks: int = 0


class EventLoop:
    """
    Owns the tick timer and the input stream.

    Each tick runs sample -> history (and store) -> reconcile -> render in that
    order. Input is handled between ticks as it arrives. A tick that overruns
    the refresh interval pushes the next one back; ticks never overlap.
    """

    def __init__(
        self,
        sampler: MetricSampler,
        history: HistoryBuffer,
        table: ProcessTable,
        ui: UIState,
        backend: TerminalBackend,
        refresh_rate: float,
        store: PersistentHistoryStore | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the EventLoop.

        Args:
            refresh_rate: Seconds between ticks.
            store: Open history store, or None when history is disabled.
        """
        self.sampler = sampler
        self.history = history
        self.table = table
        self.ui = ui
        self.backend = backend
        self.refresh_rate = refresh_rate
        self.store = store
        self._clock = clock
        self.ticks = 0

    @property
    def persisting(self) -> bool:
        return self.store is not None and self.store.is_open and not self.store.disabled

    def hydrate(self, duration: float) -> int:
        """Pre-populate the history from the store's most recent records."""
        if not self.persisting:
            return 0
        records = self.store.load_recent(duration)
        loaded = self.history.load((r.timestamp, r.values) for r in records)
        log.info("history_hydrated", records=len(records), points=loaded)
        return len(records)

    async def tick(self) -> Snapshot:
        """Run one sample -> store -> reconcile -> render cycle."""
        snapshot = await self.sampler.sample()
        self.history.record(snapshot)
        if self.persisting:
            try:
                self.store.append_snapshot(snapshot)
            except PersistenceFault as fault:
                self.ui.warn(f"History recording stopped: {fault}")
        self.table.core_count = snapshot.core_count
        self.table.reconcile(snapshot.processes, snapshot.timestamp)
        self.ui.update(snapshot, self.table, self.history.length(DEPTH_KEY))
        self.render()
        self.ticks += 1
        return snapshot

    def render(self) -> None:
        frame = self.ui.render(self.history, self.table)
        self.backend.submit_frame(frame)

    def _resized(self, size: tuple[int, int]) -> None:
        self.ui.resize(*size)
        self.history.ensure_capacity(self.ui.required_capacity())

    def _dispatch(self, event: InputEvent) -> None:
        try:
            self.ui.handle_input(event, self.table)
        except InputDecodeFault as fault:
            log.debug("input_ignored", error=str(fault))
            return
        self.history.ensure_capacity(self.ui.required_capacity())

    def _drain(self, first: InputEvent | None = None) -> bool:
        """Apply pending resize and input. Returns True if anything changed."""
        changed = False
        event = first
        while True:
            size = self.backend.notify_resize()
            if size is not None:
                self._resized(size)
                changed = True
            if event is None:
                event = self.backend.poll_input()
                if event is None:
                    return changed
            self._dispatch(event)
            changed = True
            event = None
            if self.ui.quit_requested:
                return changed

    async def run(self) -> ExitStatus:
        """Drive ticks and input until quit or a render fault; always shuts down cleanly."""
        log.info("event_loop_started", refresh_rate=self.refresh_rate, persisting=self.persisting)
        try:
            self._resized(self.backend.size())
            next_tick = self._clock()
            while True:
                changed = self._drain()
                if self.ui.quit_requested:
                    break
                now = self._clock()
                if now >= next_tick:
                    await self.tick()
                    finished = self._clock()
                    next_tick = max(now + self.refresh_rate, finished)
                    continue
                if changed and self.ticks:
                    self.render()
                event = await self.backend.wait_input(next_tick - now)
                if self._drain(event) and not self.ui.quit_requested and self.ticks:
                    self.render()
                if self.ui.quit_requested:
                    break
        except RenderFault as fault:
            log.error("render_fault", error=str(fault))
            return ExitStatus(ExitReason.RENDER_FAULT, str(fault), self.ticks)
        finally:
            self.shutdown()
        log.info("event_loop_quit", ticks=self.ticks)
        return ExitStatus(ExitReason.QUIT, "", self.ticks)

    def shutdown(self) -> None:
        """Flush persistence and release the lock, if held."""
        if self.store is not None:
            self.store.close()
