"""zenith - Textual application and terminal backend."""

import asyncio

import structlog
from rich.text import Text
from textual import events
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.widgets import Static

from zenith.config import Config
from zenith.errors import RenderFault
from zenith.history import HistoryBuffer
from zenith.layout import PanelId, PanelLayout
from zenith.loop import EventLoop, ExitStatus
from zenith.monitor import MetricSampler
from zenith.processes import ProcessTable
from zenith.store import PersistentHistoryStore
from zenith.ui import Frame, InputEvent, PanelFrame, UIState

log = structlog.get_logger()

# Points kept per stream: wide enough for a large terminal at the widest zoom
INITIAL_CAPACITY = 512
MAX_CAPACITY = 8192


class PanelView(Static):
    """One dashboard panel, drawn from a PanelFrame."""

    DEFAULT_CSS = """
    PanelView {
        height: 3;
        border: round $primary-darken-2;
        border-title-color: $text;
        padding: 0;
    }

    PanelView.focused {
        border: round $accent;
        border-title-style: bold;
    }

    PanelView.minimized {
        border: none;
        height: 1;
        background: $surface;
    }
    """

    def show(self, frame: PanelFrame) -> None:
        self.display = True
        self.styles.height = frame.height
        self.set_class(frame.focused, "focused")
        self.set_class(frame.minimized, "minimized")
        if frame.minimized:
            self.border_title = None
            marker = "▶ " if frame.focused else "  "
            self.update(Text(marker + frame.title, style="bold"))
            return
        # Plain Text: the title can carry filter input, which is not markup
        self.border_title = Text(frame.title)
        body = Text("\n".join(frame.lines), no_wrap=True, overflow="crop")
        if frame.highlight is not None:
            start = sum(len(line) + 1 for line in frame.lines[: frame.highlight])
            body.stylize("reverse", start, start + len(frame.lines[frame.highlight]))
        self.update(body)


class StatusLine(Static):
    """Bottom line: help, warnings, filter entry."""

    DEFAULT_CSS = """
    StatusLine {
        dock: bottom;
        height: 1;
        background: $boost;
        color: $text-muted;
    }
    """


class TextualBackend:
    """
    Terminal backend for the event loop, fed by ZenithApp's event handlers.

    Input and resize notifications are queued on the app's asyncio loop; a
    resize enqueues a wake-up (None) so a waiting loop reacts at once.
    """

    def __init__(self, app: App) -> None:
        self._app = app
        self._queue: asyncio.Queue[InputEvent | None] = asyncio.Queue()
        self._pending_size: tuple[int, int] | None = None

    def push(self, event: InputEvent) -> None:
        self._queue.put_nowait(event)

    def push_resize(self, width: int, height: int) -> None:
        self._pending_size = (width, height)
        self._queue.put_nowait(None)

    def size(self) -> tuple[int, int]:
        return self._app.size.width, self._app.size.height

    def notify_resize(self) -> tuple[int, int] | None:
        size, self._pending_size = self._pending_size, None
        return size

    def poll_input(self) -> InputEvent | None:
        while True:
            try:
                event = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return None
            if event is not None:
                return event

    async def wait_input(self, timeout: float) -> InputEvent | None:
        try:
            return await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            return None

    def submit_frame(self, frame: Frame) -> None:
        try:
            panels = {panel.panel: panel for panel in frame.panels}
            for panel_id in PanelId:
                view = self._app.query_one(f"#panel-{panel_id.value}", PanelView)
                panel = panels.get(panel_id)
                if panel is None:
                    view.display = False
                else:
                    view.show(panel)
            self._app.query_one("#status", StatusLine).update(Text(frame.status, no_wrap=True))
        except Exception as exc:
            # Any failure to draw ends the session
            raise RenderFault(f"cannot draw frame: {exc}") from exc


class ZenithApp(App[ExitStatus]):
    """Main zenith application."""

    TITLE = "zenith"
    SUB_TITLE = "sort of like top, but with histograms"

    CSS = """
    Screen {
        layout: vertical;
        overflow: hidden;
    }
    """

    ENABLE_COMMAND_PALETTE = False

    # Keys Textual would otherwise consume for its own focus handling
    BINDINGS = [
        Binding("tab", "input('tab')", show=False, priority=True),
        Binding("shift+tab", "input('shift+tab')", show=False, priority=True),
        Binding("enter", "input('enter')", show=False, priority=True),
        Binding("escape", "input('escape')", show=False, priority=True),
    ]

    def __init__(
        self,
        config: Config,
        store: PersistentHistoryStore | None = None,
        sampler: MetricSampler | None = None,
        startup_warning: str | None = None,
    ) -> None:
        """Initialize the ZenithApp."""
        super().__init__()
        self.config = config
        self.startup_warning = startup_warning
        self.backend = TextualBackend(self)
        self.history = HistoryBuffer(INITIAL_CAPACITY, MAX_CAPACITY)
        self.sampler = sampler if sampler is not None else MetricSampler(timeout=config.refresh_rate / 2)
        self.ui = UIState(
            PanelLayout(config.panel_heights),
            history_enabled=store is not None,
            max_points=MAX_CAPACITY,
        )
        self.event_loop = EventLoop(
            sampler=self.sampler,
            history=self.history,
            table=ProcessTable(),
            ui=self.ui,
            backend=self.backend,
            refresh_rate=config.refresh_rate,
            store=store,
        )

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        for panel_id in PanelId:
            yield PanelView(id=f"panel-{panel_id.value}")
        yield StatusLine(id="status")

    def on_mount(self) -> None:
        """Hydrate history and start the event loop when the app is mounted."""
        duration = min(
            self.config.retention_hours * 3600.0,
            self.history.max_capacity * self.config.refresh_rate,
        )
        self.event_loop.hydrate(duration)
        if self.startup_warning:
            self.ui.warn(self.startup_warning)
        self.run_worker(self._drive(), exclusive=True, name="event-loop")

    async def _drive(self) -> None:
        status = await self.event_loop.run()
        log.debug("event_loop_finished", reason=status.reason.value, ticks=status.ticks)
        self.exit(status)

    def action_input(self, key: str) -> None:
        self.backend.push(InputEvent("key", key=key))

    def on_key(self, event: events.Key) -> None:
        event.prevent_default()
        event.stop()
        self.backend.push(InputEvent("key", key=event.key, character=event.character))

    def on_resize(self, event: events.Resize) -> None:
        self.backend.push_resize(event.size.width, event.size.height)

    def on_mouse_scroll_up(self, event: events.MouseScrollUp) -> None:
        self.backend.push(InputEvent("scroll", key="up"))

    def on_mouse_scroll_down(self, event: events.MouseScrollDown) -> None:
        self.backend.push(InputEvent("scroll", key="down"))
