"""Dashboard state machine and frame composition.

UIState turns input events into layout/selection changes and turns the current
history and process table into a Frame. Rendering reads state only; it never
touches sampled data.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

import structlog

from zenith.errors import InputDecodeFault
from zenith.history import HistoryBuffer, Point, downsample
from zenith.layout import PanelId, PanelLayout, SizeMode
from zenith.models import Snapshot, StreamKey
from zenith.processes import ProcessRecord, ProcessTable, SignalAction, SortKey, send_signal

log = structlog.get_logger()

SPARK = " ▁▂▃▄▅▆▇█"
STATUS_ROWS = 1
BORDER_ROWS = 2
BORDER_COLS = 2
ZOOM_LEVELS = (1, 2, 4, 8, 16, 32)
PAGE = 10

HELP = (
    "q quit  tab focus  e expand  m minimize  ↑↓ select  enter focus  "
    "←→ scroll  +/- zoom  f6 sort  i invert  / filter"
)
FOCUS_HELP = "t terminate  k kill  s suspend  c continue  esc back"

SIGNAL_KEYS = {
    "t": SignalAction.TERMINATE,
    "k": SignalAction.KILL,
    "s": SignalAction.SUSPEND,
    "c": SignalAction.RESUME,
}


class UIMode(Enum):
    NORMAL = "normal"
    PANEL_EXPANDED = "panel_expanded"
    PROCESS_FOCUSED = "process_focused"


@dataclass(slots=True, frozen=True)
class InputEvent:
    """A key press or a mouse scroll."""

    kind: str  # 'key' or 'scroll'
    key: str = ""
    character: str | None = None


@dataclass(slots=True, frozen=True)
class PanelFrame:
    panel: PanelId
    title: str
    height: int
    lines: tuple[str, ...]
    focused: bool = False
    minimized: bool = False
    highlight: int | None = None  # index into lines


@dataclass(slots=True, frozen=True)
class Frame:
    """Everything the terminal backend needs to draw one screen."""

    width: int
    height: int
    panels: tuple[PanelFrame, ...]
    status: str


# ── Formatting helpers ─────────────────────────────────────────────────────


def format_bytes(size: float) -> str:
    """Format bytes as human-readable string."""
    for unit in ["B", "K", "M", "G", "T"]:
        if size < 1024:
            return f"{size:5.1f}{unit}" if unit != "B" else f"{int(size):5d}{unit}"
        size = size / 1024
    return f"{size:.1f}P"


def format_rate(bps: float) -> str:
    """Human-readable transfer rate."""
    if bps < 1024:
        return f"{bps:.0f} B/s"
    if bps < 1024 * 1024:
        return f"{bps / 1024:.1f} KB/s"
    if bps < 1024**3:
        return f"{bps / 1024 ** 2:.1f} MB/s"
    return f"{bps / 1024 ** 3:.1f} GB/s"


def format_duration(seconds: float) -> str:
    seconds = int(seconds)
    days, rest = divmod(seconds, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, secs = divmod(rest, 60)
    if days > 0:
        return f"{days}d {hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def fit(text: str, width: int) -> str:
    """Pad or cut ``text`` to exactly ``width`` columns."""
    if width <= 0:
        return ""
    return text[:width].ljust(width)


def histogram_rows(values: list[float], width: int, rows: int, scale_max: float) -> list[str]:
    """
    Draw ``values`` as a bar chart ``rows`` high, newest value at the right edge.

    Each row holds eight levels of block glyphs. Missing history on the left is
    left blank.
    """
    if width <= 0 or rows <= 0:
        return []
    data = values[-width:]
    upper = max(scale_max, 1e-9)
    levels = rows * 8
    steps = []
    for value in data:
        ratio = max(0.0, min(1.0, value / upper))
        steps.append(int(round(ratio * levels)))
    pad = width - len(steps)

    out = []
    for row in range(rows - 1, -1, -1):
        base = row * 8
        cells = "".join(SPARK[max(0, min(8, step - base))] for step in steps)
        out.append(" " * pad + cells)
    return out


def side_by_side(left: list[str], right: list[str], left_width: int, gap: str = " │ ") -> list[str]:
    rows = max(len(left), len(right))
    left = left + [""] * (rows - len(left))
    right = right + [""] * (rows - len(right))
    return [fit(a, left_width) + gap + b for a, b in zip(left, right)]


def combined_window(history: HistoryBuffer, kind: str, n: int, offset: int = 0) -> list[Point]:
    """Sum every stream of ``kind`` per timestamp (e.g. all interfaces' receive rates)."""
    totals: dict[float, float] = {}
    for key in history.keys(kind):
        for timestamp, value in history.window(key, n, offset):
            totals[timestamp] = totals.get(timestamp, 0.0) + value
    return sorted(totals.items())[-n:] if n > 0 else []


class UIState:
    """
    Owns the panel layout and everything the operator can change with a key.

    Modes: NORMAL, PANEL_EXPANDED (one panel fills the screen) and
    PROCESS_FOCUSED (the process panel shows one process in detail).
    """

    def __init__(
        self,
        layout: PanelLayout,
        width: int = 80,
        height: int = 24,
        signaller: Callable[[int, SignalAction], str] = send_signal,
        history_enabled: bool = True,
        max_points: int | None = None,
    ) -> None:
        self.layout = layout
        self.width = width
        self.height = height
        self.sort_key = SortKey.CPU
        self.descending = True
        self.zoom_index = 0
        self.offset = 0
        self.focused_pid: int | None = None
        self.filter_editing = False
        self.process_scroll = 0
        self.message: str | None = None
        self.quit_requested = False
        self.history_enabled = history_enabled
        # Most points a stream can hold; zoom and scroll never ask for more
        self.max_points = max_points
        self._signaller = signaller
        self._latest: Snapshot | None = None
        self._depth = 0
        self._key_handlers: dict[str, Callable[[ProcessTable], None]] = {
            "q": self._quit,
            "tab": lambda table: self.layout.cycle_focus(1),
            "shift+tab": lambda table: self.layout.cycle_focus(-1),
            "e": self._expand,
            "m": self._minimize,
            "up": lambda table: self._move(table, -1),
            "down": lambda table: self._move(table, 1),
            "pageup": lambda table: self._move(table, -PAGE),
            "pagedown": lambda table: self._move(table, PAGE),
            "home": lambda table: self._move(table, -len(table)),
            "end": lambda table: self._move(table, len(table)),
            "enter": self._focus_process,
            "escape": self._leave_focus,
            "left": lambda table: self._scroll(1),
            "right": lambda table: self._scroll(-1),
            "plus": lambda table: self._zoom(1),
            "minus": lambda table: self._zoom(-1),
            "f6": self._cycle_sort,
            "i": self._invert_sort,
            "slash": self._start_filter,
        }
        self.layout.allocate(self.height - STATUS_ROWS)

    # ── State ──────────────────────────────────────────────────────────

    @property
    def mode(self) -> UIMode:
        if self.focused_pid is not None:
            return UIMode.PROCESS_FOCUSED
        if self.layout.expanded is not None:
            return UIMode.PANEL_EXPANDED
        return UIMode.NORMAL

    @property
    def zoom(self) -> int:
        return ZOOM_LEVELS[self.zoom_index]

    def chart_width(self) -> int:
        return max(1, self.width - BORDER_COLS)

    def required_capacity(self) -> int:
        """Points a stream must retain so the widest chart never runs short."""
        return self.chart_width() * self.zoom + self.offset

    def warn(self, message: str) -> None:
        """Show ``message`` on the status line until the next key press."""
        log.warning("ui_warning", message=message)
        self.message = message

    def resize(self, width: int, height: int) -> None:
        self.width = width
        self.height = height
        self.layout.allocate(height - STATUS_ROWS)
        self._clamp_view()
        log.debug("ui_resized", width=width, height=height)

    def update(self, snapshot: Snapshot, table: ProcessTable, depth: int = 0) -> None:
        """Take in the latest committed tick: snapshot, reconciled table, retained depth."""
        self._latest = snapshot
        self._depth = depth
        if self.focused_pid is not None and table.get(self.focused_pid) is None:
            self.warn(f"Process {self.focused_pid} exited")
            self.focused_pid = None
        self._keep_selection_visible(self._view(table), table.selected_pid)

    # ── Input ──────────────────────────────────────────────────────────

    def handle_input(self, event: InputEvent, table: ProcessTable) -> None:
        """
        Apply one input event.

        Raises:
            InputDecodeFault: The event is malformed.
        """
        if event.kind == "scroll":
            if event.key not in ("up", "down"):
                raise InputDecodeFault(f"bad scroll direction {event.key!r}")
            self._move(table, -1 if event.key == "up" else 1)
            return
        if event.kind != "key" or not event.key:
            raise InputDecodeFault(f"unrecognised input event {event!r}")

        self.message = None
        if self.filter_editing:
            self._edit_filter(event, table)
            return
        if self.mode is UIMode.PROCESS_FOCUSED and event.key in SIGNAL_KEYS:
            self._signal(SIGNAL_KEYS[event.key])
            return
        handler = self._key_handlers.get(event.key)
        if handler is not None:
            handler(table)

    def _quit(self, table: ProcessTable) -> None:
        self.quit_requested = True

    def _expand(self, table: ProcessTable) -> None:
        self.layout.expand(self.layout.focus)

    def _minimize(self, table: ProcessTable) -> None:
        self.layout.minimize(self.layout.focus)

    def _view(self, table: ProcessTable) -> list[ProcessRecord]:
        return table.sorted_view(self.sort_key, self.descending)

    def _process_rows(self) -> int:
        # border and column header
        return max(0, self.layout.panel(PanelId.PROCESS).height - BORDER_ROWS - 1)

    def _move(self, table: ProcessTable, delta: int) -> None:
        if self.focused_pid is not None:
            return
        view = self._view(table)
        table.move_selection(delta, view)
        self._keep_selection_visible(view, table.selected_pid)

    def _keep_selection_visible(self, view: list[ProcessRecord], selected_pid: int | None) -> None:
        rows = self._process_rows()
        index = next((i for i, p in enumerate(view) if p.pid == selected_pid), None)
        if index is not None and rows > 0:
            if index < self.process_scroll:
                self.process_scroll = index
            elif index >= self.process_scroll + rows:
                self.process_scroll = index - rows + 1
        self.process_scroll = max(0, min(self.process_scroll, max(0, len(view) - rows)))

    def _focus_process(self, table: ProcessTable) -> None:
        selected = table.selected()
        if selected is None:
            return
        self.focused_pid = selected.pid
        if PanelId.PROCESS in self.layout.enabled_ids():
            self.layout.set_focus(PanelId.PROCESS)

    def _leave_focus(self, table: ProcessTable) -> None:
        self.focused_pid = None

    def _signal(self, action: SignalAction) -> None:
        if self.focused_pid is None:
            return
        self.message = self._signaller(self.focused_pid, action)

    def _scroll(self, direction: int) -> None:
        step = max(1, self.chart_width() // 4) * self.zoom
        self.offset = max(0, min(self._offset_limit(), self.offset + direction * step))

    def _offset_limit(self) -> int:
        limit = max(0, self._depth - 1)
        if self.max_points is not None:
            limit = min(limit, max(0, self.max_points - self.chart_width() * self.zoom))
        return limit

    def _max_zoom_index(self) -> int:
        if self.max_points is None:
            return len(ZOOM_LEVELS) - 1
        fitting = [i for i, level in enumerate(ZOOM_LEVELS) if self.chart_width() * level <= self.max_points]
        return fitting[-1] if fitting else 0

    def _clamp_view(self) -> None:
        """Pull zoom and scroll back inside what the history can retain."""
        self.zoom_index = max(0, min(self._max_zoom_index(), self.zoom_index))
        self.offset = max(0, min(self._offset_limit(), self.offset))

    def _zoom(self, direction: int) -> None:
        self.zoom_index = max(0, min(self._max_zoom_index(), self.zoom_index + direction))
        self._clamp_view()

    def _cycle_sort(self, table: ProcessTable) -> None:
        keys = list(SortKey)
        self.sort_key = keys[(keys.index(self.sort_key) + 1) % len(keys)]
        # Text columns read best ascending, numbers descending
        self.descending = self.sort_key not in (SortKey.PID, SortKey.USER, SortKey.NAME)
        self.message = f"Sort: {self.sort_key.value.upper()}"

    def _invert_sort(self, table: ProcessTable) -> None:
        self.descending = not self.descending

    def _start_filter(self, table: ProcessTable) -> None:
        self.filter_editing = True

    def _edit_filter(self, event: InputEvent, table: ProcessTable) -> None:
        if event.key == "enter":
            self.filter_editing = False
        elif event.key == "escape":
            self.filter_editing = False
            table.filter_text = ""
        elif event.key == "backspace":
            table.filter_text = table.filter_text[:-1]
        elif event.character and event.character.isprintable():
            table.filter_text += event.character
        self.process_scroll = 0

    # ── Rendering ──────────────────────────────────────────────────────

    def render(self, history: HistoryBuffer, table: ProcessTable) -> Frame:
        """Compose a frame from the current history, process table and layout."""
        panels = []
        for panel in self.layout.panels:
            if panel.height <= 0:
                continue
            minimized = panel.mode is SizeMode.MINIMIZED
            title = self._title(panel.id, history, table)
            rows = 0 if minimized else max(0, panel.height - BORDER_ROWS)
            highlight = None
            if rows == 0:
                lines: list[str] = []
            elif panel.id is PanelId.PROCESS:
                lines, highlight = self._process_lines(table, rows)
            elif panel.id is PanelId.CPU:
                lines = self._cpu_lines(history, rows)
            elif panel.id is PanelId.SENSORS:
                lines = self._sensor_lines(history, rows)
            else:
                kind = "net" if panel.id is PanelId.NET else "disk"
                lines = self._io_lines(history, kind, rows)
            panels.append(
                PanelFrame(
                    panel=panel.id,
                    title=title,
                    height=panel.height,
                    lines=tuple(fit(line, self.chart_width()) for line in lines[:rows]),
                    focused=panel.id is self.layout.focus,
                    minimized=minimized,
                    highlight=highlight,
                )
            )
        return Frame(width=self.width, height=self.height, panels=tuple(panels), status=self._status(table))

    def _points(self, history: HistoryBuffer, key: StreamKey, columns: int) -> list[float]:
        points = history.window(key, columns * self.zoom, self.offset)
        return [value for _, value in downsample(points, self.zoom)][-columns:]

    def _combined(self, history: HistoryBuffer, kind: str, columns: int) -> list[float]:
        points = combined_window(history, kind, columns * self.zoom, self.offset)
        return [value for _, value in downsample(points, self.zoom)][-columns:]

    def _title(self, panel_id: PanelId, history: HistoryBuffer, table: ProcessTable) -> str:
        snap = self._latest
        if panel_id is PanelId.CPU:
            if snap is None:
                return "CPU / Memory"
            return (
                f"CPU {snap.cpu_total:5.1f}% ({snap.core_count} cores)  "
                f"MEM {format_bytes(snap.memory_used).strip()}/{format_bytes(snap.memory_total).strip()} "
                f"({snap.memory_percent:.0f}%)  Load {snap.load_avg[0]:.2f} {snap.load_avg[1]:.2f} "
                f"{snap.load_avg[2]:.2f}  Up {format_duration(snap.uptime_seconds)}"
            )
        if panel_id is PanelId.NET:
            rx = sum(n.rx_rate for n in snap.networks) if snap else 0.0
            tx = sum(n.tx_rate for n in snap.networks) if snap else 0.0
            return f"Network ↓ {format_rate(rx)}  ↑ {format_rate(tx)}"
        if panel_id is PanelId.DISK:
            read = sum(d.read_rate for d in snap.disks) if snap else 0.0
            write = sum(d.write_rate for d in snap.disks) if snap else 0.0
            return f"Disk R {format_rate(read)}  W {format_rate(write)}"
        if panel_id is PanelId.SENSORS:
            return "Sensors"
        order = "↓" if self.descending else "↑"
        title = f"Processes {len(table)}  sort {self.sort_key.value.upper()}{order}"
        if table.filter_text:
            title += f"  filter '{table.filter_text}'"
        return title

    def _time_axis(self, columns: int) -> str:
        label = f"zoom {self.zoom}x"
        if self.offset:
            label += f"  -{self.offset} samples"
        return label.rjust(columns)

    def _cpu_lines(self, history: HistoryBuffer, rows: int) -> list[str]:
        columns = self.chart_width()
        chart_rows = max(1, rows - 1)
        snap = self._latest
        if columns >= 40:
            left_width = (columns - 3) // 2
            cpu = histogram_rows(self._points(history, StreamKey("cpu", "total"), left_width), left_width, chart_rows, 100.0)
            mem_total = float(snap.memory_total) if snap else 1.0
            right_width = columns - 3 - left_width
            mem = histogram_rows(self._points(history, StreamKey("mem", "used"), right_width), right_width, chart_rows, mem_total)
            lines = side_by_side(cpu, mem, left_width)
        else:
            lines = histogram_rows(self._points(history, StreamKey("cpu", "total"), columns), columns, chart_rows, 100.0)
        if rows > 1:
            cores = snap.cpu_per_core if snap else ()
            lines.append(" ".join(f"{i}:{pct:3.0f}%" for i, pct in enumerate(cores)) or self._time_axis(columns))
        return lines

    def _io_lines(self, history: HistoryBuffer, kind: str, rows: int) -> list[str]:
        columns = self.chart_width()
        chart_rows = max(1, rows - 1)
        first, second = ("net_rx", "net_tx") if kind == "net" else ("disk_read", "disk_write")
        left_width = (columns - 3) // 2
        right_width = columns - 3 - left_width
        left = self._combined(history, first, left_width)
        right = self._combined(history, second, right_width)
        scale = max(left + right + [1.0])
        lines = side_by_side(
            histogram_rows(left, left_width, chart_rows, scale),
            histogram_rows(right, right_width, chart_rows, scale),
            left_width,
        )
        if rows > 1:
            snap = self._latest
            if kind == "net":
                parts = [f"{n.name} ↓{format_rate(n.rx_rate)} ↑{format_rate(n.tx_rate)}" for n in (snap.networks if snap else ())]
            else:
                parts = [
                    f"{d.name} {100.0 * d.used / d.total:.0f}%" if d.total else d.name
                    for d in (snap.disks if snap else ())
                ]
            lines.append(("  ".join(parts) + "  " if parts else "") + f"peak {format_rate(scale)}")
        return lines

    def _sensor_lines(self, history: HistoryBuffer, rows: int) -> list[str]:
        columns = self.chart_width()
        lines = []
        for key in history.keys("sensor")[:rows]:
            label = fit(key.instance, 20)
            current = history.latest(key) or 0.0
            spark_width = max(0, columns - 20 - 10)
            spark = histogram_rows(self._points(history, key, spark_width), spark_width, 1, 110.0)
            lines.append(f"{label} {current:5.1f}°C {spark[0] if spark else ''}")
        if not lines:
            lines.append("No sensors reported")
        return lines

    def _process_lines(self, table: ProcessTable, rows: int) -> tuple[list[str], int | None]:
        if self.focused_pid is not None:
            proc = table.get(self.focused_pid)
            if proc is not None:
                return self._process_detail(proc), None
        header = f"{'PID':>7} {'USER':<10} {'S':<3} {'CPU%':>6} {'MEM%':>5} {'RES':>7} {'READ/s':>10} {'WRITE/s':>10} {'THR':>4} COMMAND"
        view = self._view(table)
        visible = max(0, rows - 1)
        top = max(0, min(self.process_scroll, max(0, len(view) - visible)))
        total_mem = self._latest.memory_total if self._latest else 0
        lines = [header]
        highlight = None
        for index, proc in enumerate(view[top : top + visible]):
            mem_pct = 100.0 * proc.memory_rss / total_mem if total_mem else 0.0
            lines.append(
                f"{proc.pid:>7} {proc.username[:10]:<10} {proc.status[:3]:<3} {proc.cpu_percent:6.1f} "
                f"{mem_pct:5.1f} {format_bytes(proc.memory_rss):>7} {format_rate(proc.read_rate):>10} "
                f"{format_rate(proc.write_rate):>10} {proc.threads:>4} {proc.command or proc.name}"
            )
            if proc.pid == table.selected_pid:
                highlight = index + 1
        return lines, highlight

    def _process_detail(self, proc: ProcessRecord) -> list[str]:
        return [
            f"{proc.name} ({proc.pid})  parent {proc.ppid}  user {proc.username}  status {proc.status}",
            f"CPU {proc.cpu_percent:6.1f}%   RES {format_bytes(proc.memory_rss).strip()}   "
            f"threads {proc.threads}   nice {proc.nice}",
            f"Disk read {format_rate(proc.read_rate)}   write {format_rate(proc.write_rate)}   "
            f"cpu time {format_duration(proc.cpu_time)}",
            f"Command: {proc.command}",
            "",
            FOCUS_HELP,
        ]

    def _status(self, table: ProcessTable) -> str:
        if self.filter_editing:
            return f"/{table.filter_text}█"
        if self.message:
            return self.message
        clock = time.strftime("%H:%M:%S", time.localtime(self._latest.timestamp)) if self._latest else "--:--:--"
        history = "" if self.history_enabled else "  [history off]"
        return f"{clock}  {HELP}{history}"
