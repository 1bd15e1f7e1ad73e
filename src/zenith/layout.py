"""Panel layout: sizing modes, focus and height allocation."""

from dataclasses import dataclass
from enum import Enum


class PanelId(Enum):
    """Dashboard regions, in screen order."""

    CPU = "cpu"
    NET = "net"
    DISK = "disk"
    SENSORS = "sensors"
    PROCESS = "process"


# When the terminal is shorter than the sum of minimums, the panels at the end of
# this list lose rows first and the process table keeps its rows longest.
KEEP_PRIORITY = (PanelId.PROCESS, PanelId.CPU, PanelId.NET, PanelId.DISK, PanelId.SENSORS)

MINIMIZED_HEIGHT = 1


class SizeMode(Enum):
    NORMAL = "normal"
    EXPANDED = "expanded"
    MINIMIZED = "minimized"


@dataclass(slots=True)
class Panel:
    id: PanelId
    min_height: int
    mode: SizeMode = SizeMode.NORMAL
    height: int = 0

    @property
    def enabled(self) -> bool:
        """A panel configured with height 0 is never shown."""
        return self.min_height > 0


class PanelLayout:
    """
    Ordered panels with exactly one focused panel.

    At most one panel is EXPANDED; expanding another one puts the previous one
    back to NORMAL. Allocated heights never add up to more than the terminal.
    """

    def __init__(self, heights: dict[PanelId, int]) -> None:
        self.panels = [Panel(pid, max(0, heights.get(pid, 0))) for pid in PanelId]
        if not any(p.enabled for p in self.panels):
            # Nothing configured: fall back to the process table alone
            self.panel(PanelId.PROCESS).min_height = 1
        self.focus = self.enabled_ids()[0]
        self.terminal_height = 0

    def panel(self, panel_id: PanelId) -> Panel:
        for panel in self.panels:
            if panel.id is panel_id:
                return panel
        raise KeyError(panel_id)

    def enabled_ids(self) -> list[PanelId]:
        return [p.id for p in self.panels if p.enabled]

    @property
    def expanded(self) -> PanelId | None:
        for panel in self.panels:
            if panel.mode is SizeMode.EXPANDED:
                return panel.id
        return None

    def cycle_focus(self, step: int = 1) -> PanelId:
        ids = self.enabled_ids()
        index = ids.index(self.focus) if self.focus in ids else 0
        self.focus = ids[(index + step) % len(ids)]
        return self.focus

    def set_focus(self, panel_id: PanelId) -> None:
        if panel_id not in self.enabled_ids():
            raise ValueError(f"panel {panel_id.value} is disabled")
        self.focus = panel_id

    def expand(self, panel_id: PanelId) -> SizeMode:
        """Toggle expansion of a panel; returns its new mode."""
        target = self.panel(panel_id)
        if target.mode is SizeMode.EXPANDED:
            target.mode = SizeMode.NORMAL
        else:
            for panel in self.panels:
                if panel.mode is SizeMode.EXPANDED:
                    panel.mode = SizeMode.NORMAL
            target.mode = SizeMode.EXPANDED
        self.allocate(self.terminal_height)
        return target.mode

    def minimize(self, panel_id: PanelId) -> SizeMode:
        """Leave expansion, or toggle the minimized state; returns the new mode."""
        target = self.panel(panel_id)
        if target.mode is SizeMode.MINIMIZED or target.mode is SizeMode.EXPANDED:
            target.mode = SizeMode.NORMAL
        else:
            target.mode = SizeMode.MINIMIZED
        self.allocate(self.terminal_height)
        return target.mode

    def allocate(self, terminal_height: int) -> dict[PanelId, int]:
        """Distribute ``terminal_height`` rows over the panels and return the result."""
        self.terminal_height = max(0, terminal_height)
        for panel in self.panels:
            panel.height = 0

        expanded = self.expanded
        if expanded is not None:
            self.panel(expanded).height = self.terminal_height
            return self.heights()

        enabled = [p for p in self.panels if p.enabled]
        demand = {
            p.id: MINIMIZED_HEIGHT if p.mode is SizeMode.MINIMIZED else p.min_height for p in enabled
        }
        total = sum(demand.values())

        if total >= self.terminal_height:
            remaining = self.terminal_height
            for panel_id in KEEP_PRIORITY:
                if panel_id not in demand:
                    continue
                grant = min(demand[panel_id], remaining)
                self.panel(panel_id).height = grant
                remaining -= grant
            return self.heights()

        for panel in enabled:
            panel.height = demand[panel.id]
        growable = [p for p in enabled if p.mode is SizeMode.NORMAL]
        spare = self.terminal_height - total
        weight = sum(p.min_height for p in growable)
        if growable and weight:
            shares = [(spare * p.min_height) // weight for p in growable]
            leftover = spare - sum(shares)
            # Largest remainders first, process table wins ties
            order = sorted(
                range(len(growable)),
                key=lambda i: (
                    -((spare * growable[i].min_height) % weight),
                    KEEP_PRIORITY.index(growable[i].id),
                ),
            )
            for i in order[:leftover]:
                shares[i] += 1
            for panel, share in zip(growable, shares):
                panel.height += share
        return self.heights()

    def heights(self) -> dict[PanelId, int]:
        return {p.id: p.height for p in self.panels}
