"""Tests for PanelLayout."""

import random

import pytest

from zenith.layout import PanelId, PanelLayout, SizeMode

HEIGHTS = {
    PanelId.CPU: 10,
    PanelId.NET: 8,
    PanelId.DISK: 8,
    PanelId.SENSORS: 6,
    PanelId.PROCESS: 10,
}


@pytest.fixture
def layout():
    return PanelLayout(dict(HEIGHTS))


class TestFocus:
    """Tests for focus handling."""

    def test_focus_starts_on_first_enabled_panel(self):
        layout = PanelLayout({PanelId.CPU: 0, PanelId.NET: 5, PanelId.PROCESS: 5})
        assert layout.focus is PanelId.NET

    def test_cycle_skips_disabled_panels_and_wraps(self):
        layout = PanelLayout({PanelId.CPU: 5, PanelId.DISK: 5, PanelId.PROCESS: 5})

        assert layout.cycle_focus() is PanelId.DISK
        assert layout.cycle_focus() is PanelId.PROCESS
        assert layout.cycle_focus() is PanelId.CPU
        assert layout.cycle_focus(-1) is PanelId.PROCESS

    def test_set_focus_rejects_disabled_panel(self):
        layout = PanelLayout({PanelId.CPU: 5})
        with pytest.raises(ValueError):
            layout.set_focus(PanelId.SENSORS)

    def test_everything_disabled_keeps_process_table(self):
        layout = PanelLayout({})
        assert layout.enabled_ids() == [PanelId.PROCESS]
        assert layout.allocate(20)[PanelId.PROCESS] == 20


class TestModes:
    """Tests for expand and minimize transitions."""

    def test_expand_takes_the_whole_height(self, layout):
        layout.allocate(40)

        assert layout.expand(PanelId.NET) is SizeMode.EXPANDED

        heights = layout.heights()
        assert heights[PanelId.NET] == 40
        assert sum(heights.values()) == 40

    def test_only_one_panel_expanded(self, layout):
        layout.expand(PanelId.CPU)
        layout.expand(PanelId.DISK)

        assert layout.expanded is PanelId.DISK
        assert layout.panel(PanelId.CPU).mode is SizeMode.NORMAL

    def test_expand_toggles_back(self, layout):
        layout.expand(PanelId.CPU)
        assert layout.expand(PanelId.CPU) is SizeMode.NORMAL
        assert layout.expanded is None

    def test_minimize_toggles_and_leaves_expansion(self, layout):
        assert layout.minimize(PanelId.CPU) is SizeMode.MINIMIZED
        assert layout.minimize(PanelId.CPU) is SizeMode.NORMAL

        layout.expand(PanelId.CPU)
        assert layout.minimize(PanelId.CPU) is SizeMode.NORMAL
        assert layout.expanded is None

    def test_minimized_panel_gets_one_row(self, layout):
        layout.minimize(PanelId.SENSORS)

        heights = layout.allocate(60)

        assert heights[PanelId.SENSORS] == 1
        assert sum(heights.values()) == 60


class TestAllocate:
    """Tests for height allocation."""

    @pytest.mark.parametrize("height", [0, 1, 7, 20, 41, 42, 43, 100])
    def test_never_exceeds_terminal(self, layout, height):
        assert sum(layout.allocate(height).values()) <= height

    def test_spare_rows_are_all_used(self, layout):
        assert sum(layout.allocate(100).values()) == 100

    def test_spare_rows_are_proportional(self, layout):
        heights = layout.allocate(84)

        assert heights == {
            PanelId.CPU: 20,
            PanelId.NET: 16,
            PanelId.DISK: 16,
            PanelId.SENSORS: 12,
            PanelId.PROCESS: 20,
        }

    def test_short_terminal_keeps_process_table_last(self, layout):
        heights = layout.allocate(15)

        assert heights[PanelId.PROCESS] == 10
        assert heights[PanelId.CPU] == 5
        assert heights[PanelId.SENSORS] == 0
        assert heights[PanelId.DISK] == 0

    def test_disabled_panel_gets_nothing(self):
        layout = PanelLayout({PanelId.CPU: 4, PanelId.PROCESS: 4})

        heights = layout.allocate(30)

        assert heights[PanelId.NET] == 0
        assert heights[PanelId.CPU] + heights[PanelId.PROCESS] == 30


@pytest.mark.parametrize("seed", range(20))
def test_mixed_operations_keep_invariants(seed):
    """Test random focus/expand/minimize/resize sequences never break the layout."""
    rng = random.Random(seed)
    heights = {panel_id: rng.choice([0, 0, 1, 3, 8, 12]) for panel_id in PanelId}
    layout = PanelLayout(heights)
    terminal = rng.randint(0, 80)
    layout.allocate(terminal)

    for _ in range(60):
        op = rng.choice(["tab", "expand", "minimize", "resize"])
        if op == "tab":
            layout.cycle_focus(rng.choice([1, -1]))
        elif op == "expand":
            layout.expand(layout.focus)
        elif op == "minimize":
            layout.minimize(layout.focus)
        else:
            terminal = rng.randint(0, 80)
            layout.allocate(terminal)

        allocated = layout.heights()
        assert sum(allocated.values()) <= terminal
        assert sum(1 for p in layout.panels if p.mode is SizeMode.EXPANDED) <= 1
        assert layout.focus in layout.enabled_ids()
        for panel in layout.panels:
            if not panel.enabled:
                assert allocated[panel.id] == 0
