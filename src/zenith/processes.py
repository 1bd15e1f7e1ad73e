"""Process table reconciliation, sorting and selection for zenith."""

import dataclasses
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum

import psutil
import structlog

from zenith.models import ProcessRecord

log = structlog.get_logger()


class SortKey(Enum):
    """Sort keys for the process table."""

    CPU = "cpu"
    MEM = "mem"
    PID = "pid"
    USER = "user"
    NAME = "name"
    READ = "read"
    WRITE = "write"


SORT_FUNCS = {
    SortKey.CPU: lambda p: p.cpu_percent,
    SortKey.MEM: lambda p: p.memory_rss,
    SortKey.PID: lambda p: p.pid,
    SortKey.USER: lambda p: p.username.lower(),
    SortKey.NAME: lambda p: p.name.lower(),
    SortKey.READ: lambda p: p.read_rate,
    SortKey.WRITE: lambda p: p.write_rate,
}


class SignalAction(Enum):
    """What can be done to the focused process."""

    TERMINATE = "terminate"
    KILL = "kill"
    SUSPEND = "suspend"
    RESUME = "resume"


@dataclass(slots=True)
class ProcessDiff:
    """Outcome of one reconciliation, as pid sets."""

    added: set[int] = field(default_factory=set)
    removed: set[int] = field(default_factory=set)
    updated: set[int] = field(default_factory=set)


class ProcessTable:
    """
    The current process snapshot, with per-tick rates derived from counters.

    A pid that disappears for one tick is dead; if the OS hands the same pid
    out again it comes back as a new process with no carried-over history.
    """

    def __init__(self, core_count: int = 1) -> None:
        self.core_count = max(1, core_count)
        self._records: dict[int, ProcessRecord] = {}
        self._timestamp: float | None = None
        self._selected: int | None = None
        self.filter_text = ""

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, pid: object) -> bool:
        return pid in self._records

    @property
    def timestamp(self) -> float | None:
        return self._timestamp

    def get(self, pid: int) -> ProcessRecord | None:
        return self._records.get(pid)

    def reconcile(self, processes: Iterable[ProcessRecord], timestamp: float) -> ProcessDiff:
        """Replace the table with a new snapshot's processes and derive their rates."""
        previous = self._records
        elapsed = None
        if self._timestamp is not None and timestamp > self._timestamp:
            elapsed = timestamp - self._timestamp
        cpu_ceiling = 100.0 * self.core_count

        diff = ProcessDiff()
        records: dict[int, ProcessRecord] = {}
        for proc in processes:
            before = previous.get(proc.pid)
            if before is None or elapsed is None:
                if before is None:
                    diff.added.add(proc.pid)
                else:
                    diff.updated.add(proc.pid)
                records[proc.pid] = dataclasses.replace(
                    proc, cpu_percent=0.0, read_rate=0.0, write_rate=0.0
                )
                continue
            diff.updated.add(proc.pid)
            cpu = 100.0 * (proc.cpu_time - before.cpu_time) / elapsed
            records[proc.pid] = dataclasses.replace(
                proc,
                cpu_percent=min(cpu_ceiling, max(0.0, cpu)),
                read_rate=max(0.0, (proc.read_bytes - before.read_bytes) / elapsed),
                write_rate=max(0.0, (proc.write_bytes - before.write_bytes) / elapsed),
            )

        diff.removed = set(previous) - set(records)
        if self._selected is not None and self._selected in diff.removed:
            log.debug("selected_process_exited", pid=self._selected)
            self._selected = None

        self._records = records
        self._timestamp = timestamp
        return diff

    def _matches(self, proc: ProcessRecord) -> bool:
        needle = self.filter_text.lower()
        if not needle:
            return True
        return (
            needle in proc.name.lower()
            or needle in proc.command.lower()
            or needle in proc.username.lower()
        )

    def sorted_view(self, sort_key: SortKey = SortKey.CPU, descending: bool = True) -> list[ProcessRecord]:
        """
        Processes matching the filter, ordered by ``sort_key``.

        Ties are broken by pid ascending in both directions, so rows do not
        jitter between refreshes.
        """
        by_pid = sorted((p for p in self._records.values() if self._matches(p)), key=lambda p: p.pid)
        key_func = SORT_FUNCS[sort_key]
        # sorted() is stable with reverse=True too, keeping pid order among equals
        return sorted(by_pid, key=key_func, reverse=descending)

    def select(self, pid: int | None) -> bool:
        """Select a pid; returns False (and clears selection) if it is not in the table."""
        if pid is None or pid not in self._records:
            self._selected = None
            return False
        self._selected = pid
        return True

    def selected(self) -> ProcessRecord | None:
        if self._selected is None:
            return None
        return self._records.get(self._selected)

    @property
    def selected_pid(self) -> int | None:
        return self._selected

    def move_selection(self, delta: int, view: list[ProcessRecord]) -> ProcessRecord | None:
        """Move the selection ``delta`` rows within ``view``, clamping at the ends."""
        if not view:
            self._selected = None
            return None
        index = next((i for i, p in enumerate(view) if p.pid == self._selected), None)
        if index is None:
            # Nothing selected yet: step in from the matching end
            index = -1 if delta >= 0 else len(view)
        index = min(len(view) - 1, max(0, index + delta))
        self._selected = view[index].pid
        return view[index]


def send_signal(pid: int, action: SignalAction) -> str:
    """
    Apply ``action`` to a process and describe the outcome.

    Failures are reported in the returned message rather than raised.
    """
    try:
        proc = psutil.Process(pid)
        if action is SignalAction.TERMINATE:
            proc.terminate()
        elif action is SignalAction.KILL:
            proc.kill()
        elif action is SignalAction.SUSPEND:
            proc.suspend()
        else:
            proc.resume()
    except psutil.NoSuchProcess:
        return f"Process {pid} no longer exists"
    except psutil.AccessDenied:
        return f"Permission denied: cannot {action.value} {pid}"
    log.info("process_signalled", pid=pid, action=action.value)
    return f"Sent {action.value} to {pid}"
