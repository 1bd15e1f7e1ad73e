"""Fault types raised inside zenith.

Per-tick faults (sample, persistence, input decode) are caught by the event
loop and never end a session. Render faults and lock contention are surfaced
to the caller so the entry point can pick an exit code.
"""

from pathlib import Path


class ZenithError(Exception):
    """Base class for every zenith fault."""


class ConfigError(ZenithError):
    """Startup configuration failed validation."""

    def __init__(self, problems: list[str]) -> None:
        self.problems = problems
        super().__init__("; ".join(problems))


class SampleFault(ZenithError):
    """The telemetry provider returned incomplete data or timed out."""


class PersistenceFault(ZenithError):
    """Writing to or opening the history store failed."""


class LockHeld(ZenithError):
    """Another instance already owns the history store."""

    def __init__(self, lock_path: Path, owner_pid: int | None = None) -> None:
        self.lock_path = lock_path
        self.owner_pid = owner_pid
        owner = f" (pid {owner_pid})" if owner_pid is not None else ""
        super().__init__(
            f"{lock_path} exists{owner} and history recording is on. "
            "Is another copy of zenith open? If not remove the path and open zenith again."
        )


class RenderFault(ZenithError):
    """The terminal backend could not take a frame."""


class InputDecodeFault(ZenithError):
    """An input event could not be understood."""
