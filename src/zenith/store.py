"""On-disk rolling history for zenith.

Layout of the storage directory::

    .zenith.lock            lock marker, holds the owner's pid
    history/<start>.jsonl   append-only segments, one JSON record per line

A segment is never rewritten. Retention drops whole segments once everything
they can contain is older than the retention window.
"""

import json
import os
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import IO

import structlog

from zenith.errors import LockHeld, PersistenceFault
from zenith.history import snapshot_values
from zenith.models import Snapshot, StreamKey

log = structlog.get_logger()

LOCK_NAME = ".zenith.lock"
SEGMENT_DIR = "history"
SEGMENT_SUFFIX = ".jsonl"


@dataclass(slots=True, frozen=True)
class PersistedRecord:
    """The compact on-disk form of a snapshot: every stream value, no processes."""

    timestamp: float
    values: dict[StreamKey, float]

    @classmethod
    def from_snapshot(cls, snapshot: Snapshot) -> "PersistedRecord":
        return cls(timestamp=snapshot.timestamp, values=dict(snapshot_values(snapshot)))

    def to_line(self) -> str:
        payload = {"ts": self.timestamp, "v": {k.encode(): v for k, v in self.values.items()}}
        return json.dumps(payload, separators=(",", ":")) + "\n"

    @classmethod
    def from_line(cls, line: str) -> "PersistedRecord":
        payload = json.loads(line)
        return cls(
            timestamp=float(payload["ts"]),
            values={StreamKey.decode(k): float(v) for k, v in payload["v"].items()},
        )


def read_lock_owner(lock_path: Path) -> int | None:
    """Return the pid written in a lock marker, if it can be read."""
    try:
        return int(lock_path.read_text().strip())
    except (OSError, ValueError):
        return None


class PersistentHistoryStore:
    """
    Single-writer, append-only history log.

    Use ``PersistentHistoryStore.open`` to acquire the lock marker. A stale
    marker left by a crash is treated exactly like a live second instance.
    """

    def __init__(
        self,
        path: Path,
        retention: float,
        segment_seconds: float,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.path = path
        self.lock_path = path / LOCK_NAME
        self.segment_dir = path / SEGMENT_DIR
        self.retention = retention
        self.segment_seconds = segment_seconds
        self._clock = clock
        self._file: IO[str] | None = None
        self._segment_start: float | None = None
        self._last_timestamp: float | None = None
        self._locked = False
        self.disabled = False

    @classmethod
    def open(
        cls,
        path: Path,
        retention: float = 24 * 3600.0,
        segment_seconds: float = 3600.0,
        clock: Callable[[], float] = time.time,
    ) -> "PersistentHistoryStore":
        """
        Acquire the store at ``path``.

        Raises:
            LockHeld: The lock marker already exists.
            PersistenceFault: The directory or lock could not be created.
        """
        store = cls(path, retention, segment_seconds, clock)
        store._acquire()
        try:
            store.segment_dir.mkdir(exist_ok=True)
            store._last_timestamp = store._newest_timestamp()
            store.trim()
        except OSError as exc:
            store.close()
            raise PersistenceFault(f"cannot prepare {store.segment_dir}: {exc}") from exc
        log.info("history_store_opened", path=str(path))
        return store

    def _acquire(self) -> None:
        try:
            self.path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PersistenceFault(f"cannot create {self.path}: {exc}") from exc
        try:
            fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            owner = read_lock_owner(self.lock_path)
            log.warning("history_lock_held", path=str(self.lock_path), owner=owner)
            raise LockHeld(self.lock_path, owner) from None
        except OSError as exc:
            raise PersistenceFault(f"cannot create {self.lock_path}: {exc}") from exc
        try:
            with os.fdopen(fd, "w") as marker:
                marker.write(f"{os.getpid()}\n")
        except OSError as exc:
            # A half-written marker would lock out every later start
            try:
                self.lock_path.unlink()
            except OSError as unlink_exc:
                log.error("history_lock_release_failed", path=str(self.lock_path), error=str(unlink_exc))
            raise PersistenceFault(f"cannot write {self.lock_path}: {exc}") from exc
        self._locked = True

    def __enter__(self) -> "PersistentHistoryStore":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def is_open(self) -> bool:
        return self._locked

    def append(self, record: PersistedRecord) -> None:
        """
        Append one record and flush it.

        Raises:
            PersistenceFault: The write failed; the store disables itself.
        """
        if self.disabled or not self._locked:
            return
        if self._last_timestamp is not None and record.timestamp <= self._last_timestamp:
            log.debug("history_record_out_of_order", timestamp=record.timestamp)
            return
        try:
            handle = self._segment_for(record.timestamp)
            handle.write(record.to_line())
            handle.flush()
        except OSError as exc:
            self.disabled = True
            self._close_segment()
            log.error("history_write_failed", error=str(exc))
            raise PersistenceFault(f"history write failed: {exc}") from exc
        self._last_timestamp = record.timestamp

    def append_snapshot(self, snapshot: Snapshot) -> None:
        self.append(PersistedRecord.from_snapshot(snapshot))

    def _segment_for(self, timestamp: float) -> IO[str]:
        if (
            self._file is not None
            and self._segment_start is not None
            and timestamp < self._segment_start + self.segment_seconds
        ):
            return self._file
        self._close_segment()
        self._segment_start = timestamp
        segment = self.segment_dir / f"{timestamp:.3f}{SEGMENT_SUFFIX}"
        self._file = segment.open("a", encoding="utf-8")
        log.debug("history_segment_started", segment=segment.name)
        self.trim()
        return self._file

    def _close_segment(self) -> None:
        if self._file is not None:
            try:
                self._file.close()
            except OSError as exc:
                log.warning("history_segment_close_failed", error=str(exc))
            self._file = None
            self._segment_start = None

    def segments(self) -> list[tuple[float, Path]]:
        """Existing segments as (start timestamp, path), oldest first."""
        found = []
        try:
            entries = list(self.segment_dir.iterdir())
        except FileNotFoundError:
            return []
        for entry in entries:
            if entry.suffix != SEGMENT_SUFFIX:
                continue
            try:
                found.append((float(entry.stem), entry))
            except ValueError:
                continue
        found.sort()
        return found

    def trim(self) -> int:
        """Delete segments that only hold records older than the retention window."""
        cutoff = self._clock() - self.retention
        segments = self.segments()
        removed = 0
        # A segment ends where the next one starts; the newest one is never trimmed
        for (start, path), (next_start, _) in zip(segments, segments[1:]):
            if next_start > cutoff:
                break
            try:
                path.unlink()
                removed += 1
            except OSError as exc:
                log.warning("history_trim_failed", segment=path.name, error=str(exc))
        if removed:
            log.info("history_trimmed", segments=removed)
        return removed

    def _read_segment(self, path: Path, since: float) -> list[PersistedRecord]:
        records = []
        try:
            with path.open(encoding="utf-8") as handle:
                for line in handle:
                    if not line.strip():
                        continue
                    try:
                        record = PersistedRecord.from_line(line)
                    except (ValueError, KeyError, TypeError, AttributeError):
                        # Torn line from a crash mid-write
                        continue
                    if record.timestamp >= since:
                        records.append(record)
        except OSError as exc:
            log.warning("history_read_failed", segment=path.name, error=str(exc))
        return records

    def load_recent(self, duration: float) -> list[PersistedRecord]:
        """Return the records of the last ``duration`` seconds, oldest first."""
        since = self._clock() - duration
        segments = self.segments()
        records: list[PersistedRecord] = []
        for index, (start, path) in enumerate(segments):
            next_start = segments[index + 1][0] if index + 1 < len(segments) else None
            if next_start is not None and next_start < since:
                continue
            records.extend(self._read_segment(path, since))
        records.sort(key=lambda r: r.timestamp)
        deduped: list[PersistedRecord] = []
        for record in records:
            if deduped and record.timestamp <= deduped[-1].timestamp:
                continue
            deduped.append(record)
        return deduped

    def _newest_timestamp(self) -> float | None:
        segments = self.segments()
        if not segments:
            return None
        records = self._read_segment(segments[-1][1], segments[-1][0])
        return records[-1].timestamp if records else None

    def close(self) -> None:
        """Flush, close the segment and release the lock marker. Safe to call twice."""
        self._close_segment()
        if self._locked:
            try:
                self.lock_path.unlink()
            except FileNotFoundError:
                pass
            except OSError as exc:
                log.error("history_lock_release_failed", path=str(self.lock_path), error=str(exc))
            self._locked = False
            log.info("history_store_closed", path=str(self.path))
