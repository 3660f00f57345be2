"""Append-only, per-run ordered event log."""

from __future__ import annotations

from bisect import bisect_left
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from threading import Lock, RLock
from typing import Callable

from sched_dash.application.normalizer import normalize
from sched_dash.domain.events import SchedulerEvent
from sched_dash.ports.run_store import RunStore

AppendListener = Callable[[SchedulerEvent], None]


class RunSealedError(RuntimeError):
    """Raised when appending to a run whose log is already immutable."""


@dataclass(slots=True)
class _RunEntries:
    events: list[SchedulerEvent] = field(default_factory=list)
    sealed: bool = False
    lock: Lock = field(default_factory=Lock)


class RunLog:
    """Single source of truth for every run's canonical events.

    Events are kept in ``sequence`` order. A run reloaded from storage may
    have gaps where corrupt records were skipped, so reads select by
    sequence rather than by position. Readers get a snapshot copy and may
    run concurrently with the single writer of a run.
    """

    __slots__ = ("_runs", "_listeners", "_store", "_lock")

    def __init__(self, store: RunStore | None = None) -> None:
        self._runs: dict[str, _RunEntries] = {}
        self._listeners: list[AppendListener] = []
        self._store = store
        self._lock = RLock()

    def append(self, run_id: str, raw: object) -> int:
        """Normalize ``raw``, assign the next sequence and notify listeners."""
        entries = self._entries(run_id)
        with entries.lock:
            if entries.sealed:
                raise RunSealedError(f"Run {run_id!r} is sealed")

            event = replace(
                normalize(raw),
                run_id=run_id,
                sequence=entries.events[-1].sequence + 1 if entries.events else 0,
                received_at=datetime.now(timezone.utc),
            )
            entries.events.append(event)
            if self._store is not None:
                self._store.append_event(event)

            # Listeners must not block: they run on the writer's path.
            for listener in self._snapshot_listeners():
                listener(event)
            return event.sequence

    def read(self, run_id: str, from_sequence: int = 0) -> list[SchedulerEvent]:
        entries = self._lookup(run_id)
        if entries is None:
            return []
        with entries.lock:
            start = bisect_left(entries.events, from_sequence, key=lambda event: event.sequence)
            return entries.events[start:]

    def count(self, run_id: str) -> int:
        entries = self._lookup(run_id)
        if entries is None:
            return 0
        with entries.lock:
            return len(entries.events)

    def seal(self, run_id: str) -> None:
        entries = self._entries(run_id)
        with entries.lock:
            entries.sealed = True

    def is_sealed(self, run_id: str) -> bool:
        entries = self._lookup(run_id)
        if entries is None:
            return False
        with entries.lock:
            return entries.sealed

    def run_ids(self) -> list[str]:
        with self._lock:
            return list(self._runs)

    def add_listener(self, listener: AppendListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: AppendListener) -> None:
        with self._lock:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

    def _snapshot_listeners(self) -> tuple[AppendListener, ...]:
        with self._lock:
            return tuple(self._listeners)

    def _lookup(self, run_id: str) -> _RunEntries | None:
        """Known or stored run; unknown ids are not registered."""
        with self._lock:
            entries = self._runs.get(run_id)
            if entries is not None or self._store is None:
                return entries
            stored = self._store.load_events(run_id)
            if not stored:
                return None
            # Runs loaded from storage belong to a previous session.
            entries = _RunEntries(events=stored, sealed=True)
            self._runs[run_id] = entries
            return entries

    def _entries(self, run_id: str) -> _RunEntries:
        with self._lock:
            entries = self._lookup(run_id)
            if entries is None:
                entries = _RunEntries()
                self._runs[run_id] = entries
            return entries
