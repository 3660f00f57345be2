"""Fold an ordered event sequence into the CPU queue it describes."""

from __future__ import annotations

from typing import Iterable

from sched_dash.application.timeline import ordered_by_sequence
from sched_dash.domain.events import DISPATCH_KINDS, PROCESS_KINDS, EventKind, Pid, SchedulerEvent
from sched_dash.domain.queue import QueueState


class _QueueFold:
    """Single-CPU queue bookkeeping.

    Dicts stand in for ordered sets: ``ready`` keeps FIFO order and a
    preempted process rejoins at the back.
    """

    __slots__ = ("running", "ready", "arrived", "completed")

    def __init__(self) -> None:
        self.running: Pid | None = None
        self.ready: dict[Pid, None] = {}
        self.arrived: dict[Pid, None] = {}
        self.completed: dict[Pid, None] = {}

    def apply(self, event: SchedulerEvent) -> None:
        if event.kind not in PROCESS_KINDS:
            return

        kind = event.kind
        if kind in DISPATCH_KINDS:
            self._displace(keep=None if event.is_idle else event.pid)
            if not event.is_idle:
                self._arrive(event.pid)
                self.ready.pop(event.pid, None)
                self.running = event.pid
            return

        if event.is_idle:
            return
        pid = event.pid
        if kind == EventKind.JOB_PREEMPTED.value:
            self._arrive(pid)
            if self.running == pid:
                self.running = None
            if pid not in self.completed:
                self.ready.pop(pid, None)
                self.ready[pid] = None
        elif kind == EventKind.JOB_FINISHED.value:
            self._arrive(pid)
            if self.running == pid:
                self.running = None
            self.completed[pid] = None
            self.ready.pop(pid, None)
        else:
            self._arrive(pid)
            if pid != self.running and pid not in self.completed:
                self.ready.setdefault(pid, None)

    def finish(self, known_pids: Iterable[Pid]) -> QueueState:
        pending = tuple(dict.fromkeys(pid for pid in known_pids if pid not in self.arrived))
        return QueueState(
            running_pid=self.running,
            ready=tuple(self.ready),
            arrived=tuple(self.arrived),
            completed=tuple(self.completed),
            pending=pending,
        )

    def _arrive(self, pid: Pid) -> None:
        self.arrived.setdefault(pid, None)

    def _displace(self, keep: Pid | None) -> None:
        # One CPU: dispatching anything else sends the running process back to ready.
        running = self.running
        if running is None or running == keep:
            return
        self.running = None
        if running not in self.completed:
            self.ready.setdefault(running, None)


def known_pids_of(events: Iterable[SchedulerEvent]) -> list[Pid]:
    """Every process pid mentioned by ``events``, in first-seen sequence order."""
    seen: dict[Pid, None] = {}
    for event in ordered_by_sequence(events):
        if event.kind in PROCESS_KINDS and not event.is_idle:
            seen.setdefault(event.pid, None)
    return list(seen)


def reconstruct_queue_state(
    events: Iterable[SchedulerEvent],
    known_pids: Iterable[Pid] | None = None,
) -> QueueState:
    """Running pid, ready queue, arrivals and completions after ``events``.

    ``known_pids`` lists every pid of the run, so a prefix can report the
    processes that have not arrived yet as ``pending``. Without it nothing
    is pending. Kinds outside the process set are ignored.
    """
    fold = _QueueFold()
    for event in ordered_by_sequence(events):
        fold.apply(event)
    return fold.finish(known_pids or ())
