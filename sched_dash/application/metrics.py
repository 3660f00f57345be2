"""Per-process waiting, turnaround and response times from an event prefix."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from sched_dash.application.timeline import ordered_by_sequence
from sched_dash.domain.events import DISPATCH_KINDS, PROCESS_KINDS, EventKind, Pid, SchedulerEvent
from sched_dash.domain.metrics import MetricAverages, MetricsReport, ProcessMetrics

_ARRIVAL_KINDS = frozenset({EventKind.JOB_ARRIVED.value, EventKind.JOB_STARTED.value})


@dataclass(slots=True)
class _ProcessState:
    arrival: int | None = None
    start_time: int | None = None
    finish_time: int | None = None
    burst: int = 0
    open_since: int | None = None

    def offer_arrival(self, value: int | None, *, earliest_wins: bool) -> None:
        if value is None:
            return
        if self.arrival is None or (earliest_wins and value < self.arrival):
            self.arrival = value

    def close(self, tick: int) -> None:
        if self.open_since is None:
            return
        self.burst += max(0, tick - self.open_since)
        self.open_since = None


class _MetricsFold:
    __slots__ = ("processes", "now")

    def __init__(self) -> None:
        self.processes: dict[Pid, _ProcessState] = {}
        self.now = 0

    def apply(self, event: SchedulerEvent) -> None:
        if event.kind not in PROCESS_KINDS:
            return
        if event.tick is not None:
            self.now = max(self.now, event.tick)
        tick = event.tick if event.tick is not None else self.now
        kind = event.kind

        if event.is_idle:
            # Switching the CPU to idle ends every running interval.
            if kind in DISPATCH_KINDS:
                self._close_all(tick)
            return

        state = self.processes.setdefault(event.pid, _ProcessState())  # type: ignore[arg-type]
        arrival = event.arrival if event.arrival is not None else event.tick
        state.offer_arrival(arrival, earliest_wins=kind in _ARRIVAL_KINDS)

        if kind in DISPATCH_KINDS:
            self._close_all(tick, keep=event.pid)
            if state.open_since is None:
                state.open_since = tick
            if state.start_time is None:
                state.start_time = tick
        elif kind == EventKind.JOB_PREEMPTED.value:
            state.close(tick)
        elif kind == EventKind.JOB_FINISHED.value:
            state.close(tick)
            state.finish_time = tick

    def report(self) -> MetricsReport:
        self._close_all(self.now)
        processes = {
            pid: _derive(pid, state, self.now)
            for pid, state in self.processes.items()
        }
        finished = [metrics for metrics in processes.values() if metrics.is_finished]
        return MetricsReport(
            processes=processes,
            averages_all=_averages(list(processes.values())),
            averages_finished=_averages(finished),
            now=self.now,
        )

    def _close_all(self, tick: int, keep: Pid | None = None) -> None:
        for pid, state in self.processes.items():
            if pid != keep:
                state.close(tick)


def reconstruct_metrics(events: Iterable[SchedulerEvent]) -> MetricsReport:
    """Rebuild per-process metrics and averages for an event prefix.

    Processes still running at the end of the prefix have their interval
    closed at the last observed tick without a finish time.
    """
    fold = _MetricsFold()
    for event in ordered_by_sequence(events):
        fold.apply(event)
    return fold.report()


def _derive(pid: Pid, state: _ProcessState, now: int) -> ProcessMetrics:
    arrival = state.arrival if state.arrival is not None else 0
    end = state.finish_time if state.finish_time is not None else now
    turnaround = end - arrival
    return ProcessMetrics(
        pid=pid,
        arrival=arrival,
        start_time=state.start_time,
        finish_time=state.finish_time,
        burst_accumulated=state.burst,
        turnaround=turnaround,
        waiting=turnaround - state.burst,
        response=state.start_time - arrival if state.start_time is not None else None,
    )


def _averages(processes: list[ProcessMetrics]) -> MetricAverages:
    if not processes:
        return MetricAverages()
    responses = [metrics.response for metrics in processes if metrics.response is not None]
    count = len(processes)
    return MetricAverages(
        waiting=sum(metrics.waiting for metrics in processes) / count,
        turnaround=sum(metrics.turnaround for metrics in processes) / count,
        response=sum(responses) / len(responses) if responses else 0.0,
        process_count=count,
        responded_count=len(responses),
    )
