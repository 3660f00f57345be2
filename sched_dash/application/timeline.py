"""Fold an ordered event sequence into CPU execution segments (Gantt data)."""

from __future__ import annotations

from dataclasses import replace
from typing import Iterable, Sequence

from sched_dash.domain.events import (
    DISPATCH_KINDS,
    IDLE_PID,
    PROCESS_KINDS,
    RELEASE_KINDS,
    EventKind,
    Pid,
    SchedulerEvent,
)
from sched_dash.domain.timeline import Segment, Timeline, TimelineStats


def ordered_by_sequence(events: Iterable[SchedulerEvent]) -> list[SchedulerEvent]:
    """Stable sort on ``sequence``; unsequenced events keep their input order."""
    return sorted(events, key=lambda event: event.sequence)


class _TimelineFold:
    """Single-CPU fold state.

    ``idle_since`` is the tick at which the CPU last became free; the gap up
    to the next dispatch is emitted as an idle segment.
    """

    __slots__ = ("segments", "current", "idle_since", "last_tick")

    def __init__(self) -> None:
        self.segments: list[Segment] = []
        self.current: Segment | None = None
        self.idle_since: int | None = 0
        self.last_tick = 0

    def apply(self, event: SchedulerEvent) -> None:
        if event.kind not in PROCESS_KINDS:
            return
        if event.tick is not None:
            self.last_tick = max(self.last_tick, event.tick)

        kind = event.kind
        if kind in DISPATCH_KINDS:
            tick = event.tick if event.tick is not None else self.last_tick
            self._close(tick)
            if event.is_idle:
                self.idle_since = self._floor(tick)
            else:
                self._open(event, tick)
        elif kind in RELEASE_KINDS:
            if self.current is None:
                return
            tick = event.tick if event.tick is not None else self.current.end_tick
            self._close(tick, remaining=event.remaining)
        elif kind == EventKind.GANTT_SLICE.value:
            if self.current is not None and event.tick is not None:
                self.current.end_tick = max(self.current.end_tick, event.tick + 1)
                if event.remaining is not None:
                    self.current.remaining_at_end = event.remaining
        elif kind == EventKind.TICK.value:
            if self.current is not None and event.tick is not None:
                self.current.end_tick = max(self.current.end_tick, event.tick)

    def finish(self) -> tuple[list[Segment], Pid | None]:
        running_pid: Pid | None = None
        if self.current is not None:
            running_pid = self.current.pid
            self._close(self.last_tick)
        elif self.idle_since is not None and self.segments:
            self._emit(Segment(pid=IDLE_PID, start_tick=self.idle_since, end_tick=self.last_tick))
        return merge_segments(self.segments), running_pid

    def _open(self, event: SchedulerEvent, tick: int) -> None:
        if self.idle_since is not None and tick > self.idle_since:
            self._emit(Segment(pid=IDLE_PID, start_tick=self.idle_since, end_tick=tick))
        self.idle_since = None
        self.current = Segment(
            pid=event.pid,  # type: ignore[arg-type]
            start_tick=tick,
            end_tick=tick,
            priority=event.priority,
            remaining_at_end=event.remaining,
        )

    def _close(self, tick: int, *, remaining: int | None = None) -> None:
        segment = self.current
        if segment is None:
            return
        segment.end_tick = max(segment.end_tick, tick)
        if remaining is not None:
            segment.remaining_at_end = remaining
        self.current = None
        self._emit(segment)
        self.idle_since = self._floor(segment.end_tick)

    def _emit(self, segment: Segment) -> None:
        # One CPU: a segment may not start before the previous one ended.
        start = self._floor(segment.start_tick)
        if segment.end_tick > start:
            self.segments.append(replace(segment, start_tick=start))

    def _floor(self, tick: int) -> int:
        if not self.segments:
            return tick
        return max(tick, self.segments[-1].end_tick)


def reconstruct_timeline(events: Iterable[SchedulerEvent]) -> Timeline:
    """Rebuild the Gantt timeline for an event prefix.

    Pure function of its input: the same prefix always yields the same
    segments, whether it came from a live log or a stored replay.
    """
    fold = _TimelineFold()
    for event in ordered_by_sequence(events):
        fold.apply(event)
    segments, running_pid = fold.finish()
    return Timeline(
        segments=tuple(segments),
        stats=timeline_stats(segments),
        running_pid=running_pid,
    )


def merge_segments(segments: Sequence[Segment]) -> list[Segment]:
    """Merge neighbours that share a pid and touch at a boundary."""
    merged: list[Segment] = []
    for segment in segments:
        previous = merged[-1] if merged else None
        if (
            previous is not None
            and previous.pid == segment.pid
            and previous.end_tick == segment.start_tick
        ):
            previous.end_tick = segment.end_tick
            if segment.remaining_at_end is not None:
                previous.remaining_at_end = segment.remaining_at_end
            continue
        merged.append(replace(segment))
    return merged


def timeline_stats(segments: Sequence[Segment]) -> TimelineStats:
    if not segments:
        return TimelineStats()

    total_time = max(segment.end_tick for segment in segments)
    idle_time = sum(segment.duration for segment in segments if segment.is_idle)
    utilization = (total_time - idle_time) / total_time if total_time > 0 else 0.0
    return TimelineStats(
        total_time=total_time,
        idle_time=idle_time,
        cpu_utilization=utilization,
        context_switches=max(0, len(segments) - 1),
    )


def segment_at(segments: Sequence[Segment], tick: int) -> Segment | None:
    for segment in segments:
        if segment.contains(tick):
            return segment
    return None


def segments_in_range(segments: Sequence[Segment], start_tick: int, end_tick: int) -> list[Segment]:
    return [
        segment
        for segment in segments
        if segment.end_tick > start_tick and segment.start_tick < end_tick
    ]


def group_by_pid(segments: Sequence[Segment]) -> dict[Pid, list[Segment]]:
    groups: dict[Pid, list[Segment]] = {}
    for segment in segments:
        groups.setdefault(segment.pid, []).append(segment)
    return groups
