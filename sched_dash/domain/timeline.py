"""Derived timeline (Gantt) records."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .events import IDLE_PID, Pid


@dataclass(slots=True)
class Segment:
    """Contiguous tick interval ``[start_tick, end_tick)`` owned by one pid or idle."""

    pid: Pid
    start_tick: int
    end_tick: int
    priority: int | None = None
    remaining_at_end: int | None = None

    @property
    def duration(self) -> int:
        return max(0, self.end_tick - self.start_tick)

    @property
    def is_idle(self) -> bool:
        return self.pid == IDLE_PID

    def contains(self, tick: int) -> bool:
        return self.start_tick <= tick < self.end_tick

    def to_dict(self) -> dict[str, Any]:
        return {
            "pid": self.pid,
            "start": self.start_tick,
            "end": self.end_tick,
            "priority": self.priority,
            "remaining": self.remaining_at_end,
        }


@dataclass(frozen=True, slots=True)
class TimelineStats:
    total_time: int = 0
    idle_time: int = 0
    cpu_utilization: float = 0.0
    context_switches: int = 0

    @property
    def cpu_utilization_percent(self) -> float:
        return self.cpu_utilization * 100.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_time": self.total_time,
            "idle_time": self.idle_time,
            "cpu_utilization": self.cpu_utilization,
            "cpu_utilization_percent": self.cpu_utilization_percent,
            "context_switches": self.context_switches,
        }


@dataclass(frozen=True, slots=True)
class Timeline:
    """Result of one timeline reconstruction."""

    segments: tuple[Segment, ...] = ()
    stats: TimelineStats = field(default_factory=TimelineStats)
    running_pid: Pid | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "segments": [segment.to_dict() for segment in self.segments],
            "stats": self.stats.to_dict(),
            "running_pid": self.running_pid,
        }
