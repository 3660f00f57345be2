"""Per-process performance metrics derived from the event stream."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .events import Pid


@dataclass(frozen=True, slots=True)
class ProcessMetrics:
    """Metrics for one process at the end of an event prefix.

    ``turnaround`` uses ``now`` instead of ``finish_time`` while the process
    is unfinished, so early readings are expected to move.
    """

    pid: Pid
    arrival: int
    start_time: int | None
    finish_time: int | None
    burst_accumulated: int
    turnaround: int
    waiting: int
    response: int | None

    @property
    def is_finished(self) -> bool:
        return self.finish_time is not None

    @property
    def has_started(self) -> bool:
        return self.start_time is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "pid": self.pid,
            "arrival": self.arrival,
            "start_time": self.start_time,
            "finish_time": self.finish_time,
            "burst_accumulated": self.burst_accumulated,
            "turnaround": self.turnaround,
            "waiting": self.waiting,
            "response": self.response,
            "finished": self.is_finished,
        }


@dataclass(frozen=True, slots=True)
class MetricAverages:
    """Arithmetic means; ``response`` only covers processes that have started."""

    waiting: float = 0.0
    turnaround: float = 0.0
    response: float = 0.0
    process_count: int = 0
    responded_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "waiting": self.waiting,
            "turnaround": self.turnaround,
            "response": self.response,
            "process_count": self.process_count,
            "responded_count": self.responded_count,
        }


@dataclass(frozen=True, slots=True)
class MetricsReport:
    processes: dict[Pid, ProcessMetrics] = field(default_factory=dict)
    averages_all: MetricAverages = field(default_factory=MetricAverages)
    averages_finished: MetricAverages = field(default_factory=MetricAverages)
    now: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "processes": [metrics.to_dict() for metrics in self.processes.values()],
            "averages": {
                "all": self.averages_all.to_dict(),
                "finished": self.averages_finished.to_dict(),
            },
            "now": self.now,
        }
