"""Domain records for supervised scheduler runs."""

from sched_dash.domain.events import IDLE_PID, EventKind, Pid, SchedulerEvent
from sched_dash.domain.metrics import MetricAverages, MetricsReport, ProcessMetrics
from sched_dash.domain.queue import QueueState
from sched_dash.domain.run import FailureReason, Run, RunConfig, RunStatus
from sched_dash.domain.timeline import Segment, Timeline, TimelineStats

__all__ = [
    "EventKind",
    "FailureReason",
    "IDLE_PID",
    "MetricAverages",
    "MetricsReport",
    "Pid",
    "ProcessMetrics",
    "QueueState",
    "Run",
    "RunConfig",
    "RunStatus",
    "SchedulerEvent",
    "Segment",
    "Timeline",
    "TimelineStats",
]
