"""Supervise an external CPU scheduler and reconstruct its runs for viewing."""

from sched_dash.application.broadcaster import LiveBroadcaster
from sched_dash.application.metrics import reconstruct_metrics
from sched_dash.application.normalizer import normalize
from sched_dash.application.playback import PlaybackController, visible_events
from sched_dash.application.run_log import RunLog
from sched_dash.application.supervisor import ProcessSupervisor
from sched_dash.application.timeline import reconstruct_timeline
from sched_dash.domain.events import IDLE_PID, EventKind, SchedulerEvent
from sched_dash.domain.run import Run, RunConfig, RunStatus

__all__ = [
    "EventKind",
    "IDLE_PID",
    "LiveBroadcaster",
    "PlaybackController",
    "ProcessSupervisor",
    "Run",
    "RunConfig",
    "RunLog",
    "RunStatus",
    "SchedulerEvent",
    "normalize",
    "reconstruct_metrics",
    "reconstruct_timeline",
    "visible_events",
]
