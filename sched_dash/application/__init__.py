"""Ingestion, live fan-out and reconstruction pipeline for scheduler runs."""

from sched_dash.application.broadcaster import (
    ALL_RUNS,
    DisconnectReason,
    Envelope,
    EnvelopeType,
    LiveBroadcaster,
    SubscriberDisconnected,
    Subscription,
)
from sched_dash.application.metrics import reconstruct_metrics
from sched_dash.application.normalizer import normalize
from sched_dash.application.playback import (
    PlaybackController,
    PlaybackFrame,
    PlaybackState,
    visible_events,
)
from sched_dash.application.queue_state import reconstruct_queue_state
from sched_dash.application.run_log import RunLog, RunSealedError
from sched_dash.application.supervisor import ProcessSupervisor, RunLaunchError
from sched_dash.application.timeline import reconstruct_timeline

__all__ = [
    "ALL_RUNS",
    "DisconnectReason",
    "Envelope",
    "EnvelopeType",
    "LiveBroadcaster",
    "PlaybackController",
    "PlaybackFrame",
    "PlaybackState",
    "ProcessSupervisor",
    "RunLaunchError",
    "RunLog",
    "RunSealedError",
    "SubscriberDisconnected",
    "Subscription",
    "normalize",
    "reconstruct_metrics",
    "reconstruct_queue_state",
    "reconstruct_timeline",
    "visible_events",
]
