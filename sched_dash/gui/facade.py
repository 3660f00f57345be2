"""Dashboard-facing facade for run commands, queries, and diagnostics."""

from __future__ import annotations

from datetime import datetime, timezone
from threading import RLock
from typing import Any, Callable, Mapping, TypeVar

from sched_dash.application.broadcaster import ALL_RUNS, LiveBroadcaster, Subscription
from sched_dash.application.metrics import reconstruct_metrics
from sched_dash.application.playback import FrameCallback, PlaybackController, max_tick_of, visible_events
from sched_dash.application.queue_state import known_pids_of, reconstruct_queue_state
from sched_dash.application.report import describe_event, is_trivial_event, summary_rows
from sched_dash.application.run_log import RunLog
from sched_dash.application.supervisor import ProcessSupervisor
from sched_dash.application.timeline import reconstruct_timeline
from sched_dash.domain.events import SchedulerEvent
from sched_dash.domain.run import Run, RunConfig
from sched_dash.gui.contract import CONTRACT_VERSION, ServiceMetadata
from sched_dash.ports.timers import TimerFactory

T = TypeVar("T")


class DashboardFacade:
    """Facade that isolates the transport from the run pipeline."""

    __slots__ = (
        "_run_log",
        "_broadcaster",
        "_supervisor",
        "_playback_period",
        "_timer_factory",
        "_playbacks",
        "_lock",
        "_last_successful_command_at",
        "_last_command_error",
    )

    def __init__(
        self,
        *,
        run_log: RunLog,
        broadcaster: LiveBroadcaster,
        supervisor: ProcessSupervisor,
        playback_period: float = 1.0,
        timer_factory: TimerFactory | None = None,
    ) -> None:
        self._run_log = run_log
        self._broadcaster = broadcaster
        self._supervisor = supervisor
        self._playback_period = playback_period
        self._timer_factory = timer_factory
        self._playbacks: list[PlaybackController] = []
        self._lock = RLock()
        self._last_successful_command_at: datetime | None = None
        self._last_command_error: str | None = None

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------
    def start_run(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        def _start() -> dict[str, Any]:
            config = RunConfig.from_dict(payload)
            run_id = self._supervisor.start(config)
            return self._serialize_run(self._supervisor.get_run(run_id))

        return self._run_command(_start)

    def stop_run(self, run_id: str) -> dict[str, Any]:
        def _stop() -> dict[str, Any]:
            return self._serialize_run(self._supervisor.stop(run_id))

        return self._run_command(_stop)

    def open_playback(self, run_id: str, *, on_frame: FrameCallback | None = None) -> PlaybackController:
        """Create a viewing session; it is closed together with the facade."""
        self._supervisor.get_run(run_id)
        controller = PlaybackController.for_run(
            self._run_log,
            run_id,
            base_period=self._playback_period,
            timer_factory=self._timer_factory,
            on_frame=on_frame,
        )
        with self._lock:
            self._playbacks.append(controller)
        return controller

    def close_playback(self, controller: PlaybackController) -> None:
        controller.close()
        with self._lock:
            if controller in self._playbacks:
                self._playbacks.remove(controller)

    def close(self) -> None:
        with self._lock:
            playbacks = list(self._playbacks)
            self._playbacks.clear()
        for controller in playbacks:
            controller.close()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def list_runs(self) -> list[dict[str, Any]]:
        return [self._serialize_run(run) for run in self._supervisor.list_runs()]

    def get_run(self, run_id: str) -> dict[str, Any]:
        return self._serialize_run(self._supervisor.get_run(run_id))

    def list_events(
        self,
        run_id: str,
        *,
        from_sequence: int = 0,
        hide_trivial: bool = False,
    ) -> list[dict[str, Any]]:
        self._supervisor.get_run(run_id)
        events = self._run_log.read(run_id, from_sequence)
        return [
            self._serialize_event(event)
            for event in events
            if not (hide_trivial and is_trivial_event(event))
        ]

    def timeline(self, run_id: str, *, tick: int | None = None) -> dict[str, Any]:
        events = self._events_at(run_id, tick)
        payload = reconstruct_timeline(events).to_dict()
        payload["tick"] = tick
        payload["max_tick"] = max_tick_of(events)
        return payload

    def metrics(self, run_id: str, *, tick: int | None = None) -> dict[str, Any]:
        run = self._supervisor.get_run(run_id)
        payload = reconstruct_metrics(self._events_at(run_id, tick)).to_dict()
        payload["tick"] = tick
        payload["reported"] = summary_rows(run.summary) if run.summary is not None else []
        return payload

    def queue_state(self, run_id: str, *, tick: int | None = None) -> dict[str, Any]:
        events = self._events_at(run_id, tick)
        known = known_pids_of(self._run_log.read(run_id)) if tick is not None else None
        payload = reconstruct_queue_state(events, known).to_dict()
        payload["tick"] = tick
        return payload

    def subscribe(self, run_id: str = ALL_RUNS, *, after_sequence: int | None = None) -> Subscription:
        if run_id != ALL_RUNS:
            self._supervisor.get_run(run_id)
        return self._broadcaster.subscribe(run_id, after_sequence=after_sequence)

    def diagnostics(
        self,
        *,
        metadata: ServiceMetadata,
        base_url: str,
        event_stream_status: str,
        event_stream_active_clients: int,
        event_stream_retried_writes: int,
        event_stream_dropped_clients: int,
    ) -> dict[str, Any]:
        with self._lock:
            return {
                "service_name": metadata.name,
                "service_version": metadata.version,
                "contract_version": CONTRACT_VERSION,
                "base_url": base_url,
                "scheduler_command": list(self._supervisor.command),
                "running_runs": len(self._supervisor.running_run_ids()),
                "known_runs": len(self._run_log.run_ids()),
                "playback_sessions": len(self._playbacks),
                "event_stream_status": event_stream_status,
                "event_stream_active_clients": event_stream_active_clients,
                "subscriber_count": self._broadcaster.subscriber_count,
                "subscriber_buffer": self._broadcaster.buffer_size,
                "dropped_subscriber_count": self._broadcaster.dropped_subscriber_count,
                "last_successful_command_time": self._iso(self._last_successful_command_at),
                "last_command_error": self._last_command_error,
                "event_stream_dropped_clients": event_stream_dropped_clients,
                "event_stream_retried_writes": event_stream_retried_writes,
            }

    def metadata(self, *, metadata: ServiceMetadata, base_url: str) -> dict[str, Any]:
        return {
            "service": {
                "name": metadata.name,
                "version": metadata.version,
                "capabilities": list(metadata.capabilities),
            },
            "contract_version": CONTRACT_VERSION,
            "base_url": base_url,
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _run_command(self, callback: Callable[[], T]) -> T:
        with self._lock:
            try:
                result = callback()
            except Exception as exc:
                self._last_command_error = str(exc)
                raise
            self._last_successful_command_at = self._wall_now()
            self._last_command_error = None
            return result

    def _events_at(self, run_id: str, tick: int | None) -> list[SchedulerEvent]:
        self._supervisor.get_run(run_id)
        events = self._run_log.read(run_id)
        if tick is None:
            return events
        if tick < 0:
            raise ValueError("tick must be non-negative")
        return visible_events(events, tick)

    def _serialize_run(self, run: Run) -> dict[str, Any]:
        payload = run.to_dict()
        payload["event_count"] = self._run_log.count(run.run_id)
        return payload

    @staticmethod
    def _serialize_event(event: SchedulerEvent) -> dict[str, Any]:
        payload = event.to_dict()
        payload["description"] = describe_event(event)
        return payload

    @staticmethod
    def _iso(value: datetime | None) -> str | None:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()

    @staticmethod
    def _wall_now() -> datetime:
        return datetime.now(timezone.utc)
