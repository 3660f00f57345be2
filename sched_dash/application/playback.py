"""Scrub and auto-play through a run's event history."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from threading import RLock
from typing import Any, Callable, Iterable, Sequence

from sched_dash.application.metrics import reconstruct_metrics
from sched_dash.application.queue_state import known_pids_of, reconstruct_queue_state
from sched_dash.application.run_log import RunLog
from sched_dash.application.timeline import reconstruct_timeline
from sched_dash.domain.events import SchedulerEvent
from sched_dash.domain.metrics import MetricsReport
from sched_dash.domain.queue import QueueState
from sched_dash.domain.timeline import Timeline
from sched_dash.ports.timers import TimerFactory, TimerHandle, thread_timer_factory

EventsProvider = Callable[[], Sequence[SchedulerEvent]]
FrameCallback = Callable[["PlaybackFrame"], None]


class PlaybackState(str, Enum):
    IDLE = "idle"
    PLAYING = "playing"
    PAUSED = "paused"
    STOPPED = "stopped"


@dataclass(frozen=True, slots=True)
class PlaybackFrame:
    """Timeline, metrics and CPU queue as they looked at ``tick``."""

    tick: int
    max_tick: int
    state: PlaybackState
    timeline: Timeline
    metrics: MetricsReport
    progress: float
    speed: float = 1.0
    loop: bool = False
    queue: QueueState = field(default_factory=QueueState)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tick": self.tick,
            "max_tick": self.max_tick,
            "state": self.state.value,
            "progress": self.progress,
            "speed": self.speed,
            "loop": self.loop,
            "timeline": self.timeline.to_dict(),
            "metrics": self.metrics.to_dict(),
            "queue": self.queue.to_dict(),
        }


def visible_events(events: Iterable[SchedulerEvent], tick: int) -> list[SchedulerEvent]:
    """Events observable at cursor ``tick``; tickless events are always visible."""
    return [event for event in events if event.tick is None or event.tick <= tick]


def max_tick_of(events: Iterable[SchedulerEvent]) -> int:
    return max((event.tick for event in events if event.tick is not None), default=0)


class PlaybackController:
    """Cursor over one run's log with a single self-rearming timer.

    Every armed timer carries the generation it was armed under. Cancelling
    bumps the generation, so a callback that already left the timer thread
    finds a stale token and returns without touching state.
    """

    def __init__(
        self,
        events_provider: EventsProvider,
        *,
        base_period: float = 1.0,
        timer_factory: TimerFactory | None = None,
        on_frame: FrameCallback | None = None,
    ) -> None:
        if base_period <= 0:
            raise ValueError("base_period must be positive")
        self._events_provider = events_provider
        self._base_period = base_period
        self._timer_factory = timer_factory or thread_timer_factory
        self._on_frame = on_frame

        self._lock = RLock()
        self._events: list[SchedulerEvent] = []
        self._state = PlaybackState.IDLE
        self._tick = 0
        self._max_tick = 0
        self._speed = 1.0
        self._loop = False
        self._timer: TimerHandle | None = None
        self._generation = 0
        self._closed = False

        self._reload(follow_tip=False)

    @classmethod
    def for_run(cls, run_log: RunLog, run_id: str, **kwargs: Any) -> "PlaybackController":
        return cls(lambda: run_log.read(run_id), **kwargs)

    @property
    def state(self) -> PlaybackState:
        with self._lock:
            return self._state

    @property
    def tick(self) -> int:
        with self._lock:
            return self._tick

    @property
    def max_tick(self) -> int:
        with self._lock:
            return self._max_tick

    @property
    def speed(self) -> float:
        with self._lock:
            return self._speed

    @property
    def loop(self) -> bool:
        with self._lock:
            return self._loop

    @property
    def period(self) -> float:
        return self._base_period / self._speed

    def play(self) -> None:
        with self._lock:
            if self._closed or self._state is PlaybackState.PLAYING:
                return
            if self._state is PlaybackState.STOPPED:
                self._tick = 0
            self._state = PlaybackState.PLAYING
            self._arm_timer()

    def pause(self) -> None:
        with self._lock:
            if self._state is not PlaybackState.PLAYING:
                return
            self._cancel_timer()
            self._state = PlaybackState.PAUSED

    def stop(self) -> None:
        with self._lock:
            self._cancel_timer()
            self._state = PlaybackState.IDLE
            self._tick = 0

    def step_forward(self) -> int:
        with self._lock:
            self._tick = self._clamp(self._tick + 1)
            return self._tick

    def step_backward(self) -> int:
        with self._lock:
            self._tick = self._clamp(self._tick - 1)
            return self._tick

    def seek(self, tick: int) -> int:
        with self._lock:
            self._tick = self._clamp(int(tick))
            return self._tick

    def set_speed(self, multiplier: float) -> None:
        if multiplier <= 0:
            raise ValueError("Playback speed must be positive")
        with self._lock:
            self._speed = float(multiplier)
            if self._state is PlaybackState.PLAYING:
                self._arm_timer()

    def toggle_loop(self) -> bool:
        with self._lock:
            self._loop = not self._loop
            return self._loop

    def refresh(self) -> int:
        """Re-read the log; a cursor sitting at the old tip follows the new one."""
        with self._lock:
            self._reload()
            return self._max_tick

    def frame(self) -> PlaybackFrame:
        with self._lock:
            visible = visible_events(self._events, self._tick)
            return PlaybackFrame(
                tick=self._tick,
                max_tick=self._max_tick,
                state=self._state,
                timeline=reconstruct_timeline(visible),
                metrics=reconstruct_metrics(visible),
                progress=self._tick / self._max_tick if self._max_tick > 0 else 0.0,
                speed=self._speed,
                loop=self._loop,
                queue=reconstruct_queue_state(visible, known_pids_of(self._events)),
            )

    def close(self) -> None:
        """Cancel the timer for good; no callback runs after this returns."""
        with self._lock:
            self._cancel_timer()
            self._closed = True
            if self._state is PlaybackState.PLAYING:
                self._state = PlaybackState.PAUSED

    def _reload(self, *, follow_tip: bool = True) -> None:
        at_tip = follow_tip and self._tick >= self._max_tick
        self._events = list(self._events_provider())
        self._max_tick = max_tick_of(self._events)
        if at_tip:
            self._tick = self._max_tick
        else:
            self._tick = self._clamp(self._tick)

    def _clamp(self, tick: int) -> int:
        return max(0, min(tick, self._max_tick))

    def _arm_timer(self) -> None:
        self._cancel_timer()
        generation = self._generation
        self._timer = self._timer_factory(self.period, lambda: self._on_timer(generation))
        self._timer.start()

    def _cancel_timer(self) -> None:
        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self, generation: int) -> None:
        with self._lock:
            if self._closed or generation != self._generation:
                return
            if self._state is not PlaybackState.PLAYING:
                return

            self._timer = None
            self._reload(follow_tip=False)
            if self._tick < self._max_tick:
                self._tick += 1
                self._arm_timer()
            elif self._loop:
                self._tick = 0
                self._arm_timer()
            else:
                self._state = PlaybackState.STOPPED
                self._generation += 1

            if self._on_frame is not None:
                self._on_frame(self.frame())
