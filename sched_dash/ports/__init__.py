"""Ports isolating the pipeline from storage and timing infrastructure."""

from sched_dash.ports.run_store import RunStore
from sched_dash.ports.timers import TimerFactory, TimerHandle, thread_timer_factory

__all__ = ["RunStore", "TimerFactory", "TimerHandle", "thread_timer_factory"]
