"""Timer port used by the playback controller."""

from __future__ import annotations

from threading import Timer
from typing import Callable, Protocol


class TimerHandle(Protocol):
    def start(self) -> None:
        """Arm the timer."""

    def cancel(self) -> None:
        """Disarm the timer; a no-op once it has fired."""


TimerFactory = Callable[[float, Callable[[], None]], TimerHandle]


def thread_timer_factory(delay_seconds: float, callback: Callable[[], None]) -> TimerHandle:
    """Default factory backed by daemon ``threading.Timer`` threads."""
    timer = Timer(delay_seconds, callback)
    timer.daemon = True
    return timer
