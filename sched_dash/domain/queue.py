"""Derived CPU queue records."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .events import Pid


@dataclass(frozen=True, slots=True)
class QueueState:
    """Which processes are running, waiting, done or not yet in the system.

    ``ready`` is in queue order; the other tuples follow first appearance.
    """

    running_pid: Pid | None = None
    ready: tuple[Pid, ...] = ()
    arrived: tuple[Pid, ...] = ()
    completed: tuple[Pid, ...] = ()
    pending: tuple[Pid, ...] = ()

    @property
    def is_empty(self) -> bool:
        return self.running_pid is None and not self.ready

    def to_dict(self) -> dict[str, Any]:
        return {
            "running_pid": self.running_pid,
            "ready": list(self.ready),
            "arrived": list(self.arrived),
            "completed": list(self.completed),
            "pending": list(self.pending),
        }
