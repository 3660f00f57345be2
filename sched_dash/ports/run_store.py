"""Persistence port for run records and their event logs."""

from __future__ import annotations

from typing import Protocol

from sched_dash.domain.events import SchedulerEvent
from sched_dash.domain.run import Run


class RunStore(Protocol):
    """Durable, append-only storage keyed by run identifier."""

    def save_run(self, run: Run) -> None:
        """Create or replace the durable record for one run."""

    def load_run(self, run_id: str) -> Run | None:
        """Return the stored run record, or ``None`` when unknown."""

    def list_runs(self) -> list[Run]:
        """Return every stored run record."""

    def append_event(self, event: SchedulerEvent) -> None:
        """Append one sequenced event to its run's log."""

    def load_events(self, run_id: str) -> list[SchedulerEvent]:
        """Return a run's stored events in sequence order."""
