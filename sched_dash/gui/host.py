"""Dashboard host runtime that wires the run pipeline to the HTTP service."""

from __future__ import annotations

from sched_dash.adapters.json_store import JsonRunStore
from sched_dash.application.broadcaster import LiveBroadcaster
from sched_dash.application.run_log import RunLog
from sched_dash.application.supervisor import ProcessSupervisor
from sched_dash.gui.config import DashboardConfig
from sched_dash.gui.contract import DEFAULT_METADATA
from sched_dash.gui.facade import DashboardFacade
from sched_dash.gui.http_service import DashboardHttpService
from sched_dash.utils.logging import set_log_level


class DashboardHost:
    """Bootstraps store, run log, broadcaster, supervisor, facade, and transport."""

    __slots__ = (
        "config",
        "store",
        "run_log",
        "broadcaster",
        "supervisor",
        "facade",
        "service",
    )

    def __init__(self, config: DashboardConfig) -> None:
        self.config = config
        set_log_level(config.log_level)
        self.store = JsonRunStore(config.data_dir)
        self.run_log = RunLog(store=self.store)
        self.broadcaster = LiveBroadcaster(self.run_log, buffer_size=config.subscriber_buffer)
        self.supervisor = ProcessSupervisor(
            self.run_log,
            self.broadcaster,
            command=config.scheduler_command,
            work_dir=config.work_dir,
            store=self.store,
            stop_grace_seconds=config.stop_grace_seconds,
        )
        self.facade = DashboardFacade(
            run_log=self.run_log,
            broadcaster=self.broadcaster,
            supervisor=self.supervisor,
            playback_period=config.playback_period_seconds,
        )
        self.service = DashboardHttpService(
            facade=self.facade,
            metadata=DEFAULT_METADATA,
            host=config.host,
            port=config.port,
        )

    def start(self) -> None:
        print(f"Starting scheduler dashboard at {self.service.base_url}")
        self.service.serve_forever()

    def stop(self) -> None:
        try:
            self.service.stop()
        finally:
            self.facade.close()
            self.supervisor.close()
            self.broadcaster.close()
