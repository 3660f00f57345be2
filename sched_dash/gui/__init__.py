"""Dashboard host: configuration, facade and HTTP + SSE transport."""

from sched_dash.gui.config import DashboardConfig, load_dashboard_config
from sched_dash.gui.facade import DashboardFacade
from sched_dash.gui.host import DashboardHost

__all__ = [
    "DashboardConfig",
    "DashboardFacade",
    "DashboardHost",
    "load_dashboard_config",
]
