"""Service contract metadata shared by the HTTP transport and diagnostics."""

from __future__ import annotations

from dataclasses import dataclass


CONTRACT_VERSION = "1.0.0"


@dataclass(frozen=True, slots=True)
class ServiceMetadata:
    """Identity and capability metadata for the dashboard service."""

    name: str
    version: str
    capabilities: tuple[str, ...] = ()


DEFAULT_METADATA = ServiceMetadata(
    name="sched-dash",
    version="0.1.0",
    capabilities=("runs", "events", "timeline", "metrics", "queue", "sse", "playback"),
)
