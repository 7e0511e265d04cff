"""Data models for Pocker."""

from .apps import (
    AggregatedApp,
    AppsResponse,
    ContainerMemory,
    ContainerUsage,
    ExposedPort,
    MemoryUsage,
    ServerDetails,
    ServerInstance,
    ServerStats,
    SourceWarning,
    VersionBackfill,
)
from .records import ContainerRecord, HostCollection, HostInfo, PortRecord

__all__ = [
    "AggregatedApp",
    "AppsResponse",
    "ContainerMemory",
    "ContainerRecord",
    "ContainerUsage",
    "ExposedPort",
    "HostCollection",
    "HostInfo",
    "MemoryUsage",
    "PortRecord",
    "ServerDetails",
    "ServerInstance",
    "ServerStats",
    "SourceWarning",
    "VersionBackfill",
]
