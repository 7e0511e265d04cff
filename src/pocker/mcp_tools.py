"""MCP tool input/output models for the Pocker dashboard API."""

from typing import Dict, Optional

from pydantic import BaseModel, Field

from pocker.models import AppsResponse, ContainerUsage, MemoryUsage, ServerDetails, VersionBackfill

# Aggregation tools


class ListAppsInput(BaseModel):
    """Input model for list_apps tool."""

    sources: Optional[list[str]] = Field(
        None, description="Only read these source names (default: all configured sources)"
    )
    resolve_versions: bool = Field(
        default=False,
        description="Also resolve vague versions from image digests before returning",
    )


class ListAppsOutput(AppsResponse):
    """Output model for list_apps tool."""


class ResolveVersionsInput(BaseModel):
    """Input model for resolve_versions tool."""

    sources: Optional[list[str]] = Field(
        None, description="Only read these source names (default: all configured sources)"
    )


class ResolveVersionsOutput(VersionBackfill):
    """Output model for resolve_versions tool."""


# Live usage tools


class HostMemoryStatsOutput(BaseModel):
    """Output model for host_memory_stats tool."""

    memory_stats: Dict[str, MemoryUsage] = Field(
        default_factory=dict, description="Memory used by running containers, per source name"
    )


class ContainerStatsInput(BaseModel):
    """Input model for container_stats tool."""

    source_id: str = Field(..., description="Source name the container runs on")
    container_id: str = Field(..., description="Docker container ID")


class ContainerStatsOutput(ContainerUsage):
    """Output model for container_stats tool."""

    source_id: str = Field(..., description="Source name")
    container_id: str = Field(..., description="Docker container ID")


class ServerDetailsInput(BaseModel):
    """Input model for server_details tool."""

    source_id: str = Field(..., description="Source name")


class ServerDetailsOutput(ServerDetails):
    """Output model for server_details tool."""


# Admin and monitoring tools


class ClearVersionCacheOutput(BaseModel):
    """Output model for clear_version_cache tool."""

    success: bool = Field(..., description="Whether the cache was cleared")
    cleared: int = Field(..., description="Number of digest mappings dropped")


class MetricsOutput(BaseModel):
    """Output model for metrics tool."""

    metrics: str = Field(..., description="Prometheus metrics in text format")


class HealthOutput(BaseModel):
    """Output model for health tool."""

    status: str = Field(..., description="healthy when every source answered, else degraded")
    sources: Dict[str, bool] = Field(
        default_factory=dict, description="Reachability per source name"
    )
    version: str = Field(..., description="Server version")
