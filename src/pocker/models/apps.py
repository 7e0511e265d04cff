"""Aggregated application view returned to callers."""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class SourceWarning(BaseModel):
    """A source that could not be read."""

    source: str = Field(..., description="Source name")
    message: str = Field(..., description="Human-readable failure classification")


class ExposedPort(BaseModel):
    """A container port, with a UI link when one can be built."""

    private: int
    public: Optional[int] = None
    type: Optional[str] = None
    url: Optional[str] = None


class ServerInstance(BaseModel):
    """One container on one host."""

    source_id: str
    source_label: str
    container_id: str
    container_name: str
    state: str
    exit_code: Optional[int] = None
    version: Optional[str] = None
    image_digest: Optional[str] = None
    ui_url: Optional[str] = None
    ports: List[ExposedPort] = Field(default_factory=list)
    color: Optional[str] = None

    @property
    def key(self) -> str:
        """Identity used by deferred backfills: 'source:container'."""
        return f"{self.source_id}:{self.container_id}"

    @property
    def is_crashed(self) -> bool:
        return self.state != "running" and self.exit_code not in (None, 0)


class AggregatedApp(BaseModel):
    """A logical application grouping same-image containers across hosts."""

    id: str
    name: str
    image: str
    display_name: str
    latest_version: Optional[str] = None
    icon: Optional[str] = None
    description: Optional[str] = None
    versions: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    containers: List[ServerInstance] = Field(default_factory=list)


class MemoryUsage(BaseModel):
    """Memory figures in bytes."""

    total: int = 0
    used: int = 0
    available: int = 0


class ServerStats(BaseModel):
    """Per-host summary of the aggregated view."""

    source_id: str
    source_label: str
    color: Optional[str] = None
    total: int = 0
    running: int = 0
    stopped: int = 0
    crashed: int = 0
    outdated: int = 0
    docker_version: Optional[str] = None
    cpus: Optional[int] = None
    memory: Optional[MemoryUsage] = None


class AppsResponse(BaseModel):
    """Full aggregation snapshot."""

    generated_at: datetime
    apps: List[AggregatedApp] = Field(default_factory=list)
    app_filters: List[str] = Field(default_factory=list)
    server_filters: List[str] = Field(default_factory=list)
    warnings: List[SourceWarning] = Field(default_factory=list)
    server_stats: List[ServerStats] = Field(default_factory=list)
    total_containers: int = 0
    show_compose_tags: bool = False


class VersionBackfill(BaseModel):
    """Versions resolved from image digests for an earlier snapshot."""

    versions: Dict[str, str] = Field(
        default_factory=dict, description="Resolved tag per 'source:container' key"
    )
    latest_versions: Dict[str, Optional[str]] = Field(
        default_factory=dict, description="Recomputed latest version per app id"
    )
    unresolved: List[str] = Field(
        default_factory=list, description="Keys that were attempted but not resolved"
    )


class ContainerUsage(BaseModel):
    """Live resource usage of one running container."""

    memory_usage: int = 0
    memory_limit: int = 0
    memory_percent: float = 0.0
    cpu_percent: float = 0.0
    network_rx_bytes: int = 0
    network_tx_bytes: int = 0
    pids: int = 0


class ContainerMemory(BaseModel):
    """A container name with its memory usage in bytes."""

    name: str
    memory: int


class ServerDetails(BaseModel):
    """Memory breakdown of one host's running containers."""

    source_id: str
    top_containers: List[ContainerMemory] = Field(default_factory=list)
    all_containers: List[ContainerMemory] = Field(default_factory=list)
    memory_total: int = 0
    total_containers: int = 0
    running_containers: int = 0
