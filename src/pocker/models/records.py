"""Raw records returned by a Docker host collection."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class PortRecord:
    """One published or exposed port."""

    private: int
    public: Optional[int] = None
    type: Optional[str] = None


@dataclass(frozen=True)
class ContainerRecord:
    """One container as listed by a Docker host."""

    id: str
    name: str
    state: str
    image: str
    status: str = ""
    exit_code: Optional[int] = None
    image_id: Optional[str] = None
    image_digest: Optional[str] = None
    labels: Dict[str, str] = field(default_factory=dict)
    ports: List[PortRecord] = field(default_factory=list)

    @property
    def is_running(self) -> bool:
        return self.state == "running"


@dataclass(frozen=True)
class HostInfo:
    """Subset of the Docker daemon's system info."""

    server_version: Optional[str] = None
    memory_total: int = 0
    cpus: Optional[int] = None
    operating_system: Optional[str] = None
    architecture: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass(frozen=True)
class HostCollection:
    """Result of a successful collection from one source."""

    source: str
    containers: List[ContainerRecord]
    host_info: Optional[HostInfo] = None
