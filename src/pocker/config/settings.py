"""Settings and configuration management for Pocker."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="POCKER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Docker source configuration
    docker_sources_file: str = Field(
        default="./config/docker-sources.json",
        description="JSON file listing Docker sources; when present it is the only source list",
    )

    docker_sources: str | None = Field(
        default=None,
        description="Inline sources, as JSON or 'name|endpoint=...|label=...' entries separated by ';'",
    )

    docker_socket: str = Field(
        default="/var/run/docker.sock",
        description="Local Docker socket added as the 'local' source",
    )

    docker_socket_disable: bool = Field(
        default=False,
        description="Do not add the local Docker socket as a source",
    )

    docker_socket_label: str = Field(
        default="Local",
        description="Display name of the local socket source",
    )

    docker_api_timeout_s: float = Field(
        default=10.0,
        description="Default timeout in seconds for Docker API calls per host",
    )

    # Registry and metadata configuration
    docker_hub_enabled: bool = Field(
        default=True,
        description="Query Docker Hub for icons and descriptions",
    )

    docker_hub_timeout_s: float = Field(
        default=5.0,
        description="Timeout in seconds for a single registry or metadata HTTP call",
    )

    description_ttl_s: int = Field(
        default=86_400,
        description="Cache lifetime for resolved descriptions",
    )

    icon_ttl_s: int = Field(
        default=604_800,
        description="Cache lifetime for resolved icons",
    )

    icon_map_file: str = Field(
        default="./config/icon-map.json",
        description="JSON object mapping image names to icon URLs",
    )

    metadata_debug: bool = Field(
        default=False,
        description="Log every metadata provider attempt",
    )

    show_compose_tags: bool = Field(
        default=False,
        description="Ask the UI to render compose/stack tags",
    )

    # Version resolution
    version_batch_size: int = Field(
        default=10,
        description="Number of digest lookups run concurrently per batch",
    )

    version_batch_timeout_s: float = Field(
        default=30.0,
        description="Upper bound in seconds for one batch of digest lookups",
    )

    request_budget_s: float = Field(
        default=45.0,
        description="Overall time budget in seconds for one aggregation request",
    )

    digest_cache_size: int = Field(
        default=100_000,
        ge=1,
        description="Resolved digest-to-tag mappings kept in memory; least recently used go first",
    )

    # Logging configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    log_format: str = Field(
        default="json",
        description="Log format (json or text)",
    )

    # Server configuration
    host: str = Field(
        default="0.0.0.0",
        description="Server host to bind to",
    )

    port: int = Field(
        default=4173,
        description="Server port to bind to",
    )

    transport_mode: Literal["stdio", "sse", "streamable-http"] = Field(
        default="streamable-http",
        description="Transport protocol for the MCP server (stdio, sse, or streamable-http)",
    )

    path: str = Field(
        default="/mcp",
        description="Path for HTTP-based transports (sse or streamable-http)",
    )

    @property
    def cdn_icon_ttl_s(self) -> int:
        """CDN existence probes never live longer than a day."""
        return min(self.icon_ttl_s, 86_400)

    @property
    def hub_page_ttl_s(self) -> int:
        """Product pages carry both icon and description."""
        return max(self.description_ttl_s, self.icon_ttl_s)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
