"""Pocker server implementation using FastMCP 2."""

import asyncio
import sys
from contextlib import asynccontextmanager
from typing import List, Optional

from fastmcp import FastMCP

from pocker import __version__
from pocker.config import Settings, SourceConfig, find_source, get_settings, get_sources
from pocker.managers.aggregator import apply_version_backfill, get_aggregator
from pocker.managers.host_collector import get_host_collector
from pocker.managers.metadata_resolver import close_metadata_resolver
from pocker.managers.stats_manager import get_stats_manager
from pocker.managers.version_resolver import close_version_resolver
from pocker.mcp_tools import (
    ClearVersionCacheOutput,
    ContainerStatsInput,
    ContainerStatsOutput,
    HealthOutput,
    HostMemoryStatsOutput,
    ListAppsInput,
    ListAppsOutput,
    MetricsOutput,
    ResolveVersionsInput,
    ResolveVersionsOutput,
    ServerDetailsInput,
    ServerDetailsOutput,
)
from pocker.utils import get_logger, setup_logging
from pocker.utils.cache import clear_version_cache as clear_digest_cache
from pocker.utils.deadline import Deadline
from pocker.utils.docker_client import close_docker_clients
from pocker.utils.exceptions import HostCollectionError, SourceNotFoundError
from pocker.utils.metrics_collector import get_metrics_collector

logger = get_logger(__name__)


def _configure_logging(settings: Settings) -> None:
    stream = sys.stderr if settings.transport_mode == "stdio" else sys.stdout
    setup_logging(log_level=settings.log_level, log_format=settings.log_format, stream=stream)


@asynccontextmanager
async def lifespan(server: FastMCP):
    """Lifespan context manager for startup and shutdown tasks."""
    settings = get_settings()

    _configure_logging(settings)
    logger.info("Starting Pocker server", extra={"version": __version__})

    sources = get_sources()
    if not sources:
        logger.warning("No Docker sources configured")
    else:
        logger.info(
            "Docker sources configured",
            extra={"sources": [source.name for source in sources]},
        )

    yield

    logger.info("Shutting down Pocker server")

    try:
        await close_version_resolver()
        await close_metadata_resolver()
    except Exception as e:
        logger.warning("Failed to close HTTP clients", extra={"error": str(e)})

    close_docker_clients()
    logger.info("Pocker server stopped")


mcp = FastMCP("Pocker", lifespan=lifespan)


def _request_deadline() -> Deadline:
    return Deadline.after(get_settings().request_budget_s)


def _select_sources(names: Optional[List[str]]) -> List[SourceConfig]:
    """Configured sources, optionally narrowed to the given names."""
    if names is None:
        return list(get_sources())
    return [find_source(name) for name in names]


@mcp.tool()
async def health() -> HealthOutput:
    """
    Health check reporting which Docker sources answer.

    Returns:
        HealthOutput with per-source reachability
    """
    collector = get_host_collector()
    sources = get_sources()
    deadline = _request_deadline()

    async def _ping(source: SourceConfig) -> bool:
        try:
            return await collector.ping(source, deadline)
        except HostCollectionError as e:
            logger.warning(
                "Docker health check failed",
                extra={"source": source.name, "failure": e.failure},
            )
            return False

    results = await asyncio.gather(*(_ping(source) for source in sources))
    reachability = {source.name: ok for source, ok in zip(sources, results)}

    return HealthOutput(
        status="healthy" if all(reachability.values()) else "degraded",
        sources=reachability,
        version=__version__,
    )


@mcp.tool()
async def list_apps(input_data: ListAppsInput) -> ListAppsOutput:
    """
    Aggregate containers from every source into apps.

    Unreachable sources are reported in 'warnings' and do not fail the call.

    Args:
        input_data: Optional source filter and version resolution flag

    Returns:
        ListAppsOutput with apps, filters, warnings and per-host statistics
    """
    logger.debug(
        "App list requested",
        extra={"sources": input_data.sources, "resolve_versions": input_data.resolve_versions},
    )

    try:
        sources = _select_sources(input_data.sources)
        aggregator = get_aggregator()
        deadline = _request_deadline()

        snapshot = await aggregator.aggregate(sources, deadline)
        if input_data.resolve_versions:
            backfill = await aggregator.resolve_versions(snapshot, deadline)
            snapshot = apply_version_backfill(snapshot, backfill)

        return ListAppsOutput(**snapshot.model_dump())

    except SourceNotFoundError as e:
        logger.warning("Unknown source requested", extra={"source": e.source})
        raise
    except Exception as e:
        logger.error("Failed to list apps", extra={"error": str(e)})
        raise


@mcp.tool()
async def resolve_versions(input_data: ResolveVersionsInput) -> ResolveVersionsOutput:
    """
    Resolve missing or floating versions from image digests.

    Args:
        input_data: Optional source filter

    Returns:
        ResolveVersionsOutput with tags per 'source:container' key and the
        updated latest version per app id
    """
    logger.debug("Version resolution requested", extra={"sources": input_data.sources})

    try:
        sources = _select_sources(input_data.sources)
        aggregator = get_aggregator()
        deadline = _request_deadline()

        snapshot = await aggregator.aggregate(sources, deadline)
        backfill = await aggregator.resolve_versions(snapshot, deadline)

        return ResolveVersionsOutput(**backfill.model_dump())

    except Exception as e:
        logger.error("Failed to resolve versions", extra={"error": str(e)})
        raise


@mcp.tool()
async def host_memory_stats() -> HostMemoryStatsOutput:
    """
    Memory used by running containers on every host.

    Returns:
        HostMemoryStatsOutput keyed by source name
    """
    logger.debug("Host memory stats requested")

    try:
        stats = await get_stats_manager().host_memory_stats(deadline=_request_deadline())
        return HostMemoryStatsOutput(memory_stats=stats)

    except Exception as e:
        logger.error("Failed to fetch host memory stats", extra={"error": str(e)})
        raise


@mcp.tool()
async def container_stats(input_data: ContainerStatsInput) -> ContainerStatsOutput:
    """
    Live resource usage of one container.

    Args:
        input_data: Source name and container ID

    Returns:
        ContainerStatsOutput with memory, CPU, network and PID figures
    """
    logger.debug(
        "Container stats requested",
        extra={"source": input_data.source_id, "container_id": input_data.container_id},
    )

    try:
        source = find_source(input_data.source_id)
        usage = await get_stats_manager().container_stats(
            source, input_data.container_id, _request_deadline()
        )
        return ContainerStatsOutput(
            source_id=source.name,
            container_id=input_data.container_id,
            **usage.model_dump(),
        )

    except SourceNotFoundError as e:
        logger.warning("Unknown source requested", extra={"source": e.source})
        raise
    except Exception as e:
        logger.error(
            "Failed to fetch container stats",
            extra={"container_id": input_data.container_id, "error": str(e)},
        )
        raise


@mcp.tool()
async def server_details(input_data: ServerDetailsInput) -> ServerDetailsOutput:
    """
    Memory breakdown of one host's running containers.

    Args:
        input_data: Source name

    Returns:
        ServerDetailsOutput with the top five containers by memory
    """
    logger.debug("Server details requested", extra={"source": input_data.source_id})

    try:
        source = find_source(input_data.source_id)
        details = await get_stats_manager().server_details(source, _request_deadline())
        return ServerDetailsOutput(**details.model_dump())

    except SourceNotFoundError as e:
        logger.warning("Unknown source requested", extra={"source": e.source})
        raise
    except Exception as e:
        logger.error(
            "Failed to fetch server details",
            extra={"source": input_data.source_id, "error": str(e)},
        )
        raise


@mcp.tool()
async def clear_version_cache() -> ClearVersionCacheOutput:
    """
    Forget every resolved digest-to-version mapping.

    Returns:
        ClearVersionCacheOutput with the number of entries dropped
    """
    cleared = clear_digest_cache()
    return ClearVersionCacheOutput(success=True, cleared=cleared)


@mcp.tool()
async def metrics() -> MetricsOutput:
    """
    Get Prometheus metrics.

    Returns:
        MetricsOutput with metrics in Prometheus text format
    """
    logger.debug("Metrics requested")

    try:
        metrics_collector = get_metrics_collector()
        metrics_data = metrics_collector.get_metrics().decode("utf-8")

        return MetricsOutput(metrics=metrics_data)

    except Exception as e:
        logger.error("Failed to get metrics", extra={"error": str(e)})
        raise


def main() -> None:
    """Main entry point for the Pocker server."""
    settings = get_settings()

    _configure_logging(settings)

    logger.info(
        "Starting server",
        extra={
            "transport": settings.transport_mode,
            "host": settings.host if settings.transport_mode != "stdio" else "N/A",
            "port": settings.port if settings.transport_mode != "stdio" else "N/A",
        },
    )

    try:
        run_kwargs = {"transport": settings.transport_mode}

        if settings.transport_mode in ("sse", "streamable-http"):
            run_kwargs["host"] = settings.host
            run_kwargs["port"] = settings.port
            run_kwargs["path"] = settings.path

        mcp.run(**run_kwargs)
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt, shutting down")
        sys.exit(0)
    except Exception as e:
        logger.error("Server error", extra={"error": str(e)})
        sys.exit(1)


if __name__ == "__main__":
    main()
