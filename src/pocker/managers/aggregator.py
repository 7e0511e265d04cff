"""Aggregation of containers from every Docker source into logical apps."""

import asyncio
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlsplit, urlunsplit

from pocker.config import SourceConfig, get_settings, get_sources
from pocker.managers.host_collector import HostCollector, get_host_collector
from pocker.managers.metadata_resolver import (
    MetadataContext,
    MetadataResolver,
    get_metadata_resolver,
    sanitize_url,
)
from pocker.managers.version_resolver import (
    DigestVersionResolver,
    VersionRequest,
    get_version_resolver,
)
from pocker.models import (
    AggregatedApp,
    AppsResponse,
    ContainerRecord,
    ExposedPort,
    HostCollection,
    MemoryUsage,
    PortRecord,
    ServerInstance,
    ServerStats,
    SourceWarning,
    VersionBackfill,
)
from pocker.utils import get_logger
from pocker.utils.colors import generate_color_for_string
from pocker.utils.deadline import Deadline
from pocker.utils.image import friendly_image_name, get_image_base, normalize_digest, parse_image_reference
from pocker.utils.version import compare_versions, latest_of, needs_digest_resolution, sort_versions

logger = get_logger(__name__)

APP_LABEL = "homelab.app"
NAME_LABEL = "homelab.name"
DISPLAY_LABEL = "homelab.display"
ICON_LABEL = "homelab.icon"
DESCRIPTION_LABEL = "homelab.description"
URL_LABELS = ("homelab.url", "app.homepage")
VERSION_LABEL = "org.opencontainers.image.version"
SERVICE_LABELS = ("com.docker.compose.service", "com.docker.swarm.service.name")
TAG_LABELS = (
    "com.docker.compose.project",
    "com.docker.stack.namespace",
    "homepage.group",
    "homelab.group",
)

_PORTAINER_ENDPOINT_RE = re.compile(r"#!/?(\d+)")


def resolve_app_id(labels: Dict[str, str], image_base: str, fallback: str) -> str:
    """
    Grouping key of a container.

    The homelab.app label wins; otherwise containers of the same image
    repository group together regardless of compose project.
    """
    if labels.get(APP_LABEL):
        return labels[APP_LABEL]
    if image_base.strip():
        return image_base.strip()
    for key in SERVICE_LABELS:
        if labels.get(key):
            return labels[key]
    return fallback


def collect_tags(labels: Dict[str, str]) -> List[str]:
    """Compose, stack and group labels as a deduplicated tag list."""
    tags: List[str] = []
    for key in TAG_LABELS:
        for token in (labels.get(key) or "").split(","):
            token = token.strip()
            if token and token not in tags:
                tags.append(token)
    return tags


def derive_version(record: ContainerRecord) -> Optional[str]:
    """OCI version label, else the image tag, else a short digest."""
    if record.labels.get(VERSION_LABEL):
        return record.labels[VERSION_LABEL]
    ref = parse_image_reference(record.image)
    if ref.tag:
        return ref.tag
    digest = normalize_digest(ref.digest or record.image_digest)
    return digest[:12] if digest else None


def build_port_url(base_url: Optional[str], port: PortRecord) -> Optional[str]:
    """The UI base URL pointed at a published (or private) port."""
    if not base_url:
        return None
    number = port.public or port.private
    if not number:
        return None
    parts = urlsplit(base_url)
    if not parts.hostname:
        return None
    host = f"[{parts.hostname}]" if ":" in parts.hostname else parts.hostname
    path = parts.path or "/"
    return urlunsplit((parts.scheme, f"{host}:{number}", path, parts.query, parts.fragment))


def build_container_url(base_url: Optional[str], container_id: str) -> Optional[str]:
    """
    Container page in the source's UI.

    Portainer bases ('#!/2/docker/...') get a container deep link on the
    same endpoint; any other UI gets the base URL itself.
    """
    if not base_url:
        return None
    parts = urlsplit(base_url)
    full_path = parts.path + (f"#{parts.fragment}" if parts.fragment else "")
    if "#!/" in full_path or "/docker/" in full_path:
        match = _PORTAINER_ENDPOINT_RE.search(full_path)
        endpoint = match.group(1) if match else "1"
        return f"{parts.scheme}://{parts.netloc}/#!/{endpoint}/docker/containers/{container_id}"
    return base_url


def to_server_instance(source: SourceConfig, record: ContainerRecord) -> ServerInstance:
    """
    Build the ServerInstance for one container.

    UI link priority: explicit URL label, then a link derived from the
    source's UI base.
    """
    base_url = sanitize_url(source.ui_base)
    explicit_url = next(
        (sanitize_url(record.labels[key]) for key in URL_LABELS if record.labels.get(key)),
        None,
    )
    return ServerInstance(
        source_id=source.name,
        source_label=source.display_name,
        container_id=record.id,
        container_name=record.name,
        state=record.state,
        exit_code=record.exit_code,
        version=derive_version(record),
        image_digest=record.image_digest,
        ui_url=explicit_url or build_container_url(base_url, record.id),
        ports=[
            ExposedPort(
                private=port.private,
                public=port.public,
                type=port.type,
                url=build_port_url(base_url, port),
            )
            for port in record.ports
        ],
        color=source.color or generate_color_for_string(source.name),
    )


def is_outdated(instance: ServerInstance, latest_version: Optional[str]) -> bool:
    """True when the instance runs an older version than its app's latest."""
    if latest_version is None:
        return False
    return compare_versions(instance.version, latest_version) < 0


def build_server_stats(
    source: SourceConfig, collection: HostCollection, apps: Iterable[AggregatedApp]
) -> ServerStats:
    """
    Fold one source's instances into a summary.

    Crashed means stopped with a non-zero exit code; outdated means older
    than the owning app's latest version.
    """
    stats = ServerStats(
        source_id=source.name,
        source_label=source.display_name,
        color=source.color or generate_color_for_string(source.name),
    )
    for app in apps:
        for instance in app.containers:
            if instance.source_id != source.name:
                continue
            stats.total += 1
            if instance.state == "running":
                stats.running += 1
            else:
                stats.stopped += 1
                if instance.is_crashed:
                    stats.crashed += 1
            if is_outdated(instance, app.latest_version):
                stats.outdated += 1

    info = collection.host_info
    if info is not None:
        stats.docker_version = info.server_version
        stats.cpus = info.cpus
        if info.memory_total:
            stats.memory = MemoryUsage(total=info.memory_total, available=info.memory_total)
    return stats


@dataclass
class _WorkingApp:
    app_id: str
    name: str
    display_name: str
    image: str
    labels: Dict[str, str]
    icon_hint: Optional[str] = None
    description_hint: Optional[str] = None
    versions: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    instances: List[ServerInstance] = field(default_factory=list)


class AppAggregator:
    """Builds the combined app view across all configured Docker sources."""

    def __init__(
        self,
        collector: Optional[HostCollector] = None,
        metadata_resolver: Optional[MetadataResolver] = None,
        version_resolver: Optional[DigestVersionResolver] = None,
    ) -> None:
        """
        Initialize app aggregator.

        Args:
            collector: Host collector (defaults to the global one)
            metadata_resolver: Icon/description resolver (defaults to the global one)
            version_resolver: Digest version resolver (defaults to the global one)
        """
        self.settings = get_settings()
        self.collector = collector or get_host_collector()
        self.metadata = metadata_resolver or get_metadata_resolver()
        self.versions = version_resolver or get_version_resolver()

    def _upsert(
        self, working: Dict[str, _WorkingApp], source: SourceConfig, record: ContainerRecord
    ) -> None:
        labels = record.labels
        ref = parse_image_reference(record.image)
        name = labels.get(NAME_LABEL) or friendly_image_name(ref)
        app_id = resolve_app_id(labels, get_image_base(ref), name)
        version = derive_version(record)
        instance = to_server_instance(source, record)

        entry = working.get(app_id)
        if entry is None:
            entry = _WorkingApp(
                app_id=app_id,
                name=name,
                display_name=labels.get(DISPLAY_LABEL) or name,
                image=record.image,
                labels=dict(labels),
            )
            working[app_id] = entry

        entry.instances.append(instance)
        if version and version not in entry.versions:
            entry.versions.append(version)
        for tag in collect_tags(labels):
            if tag not in entry.tags:
                entry.tags.append(tag)
        # First non-empty hint across instances wins
        if not entry.icon_hint and labels.get(ICON_LABEL):
            entry.icon_hint = labels[ICON_LABEL]
        if not entry.description_hint and labels.get(DESCRIPTION_LABEL):
            entry.description_hint = labels[DESCRIPTION_LABEL]

    async def _bounded(self, kind: str, app_id: str, coro, deadline: Deadline) -> Optional[str]:
        """Await a metadata lookup, degrading any failure to None."""
        try:
            return await asyncio.wait_for(coro, timeout=deadline.remaining())
        except asyncio.TimeoutError:
            logger.debug("Metadata lookup timed out", extra={"kind": kind, "app_id": app_id})
        except Exception as e:
            logger.debug(
                "Metadata lookup failed",
                extra={"kind": kind, "app_id": app_id, "error": str(e)},
            )
        return None

    async def _finish(self, entry: _WorkingApp, deadline: Deadline) -> AggregatedApp:
        versions = sort_versions(entry.versions)
        context = MetadataContext(
            image=entry.image,
            labels=entry.labels,
            icon_hint=entry.icon_hint,
            description_hint=entry.description_hint,
        )
        if deadline.expired:
            icon, description = None, None
        else:
            icon, description = await asyncio.gather(
                self._bounded("icon", entry.app_id, self.metadata.resolve_icon(context), deadline),
                self._bounded(
                    "description",
                    entry.app_id,
                    self.metadata.resolve_description(context),
                    deadline,
                ),
            )

        return AggregatedApp(
            id=entry.app_id,
            name=entry.name,
            image=entry.image,
            display_name=entry.display_name,
            latest_version=versions[-1] if versions else None,
            icon=icon,
            description=description,
            versions=versions,
            tags=entry.tags,
            containers=sorted(entry.instances, key=lambda item: item.source_label.casefold()),
        )

    async def aggregate(
        self,
        sources: Optional[List[SourceConfig]] = None,
        deadline: Optional[Deadline] = None,
    ) -> AppsResponse:
        """
        Collect every source and group containers into apps.

        Sources are collected concurrently; an unreachable source adds a
        warning and contributes no containers, the rest of the report is
        unaffected.

        Args:
            sources: Sources to read (defaults to the configured ones)
            deadline: Request deadline (defaults to the request budget)

        Returns:
            AppsResponse snapshot
        """
        sources = list(sources if sources is not None else get_sources())
        deadline = deadline or Deadline.after(self.settings.request_budget_s)

        results = await asyncio.gather(
            *(self.collector.collect(source, deadline) for source in sources)
        )

        warnings: List[SourceWarning] = []
        collected: List[Tuple[SourceConfig, HostCollection]] = []
        for source, result in zip(sources, results):
            if isinstance(result, SourceWarning):
                warnings.append(result)
            else:
                collected.append((source, result))

        working: Dict[str, _WorkingApp] = {}
        for source, collection in collected:
            for record in collection.containers:
                self._upsert(working, source, record)

        apps = list(await asyncio.gather(*(self._finish(entry, deadline) for entry in working.values())))
        apps.sort(key=lambda app: app.display_name.casefold())

        server_labels = {instance.source_label for app in apps for instance in app.containers}
        total_containers = sum(len(app.containers) for app in apps)

        logger.info(
            "Aggregated apps",
            extra={
                "sources": len(sources),
                "unreachable": len(warnings),
                "apps": len(apps),
                "containers": total_containers,
            },
        )

        return AppsResponse(
            generated_at=datetime.now(timezone.utc),
            apps=apps,
            app_filters=sorted({app.display_name for app in apps}),
            server_filters=sorted(server_labels),
            warnings=warnings,
            server_stats=[build_server_stats(source, collection, apps) for source, collection in collected],
            total_containers=total_containers,
            show_compose_tags=self.settings.show_compose_tags,
        )

    async def resolve_versions(
        self, snapshot: AppsResponse, deadline: Optional[Deadline] = None
    ) -> VersionBackfill:
        """
        Resolve vague versions of a snapshot from image digests.

        Only instances with a digest whose version is missing, floating or
        not vN.N.N shaped are looked up.

        Args:
            snapshot: Earlier aggregation result
            deadline: Request deadline (defaults to the request budget)

        Returns:
            Resolved tags per 'source:container' key and the recomputed
            latest version of every app that changed
        """
        deadline = deadline or Deadline.after(self.settings.request_budget_s)
        requests = [
            VersionRequest(key=instance.key, image=app.image, digest=instance.image_digest)
            for app in snapshot.apps
            for instance in app.containers
            if instance.image_digest and needs_digest_resolution(instance.version)
        ]
        if not requests:
            return VersionBackfill()

        results = await self.versions.resolve_many(requests, deadline)
        resolved = {key: tag for key, tag in results.items() if tag}

        latest_versions: Dict[str, Optional[str]] = {}
        for app in snapshot.apps:
            if not any(instance.key in resolved for instance in app.containers):
                continue
            versions = [resolved.get(instance.key, instance.version) for instance in app.containers]
            latest_versions[app.id] = latest_of(version for version in versions if version)

        logger.info(
            "Resolved versions",
            extra={"requested": len(requests), "resolved": len(resolved)},
        )
        return VersionBackfill(
            versions=resolved,
            latest_versions=latest_versions,
            unresolved=sorted(key for key in results if key not in resolved),
        )


def apply_version_backfill(snapshot: AppsResponse, backfill: VersionBackfill) -> AppsResponse:
    """
    Return a copy of the snapshot with resolved versions filled in.

    Version sets, latest versions and outdated counts are recomputed.
    """
    if not backfill.versions:
        return snapshot

    apps: List[AggregatedApp] = []
    for app in snapshot.apps:
        containers = [
            instance.model_copy(update={"version": backfill.versions[instance.key]})
            if instance.key in backfill.versions
            else instance
            for instance in app.containers
        ]
        versions = sort_versions({instance.version for instance in containers if instance.version})
        apps.append(
            app.model_copy(
                update={
                    "containers": containers,
                    "versions": versions,
                    "latest_version": versions[-1] if versions else None,
                }
            )
        )

    latest_by_app = {app.id: app.latest_version for app in apps}
    server_stats = []
    for stats in snapshot.server_stats:
        outdated = sum(
            1
            for app in apps
            for instance in app.containers
            if instance.source_id == stats.source_id and is_outdated(instance, latest_by_app[app.id])
        )
        server_stats.append(stats.model_copy(update={"outdated": outdated}))

    return snapshot.model_copy(update={"apps": apps, "server_stats": server_stats})


# Global instance
_aggregator: AppAggregator | None = None


def get_aggregator() -> AppAggregator:
    """Get or create app aggregator instance."""
    global _aggregator
    if _aggregator is None:
        _aggregator = AppAggregator()
    return _aggregator
