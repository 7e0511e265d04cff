"""Per-host collection of container lists and daemon info."""

import asyncio
import re
import socket
import time
from dataclasses import replace
from typing import Any, Callable, Dict, Iterator, List, Optional, TypeVar

from docker import DockerClient

from pocker.config import SourceConfig, get_settings
from pocker.models import ContainerRecord, HostCollection, HostInfo, PortRecord, SourceWarning
from pocker.utils import get_logger
from pocker.utils.deadline import Deadline
from pocker.utils.docker_client import DockerClientManager, get_docker_manager
from pocker.utils.exceptions import HostCollectionError
from pocker.utils.image import get_image_base, parse_image_reference
from pocker.utils.metrics_collector import get_metrics_collector

logger = get_logger(__name__)

T = TypeVar("T")

_EXIT_CODE_RE = re.compile(r"exited\s*\((-?\d+)\)", re.IGNORECASE)

_DNS_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "temporary failure in name resolution",
    "getaddrinfo",
    "enotfound",
    "no address associated",
)
_REFUSED_MARKERS = ("connection refused", "econnrefused")
_RESET_MARKERS = ("connection reset", "econnreset", "connection aborted", "remote end closed")
_TIMEOUT_MARKERS = ("timed out", "timeout", "etimedout")


def _exception_chain(error: BaseException) -> Iterator[BaseException]:
    seen = set()
    pending = [error]
    while pending:
        current = pending.pop()
        if id(current) in seen:
            continue
        seen.add(id(current))
        yield current
        for nested in (current.__cause__, current.__context__):
            if nested is not None:
                pending.append(nested)
        for arg in current.args:
            if isinstance(arg, BaseException):
                pending.append(arg)


def classify_failure(error: BaseException) -> str:
    """
    Map a transport exception to a failure classification.

    Args:
        error: Exception raised by the Docker client

    Returns:
        One of the HostCollectionError classification constants
    """
    chain = list(_exception_chain(error))

    for current in chain:
        if isinstance(current, socket.gaierror):
            return HostCollectionError.DNS_FAILURE
        if isinstance(current, ConnectionRefusedError):
            return HostCollectionError.CONNECTION_REFUSED
        if isinstance(current, ConnectionResetError):
            return HostCollectionError.RESET
        if isinstance(current, (TimeoutError, asyncio.TimeoutError, socket.timeout)):
            return HostCollectionError.TIMEOUT

    text = " ".join(str(current) for current in chain).lower()
    if any(marker in text for marker in _DNS_MARKERS):
        return HostCollectionError.DNS_FAILURE
    if any(marker in text for marker in _REFUSED_MARKERS):
        return HostCollectionError.CONNECTION_REFUSED
    if any(marker in text for marker in _RESET_MARKERS):
        return HostCollectionError.RESET
    if any(marker in text for marker in _TIMEOUT_MARKERS):
        return HostCollectionError.TIMEOUT
    return HostCollectionError.OTHER


def parse_exit_code(state: str, status: str) -> Optional[int]:
    """Exit code from a status such as 'Exited (137) 2 hours ago'."""
    if state == "running" or not status:
        return None
    match = _EXIT_CODE_RE.search(status)
    return int(match.group(1)) if match else None


def _container_name(item: Dict[str, Any]) -> str:
    names = item.get("Names") or []
    if names:
        return str(names[0]).lstrip("/")
    return str(item.get("Id", ""))[:12]


def _ports(item: Dict[str, Any]) -> List[PortRecord]:
    ports: Dict[tuple, PortRecord] = {}
    for raw in item.get("Ports") or []:
        if not raw or raw.get("PrivatePort") is None:
            continue
        port = PortRecord(
            private=int(raw["PrivatePort"]),
            public=int(raw["PublicPort"]) if raw.get("PublicPort") else None,
            type=raw.get("Type"),
        )
        # IPv4 and IPv6 bindings of the same port are listed twice
        ports.setdefault((port.private, port.public, port.type), port)
    return list(ports.values())


def _digest_from_image(image: str) -> Optional[str]:
    _, _, digest = image.partition("@")
    return digest or None


def to_container_record(item: Dict[str, Any]) -> ContainerRecord:
    """
    Build a ContainerRecord from a Docker 'containers/json' entry.

    Args:
        item: Raw container summary

    Returns:
        ContainerRecord
    """
    state = str(item.get("State") or "unknown")
    status = str(item.get("Status") or "")
    image = str(item.get("Image") or "")
    return ContainerRecord(
        id=str(item.get("Id", "")),
        name=_container_name(item),
        state=state,
        status=status,
        exit_code=parse_exit_code(state, status),
        image=image,
        image_id=item.get("ImageID"),
        image_digest=_digest_from_image(image),
        labels=dict(item.get("Labels") or {}),
        ports=_ports(item),
    )


def to_host_info(info: Dict[str, Any]) -> HostInfo:
    """
    Build a HostInfo from a Docker 'info' payload.

    MemTotal is preferred; MemoryTotal is used when MemTotal is missing.
    """
    memory_total = 0
    for key in ("MemTotal", "MemoryTotal"):
        value = info.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
            memory_total = int(value)
            break

    return HostInfo(
        server_version=info.get("ServerVersion"),
        memory_total=memory_total,
        cpus=info.get("NCPU"),
        operating_system=info.get("OperatingSystem"),
        architecture=info.get("Architecture"),
        raw=info,
    )


def pick_repo_digest(image: str, repo_digests: List[str]) -> Optional[str]:
    """
    Choose the RepoDigests entry belonging to the container's repository.

    Args:
        image: Image string the container was started from
        repo_digests: Entries of the form 'repo@sha256:...'

    Returns:
        The digest part, or None when there is no entry
    """
    if not repo_digests:
        return None
    wanted = get_image_base(parse_image_reference(image))
    for entry in repo_digests:
        name, _, digest = entry.partition("@")
        if digest and get_image_base(parse_image_reference(name)) == wanted:
            return digest
    return repo_digests[0].partition("@")[2] or None


class HostCollector:
    """Reads containers and daemon info from one Docker source at a time."""

    def __init__(self, docker_manager: Optional[DockerClientManager] = None) -> None:
        """
        Initialize host collector.

        Args:
            docker_manager: Client pool (defaults to the global pool)
        """
        self.settings = get_settings()
        self.docker_manager = docker_manager or get_docker_manager()
        self.metrics = get_metrics_collector()

    def _deadline_for(self, source: SourceConfig, deadline: Optional[Deadline]) -> Deadline:
        timeout = source.effective_timeout(self.settings.docker_api_timeout_s)
        if deadline is None:
            return Deadline.after(timeout)
        return deadline.limit(timeout)

    async def _call(
        self,
        source: SourceConfig,
        operation: str,
        fn: Callable[[DockerClient], T],
        deadline: Deadline,
    ) -> T:
        """
        Run one blocking Docker call under a deadline.

        Raises:
            HostCollectionError: On timeout or transport failure
        """
        if deadline.expired:
            raise HostCollectionError(source.name, HostCollectionError.TIMEOUT, operation)

        def _run() -> T:
            return fn(self.docker_manager.get_client(source))

        try:
            return await asyncio.wait_for(asyncio.to_thread(_run), timeout=deadline.remaining())
        except asyncio.TimeoutError as e:
            raise HostCollectionError(
                source.name, HostCollectionError.TIMEOUT, operation, e
            ) from e
        except Exception as e:
            raise HostCollectionError(source.name, classify_failure(e), operation, e) from e

    async def list_containers(
        self, source: SourceConfig, deadline: Optional[Deadline] = None
    ) -> List[ContainerRecord]:
        """
        List all containers of a source, including stopped ones.

        Raises:
            HostCollectionError: On timeout, transport failure or a malformed entry
        """
        call_deadline = self._deadline_for(source, deadline)
        raw = await self._call(
            source,
            "listContainers",
            lambda client: client.api.containers(all=True),
            call_deadline,
        )
        try:
            return [to_container_record(item) for item in raw or []]
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise HostCollectionError(
                source.name, HostCollectionError.OTHER, "listContainers", e
            ) from e

    async def get_host_info(
        self, source: SourceConfig, deadline: Optional[Deadline] = None
    ) -> HostInfo:
        """
        Fetch Docker daemon info for a source.

        Raises:
            HostCollectionError: On timeout or transport failure
        """
        call_deadline = self._deadline_for(source, deadline)
        info = await self._call(source, "getHostInfo", lambda client: client.api.info(), call_deadline)
        try:
            return to_host_info(info or {})
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise HostCollectionError(source.name, HostCollectionError.OTHER, "getHostInfo", e) from e

    async def get_container_stats(
        self,
        source: SourceConfig,
        container_id: str,
        deadline: Optional[Deadline] = None,
    ) -> Dict[str, Any]:
        """
        Fetch a one-shot stats sample for a container.

        Raises:
            HostCollectionError: On timeout or transport failure
        """
        call_deadline = self._deadline_for(source, deadline)
        return await self._call(
            source,
            "getContainerStats",
            lambda client: client.api.stats(container_id, stream=False),
            call_deadline,
        )

    async def ping(self, source: SourceConfig, deadline: Optional[Deadline] = None) -> bool:
        """
        Check that a source answers.

        Raises:
            HostCollectionError: On timeout or transport failure
        """
        call_deadline = self._deadline_for(source, deadline)
        return bool(await self._call(source, "ping", lambda client: client.ping(), call_deadline))

    async def _fill_digests(
        self, source: SourceConfig, records: List[ContainerRecord], deadline: Deadline
    ) -> List[ContainerRecord]:
        """Look up repository digests for containers started from a tag."""
        image_ids = {
            record.image_id for record in records if record.image_id and not record.image_digest
        }
        if not image_ids:
            return records

        async def _inspect(image_id: str) -> tuple[str, List[str]]:
            try:
                attrs = await self._call(
                    source,
                    "inspectImage",
                    lambda client: client.api.inspect_image(image_id),
                    deadline,
                )
            except HostCollectionError as e:
                logger.debug(
                    "Image inspect failed",
                    extra={"source": source.name, "image_id": image_id, "error": str(e)},
                )
                return image_id, []
            digests = attrs.get("RepoDigests") if isinstance(attrs, dict) else None
            if not isinstance(digests, list):
                return image_id, []
            return image_id, [digest for digest in digests if isinstance(digest, str)]

        results = dict(await asyncio.gather(*(_inspect(image_id) for image_id in image_ids)))

        filled: List[ContainerRecord] = []
        for record in records:
            if record.image_digest or not record.image_id:
                filled.append(record)
                continue
            digest = pick_repo_digest(record.image, results.get(record.image_id, []))
            if digest:
                record = replace(record, image_digest=digest)
            filled.append(record)
        return filled

    async def collect(
        self, source: SourceConfig, deadline: Optional[Deadline] = None
    ) -> HostCollection | SourceWarning:
        """
        Collect containers and host info from one source.

        Never raises for transport problems: an unreachable host becomes a
        SourceWarning, and the call returns no later than the source timeout
        (or the caller's deadline, if earlier).

        Args:
            source: Source to read
            deadline: Outer deadline of the calling request

        Returns:
            HostCollection on success, SourceWarning on failure
        """
        call_deadline = self._deadline_for(source, deadline)
        started = time.monotonic()

        try:
            records, host_info = await asyncio.gather(
                self.list_containers(source, call_deadline),
                self._host_info_or_none(source, call_deadline),
            )
            records = await self._fill_digests(source, records, call_deadline)
        except HostCollectionError as e:
            elapsed = time.monotonic() - started
            self.metrics.record_host_collection(source.name, e.failure, elapsed)
            logger.warning(
                "Unable to reach Docker source",
                extra={
                    "source": source.name,
                    "failure": e.failure,
                    "operation": e.operation,
                    "error": str(e.original_error) if e.original_error else str(e),
                    "duration_s": round(elapsed, 3),
                },
            )
            return SourceWarning(source=source.name, message=str(e))

        elapsed = time.monotonic() - started
        self.metrics.record_host_collection(source.name, "ok", elapsed)
        self.metrics.set_containers_seen(source.name, len(records))
        logger.debug(
            "Collected containers",
            extra={"source": source.name, "count": len(records), "duration_s": round(elapsed, 3)},
        )
        return HostCollection(source=source.name, containers=records, host_info=host_info)

    async def _host_info_or_none(
        self, source: SourceConfig, deadline: Deadline
    ) -> Optional[HostInfo]:
        try:
            return await self.get_host_info(source, deadline)
        except HostCollectionError as e:
            logger.debug(
                "Host info unavailable",
                extra={"source": source.name, "failure": e.failure},
            )
            return None


# Global instance
_host_collector: HostCollector | None = None


def get_host_collector() -> HostCollector:
    """Get or create host collector instance."""
    global _host_collector
    if _host_collector is None:
        _host_collector = HostCollector()
    return _host_collector
