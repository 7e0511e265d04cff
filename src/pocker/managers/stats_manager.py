"""Live resource usage of running containers."""

import asyncio
from typing import Any, Dict, List, Optional

from pocker.config import SourceConfig, get_settings, get_sources
from pocker.managers.host_collector import HostCollector, get_host_collector
from pocker.models import ContainerMemory, ContainerUsage, MemoryUsage, ServerDetails
from pocker.utils import get_logger
from pocker.utils.deadline import Deadline
from pocker.utils.exceptions import HostCollectionError

logger = get_logger(__name__)

TOP_CONTAINERS = 5
MAX_CPU_PERCENT = 1000.0
# Per-container stats timeouts; one-shot stats take about a second each
HOST_MEMORY_STATS_TIMEOUT_S = 10.0
SERVER_DETAILS_STATS_TIMEOUT_S = 3.0


def _number(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return value


def calculate_memory_usage(stats: Dict[str, Any]) -> int:
    """
    Resident memory of a container from a stats sample.

    Anonymous memory plus kernel stack and slab when cgroup details are
    present, otherwise usage minus file cache, otherwise raw usage.
    """
    memory = stats.get("memory_stats") or {}
    usage = _number(memory.get("usage"))
    if not usage:
        return 0

    details = memory.get("stats")
    if isinstance(details, dict):
        rss = sum(
            _number(details.get(key))
            for key in ("active_anon", "inactive_anon", "kernel_stack", "slab")
        )
        if rss > 0:
            return int(rss)
        file_cache = _number(details.get("active_file")) + _number(details.get("inactive_file"))
        return int(max(0, usage - file_cache))

    return int(_number(memory.get("max_usage")) or usage)


def calculate_cpu_percent(stats: Dict[str, Any]) -> float:
    """
    CPU usage in percent of one core, from the sample's precpu delta.

    Clamped to 0..1000; idle or incomplete samples report 0.
    """
    cpu = stats.get("cpu_stats") or {}
    precpu = stats.get("precpu_stats") or {}
    cpu_usage = cpu.get("cpu_usage") or {}
    precpu_usage = precpu.get("cpu_usage") or {}

    values = (
        cpu_usage.get("total_usage"),
        precpu_usage.get("total_usage"),
        cpu.get("system_cpu_usage"),
        precpu.get("system_cpu_usage"),
    )
    if not all(isinstance(value, (int, float)) for value in values):
        return 0.0

    cpu_delta = values[0] - values[1]
    system_delta = values[2] - values[3]
    online = cpu.get("online_cpus") or len(cpu_usage.get("percpu_usage") or []) or 1
    if system_delta <= 0 or cpu_delta <= 0:
        return 0.0

    percent = (cpu_delta / system_delta) * online * 100.0
    return min(max(percent, 0.0), MAX_CPU_PERCENT)


def to_container_usage(stats: Dict[str, Any]) -> ContainerUsage:
    """Summarize a one-shot stats sample."""
    memory = stats.get("memory_stats") or {}
    usage = calculate_memory_usage(stats)
    limit = int(_number(memory.get("limit")))

    rx_bytes = 0
    tx_bytes = 0
    for network in (stats.get("networks") or {}).values():
        rx_bytes += int(_number(network.get("rx_bytes")))
        tx_bytes += int(_number(network.get("tx_bytes")))

    return ContainerUsage(
        memory_usage=usage,
        memory_limit=limit,
        memory_percent=(usage / limit) * 100.0 if limit > 0 else 0.0,
        cpu_percent=calculate_cpu_percent(stats),
        network_rx_bytes=rx_bytes,
        network_tx_bytes=tx_bytes,
        pids=int(_number((stats.get("pids_stats") or {}).get("current"))),
    )


class StatsManager:
    """Backfills live usage for containers listed by an earlier snapshot."""

    def __init__(self, collector: Optional[HostCollector] = None) -> None:
        """
        Initialize stats manager.

        Args:
            collector: Host collector (defaults to the global one)
        """
        self.settings = get_settings()
        self.collector = collector or get_host_collector()

    async def container_stats(
        self, source: SourceConfig, container_id: str, deadline: Optional[Deadline] = None
    ) -> ContainerUsage:
        """
        Get live usage of one container.

        Raises:
            HostCollectionError: If the stats call fails or times out
        """
        stats = await self.collector.get_container_stats(source, container_id, deadline)
        return to_container_usage(stats or {})

    async def _running_memory(
        self, source: SourceConfig, deadline: Deadline, per_container_timeout_s: float
    ) -> tuple[int, List[ContainerMemory], int]:
        """Memory per running container, plus the total container count."""
        records = await self.collector.list_containers(source, deadline)
        running = [record for record in records if record.is_running]

        async def _sample(record) -> Optional[ContainerMemory]:
            try:
                stats = await self.collector.get_container_stats(
                    source, record.id, deadline.limit(per_container_timeout_s)
                )
            except HostCollectionError as e:
                logger.debug(
                    "Container stats unavailable",
                    extra={"source": source.name, "container": record.name, "failure": e.failure},
                )
                return None
            return ContainerMemory(name=record.name, memory=calculate_memory_usage(stats or {}))

        samples = await asyncio.gather(*(_sample(record) for record in running))
        memories = [sample for sample in samples if sample is not None and sample.memory > 0]
        return len(records), memories, len(running)

    async def host_memory(
        self, source: SourceConfig, deadline: Optional[Deadline] = None
    ) -> Optional[MemoryUsage]:
        """
        Memory used by running containers of one host.

        Returns:
            MemoryUsage, or None when nothing could be measured

        Raises:
            HostCollectionError: If the host cannot be listed
        """
        deadline = deadline or Deadline.after(self.settings.request_budget_s)
        _, memories, _ = await self._running_memory(
            source, deadline, HOST_MEMORY_STATS_TIMEOUT_S
        )
        used = sum(item.memory for item in memories)
        info = await self.collector.get_host_info(source, deadline)
        if used <= 0 or info.memory_total <= 0:
            return None
        return MemoryUsage(
            total=info.memory_total,
            used=used,
            available=info.memory_total - used,
        )

    async def host_memory_stats(
        self, sources: Optional[List[SourceConfig]] = None, deadline: Optional[Deadline] = None
    ) -> Dict[str, MemoryUsage]:
        """
        Memory usage of every host, keyed by source name.

        Hosts that fail or have nothing running are left out.
        """
        sources = list(sources if sources is not None else get_sources())
        deadline = deadline or Deadline.after(self.settings.request_budget_s)

        async def _one(source: SourceConfig) -> Optional[MemoryUsage]:
            try:
                return await self.host_memory(source, deadline)
            except HostCollectionError as e:
                logger.warning(
                    "Unable to fetch memory stats",
                    extra={"source": source.name, "failure": e.failure},
                )
                return None

        results = await asyncio.gather(*(_one(source) for source in sources))
        return {
            source.name: usage for source, usage in zip(sources, results) if usage is not None
        }

    async def server_details(
        self, source: SourceConfig, deadline: Optional[Deadline] = None
    ) -> ServerDetails:
        """
        Memory breakdown of one host.

        Raises:
            HostCollectionError: If the host cannot be listed
        """
        deadline = deadline or Deadline.after(self.settings.request_budget_s)
        total, memories, running = await self._running_memory(
            source, deadline, SERVER_DETAILS_STATS_TIMEOUT_S
        )
        memories.sort(key=lambda item: item.memory, reverse=True)
        info = await self.collector.get_host_info(source, deadline)

        return ServerDetails(
            source_id=source.name,
            top_containers=memories[:TOP_CONTAINERS],
            all_containers=memories,
            memory_total=info.memory_total,
            total_containers=total,
            running_containers=running,
        )


# Global instance
_stats_manager: StatsManager | None = None


def get_stats_manager() -> StatsManager:
    """Get or create stats manager instance."""
    global _stats_manager
    if _stats_manager is None:
        _stats_manager = StatsManager()
    return _stats_manager
