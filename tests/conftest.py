"""Test configuration and fixtures."""

from typing import Any, Callable, Dict, List, Optional

import pytest

from pocker.config import SourceConfig, get_settings, get_sources
from pocker.managers import aggregator, host_collector, metadata_resolver, stats_manager, version_resolver
from pocker.utils import cache, docker_client


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_path):
    """Point configuration at an empty temp dir and reset global singletons."""
    monkeypatch.setenv("POCKER_DOCKER_SOURCES_FILE", str(tmp_path / "docker-sources.json"))
    monkeypatch.setenv("POCKER_ICON_MAP_FILE", str(tmp_path / "icon-map.json"))
    monkeypatch.setenv("POCKER_DOCKER_SOCKET_DISABLE", "true")
    monkeypatch.delenv("POCKER_DOCKER_SOURCES", raising=False)
    get_settings.cache_clear()
    get_sources.cache_clear()

    monkeypatch.setattr(cache, "_cache_registry", None)
    monkeypatch.setattr(docker_client, "_docker_manager", None)
    monkeypatch.setattr(host_collector, "_host_collector", None)
    monkeypatch.setattr(metadata_resolver, "_metadata_resolver", None)
    monkeypatch.setattr(version_resolver, "_version_resolver", None)
    monkeypatch.setattr(stats_manager, "_stats_manager", None)
    monkeypatch.setattr(aggregator, "_aggregator", None)

    yield tmp_path

    get_settings.cache_clear()
    get_sources.cache_clear()


@pytest.fixture
def configure(monkeypatch):
    """Set POCKER_* environment values and reload settings."""

    def _configure(**values: Any) -> None:
        for key, value in values.items():
            monkeypatch.setenv(f"POCKER_{key.upper()}", str(value))
        get_settings.cache_clear()
        get_sources.cache_clear()

    return _configure


@pytest.fixture
def alpha_source() -> SourceConfig:
    """Local socket source."""
    return SourceConfig(
        name="alpha",
        display_name="Alpha",
        socket_path="/var/run/docker.sock",
        color="#112233",
    )


@pytest.fixture
def beta_source() -> SourceConfig:
    """Remote source with a Portainer UI."""
    return SourceConfig(
        name="beta",
        display_name="Beta",
        endpoint="tcp://beta.lan:2375",
        ui_base="https://portainer.lan/#!/3/docker/containers",
        color="#445566",
        timeout_s=0.2,
    )


@pytest.fixture
def container_factory() -> Callable[..., Dict[str, Any]]:
    """Build raw Docker 'containers/json' entries."""

    def _make(
        container_id: str,
        name: str,
        image: str,
        state: str = "running",
        status: Optional[str] = None,
        labels: Optional[Dict[str, str]] = None,
        ports: Optional[List[Dict[str, Any]]] = None,
        image_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        return {
            "Id": container_id,
            "Names": [f"/{name}"],
            "Image": image,
            "ImageID": image_id,
            "State": state,
            "Status": status or ("Up 2 hours" if state == "running" else "Exited (0) 1 hour ago"),
            "Labels": labels or {},
            "Ports": ports or [],
        }

    return _make
