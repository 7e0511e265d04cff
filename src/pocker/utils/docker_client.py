"""Docker client pool for Pocker."""

import os
import threading
from typing import Dict, Optional
from urllib.parse import urlsplit, urlunsplit

import docker
from docker import DockerClient
from docker.tls import TLSConfig

from pocker.config import SourceConfig, get_settings
from pocker.utils import get_logger

logger = get_logger(__name__)


def _resolve_path(path: Optional[str]) -> Optional[str]:
    if not path:
        return None
    if os.path.isabs(path):
        return path
    return os.path.join(os.getcwd(), path)


class DockerClientManager:
    """Manages one Docker client per source, created on first use."""

    def __init__(self) -> None:
        """Initialize Docker client manager."""
        self._clients: Dict[str, DockerClient] = {}
        self._lock = threading.Lock()
        self.settings = get_settings()

    def _build_tls(self, source: SourceConfig, scheme: str) -> TLSConfig | bool:
        if scheme != "https" and not source.tls:
            return False

        tls = source.tls
        if tls is None:
            return TLSConfig(verify=True)

        ca_cert = _resolve_path(tls.ca_path)
        cert = _resolve_path(tls.cert_path)
        key = _resolve_path(tls.key_path)
        verify: bool | str = tls.verify
        if tls.verify and ca_cert:
            verify = ca_cert

        return TLSConfig(
            client_cert=(cert, key) if cert and key else None,
            ca_cert=ca_cert,
            verify=verify,
        )

    def _create_client(self, source: SourceConfig) -> DockerClient:
        """
        Build a Docker client for a source.

        Args:
            source: Source to connect to

        Returns:
            DockerClient instance (not yet contacted)
        """
        timeout = int(max(source.effective_timeout(self.settings.docker_api_timeout_s), 1))

        if source.socket_path:
            return docker.DockerClient(base_url=f"unix://{source.socket_path}", timeout=timeout)

        if not source.endpoint:
            raise ValueError(f"Source '{source.name}' does not define a Docker endpoint")

        parts = urlsplit(source.endpoint)
        scheme = parts.scheme.lower() or "tcp"
        if scheme == "ssh":
            return docker.DockerClient(base_url=source.endpoint, timeout=timeout)

        host = parts.hostname or ""
        port = parts.port or (443 if scheme == "https" else 80 if scheme == "http" else 2375)
        base_url = urlunsplit(("tcp", f"{host}:{port}", parts.path, "", ""))

        client = docker.DockerClient(
            base_url=base_url,
            tls=self._build_tls(source, "https" if scheme == "https" else scheme),
            timeout=timeout,
        )

        username = (source.auth.username if source.auth else None) or parts.username
        password = (source.auth.password if source.auth else None) or parts.password
        if username:
            # APIClient is a requests.Session
            client.api.auth = (username, password or "")

        return client

    def get_client(self, source: SourceConfig) -> DockerClient:
        """
        Get or create the Docker client for a source.

        Args:
            source: Source to connect to

        Returns:
            DockerClient instance shared by all callers for this source

        Raises:
            DockerException: If the client cannot be configured
        """
        client = self._clients.get(source.name)
        if client is not None:
            return client

        with self._lock:
            client = self._clients.get(source.name)
            if client is None:
                client = self._create_client(source)
                self._clients[source.name] = client
                logger.debug(
                    "Created Docker client",
                    extra={
                        "source": source.name,
                        "socket": source.socket_path,
                        "endpoint": source.endpoint,
                        "has_auth": bool(source.auth),
                        "has_tls": bool(source.tls),
                    },
                )
        return client

    def close(self) -> None:
        """Close all Docker client connections."""
        with self._lock:
            for name, client in self._clients.items():
                try:
                    client.close()
                except Exception as e:
                    logger.warning(
                        "Failed to close Docker client",
                        extra={"source": name, "error": str(e)},
                    )
            self._clients.clear()
        logger.info("Docker client connections closed")


# Global instance
_docker_manager: DockerClientManager | None = None


def get_docker_manager() -> DockerClientManager:
    """
    Get global Docker client pool.

    Returns:
        DockerClientManager instance
    """
    global _docker_manager
    if _docker_manager is None:
        _docker_manager = DockerClientManager()
    return _docker_manager


def get_docker_client(source: SourceConfig) -> DockerClient:
    """
    Get the pooled Docker client for a source.

    Returns:
        DockerClient instance
    """
    return get_docker_manager().get_client(source)


def close_docker_clients() -> None:
    """Close every pooled Docker client."""
    global _docker_manager
    if _docker_manager:
        _docker_manager.close()
        _docker_manager = None
