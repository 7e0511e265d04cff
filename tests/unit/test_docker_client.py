"""Unit tests for the Docker client pool."""

from unittest.mock import MagicMock, patch

import pytest

from pocker.config import SourceConfig
from pocker.config.sources import SourceAuth, SourceTLS
from pocker.utils.docker_client import DockerClientManager, close_docker_clients, get_docker_manager


@pytest.fixture
def mock_docker():
    """Replace the SDK client constructor."""
    with patch("pocker.utils.docker_client.docker.DockerClient") as client_cls:
        client_cls.side_effect = lambda **kwargs: MagicMock(name=kwargs["base_url"])
        yield client_cls


def test_socket_source(mock_docker, alpha_source):
    """Test local sockets use a unix:// base URL and the default timeout."""
    DockerClientManager().get_client(alpha_source)

    mock_docker.assert_called_once_with(base_url="unix:///var/run/docker.sock", timeout=10)


def test_tcp_endpoint_without_tls(mock_docker, beta_source):
    """Test plain TCP endpoints and the one second timeout floor."""
    DockerClientManager().get_client(beta_source)

    kwargs = mock_docker.call_args.kwargs
    assert kwargs["base_url"] == "tcp://beta.lan:2375"
    assert kwargs["tls"] is False
    assert kwargs["timeout"] == 1


def test_https_endpoint_with_tls_and_auth(mock_docker):
    """Test TLS material and basic auth on a remote endpoint."""
    source = SourceConfig(
        name="gamma",
        display_name="Gamma",
        endpoint="https://gamma.lan:2376",
        auth=SourceAuth(username="ops", password="secret"),
        tls=SourceTLS(ca_path="/certs/ca.pem", verify=False),
    )

    with patch("pocker.utils.docker_client.TLSConfig") as tls_cls:
        client = DockerClientManager().get_client(source)

    kwargs = mock_docker.call_args.kwargs
    assert kwargs["base_url"] == "tcp://gamma.lan:2376"
    assert kwargs["tls"] is tls_cls.return_value
    tls_cls.assert_called_once_with(client_cert=None, ca_cert="/certs/ca.pem", verify=False)
    assert client.api.auth == ("ops", "secret")


def test_credentials_from_endpoint_url(mock_docker):
    """Test user info embedded in the endpoint URL."""
    source = SourceConfig(name="delta", display_name="Delta", endpoint="http://ops:pw@delta.lan")

    client = DockerClientManager().get_client(source)

    assert mock_docker.call_args.kwargs["base_url"] == "tcp://delta.lan:80"
    assert client.api.auth == ("ops", "pw")


def test_clients_are_pooled_per_source(mock_docker, alpha_source, beta_source):
    """Test one client per source name."""
    manager = DockerClientManager()

    first = manager.get_client(alpha_source)
    assert manager.get_client(alpha_source) is first
    assert manager.get_client(beta_source) is not first
    assert mock_docker.call_count == 2


def test_close_resets_global_pool(mock_docker, alpha_source):
    """Test closing the pool closes clients and drops the singleton."""
    manager = get_docker_manager()
    client = manager.get_client(alpha_source)
    client.close.side_effect = RuntimeError("already closed")

    close_docker_clients()

    client.close.assert_called_once()
    assert get_docker_manager() is not manager
