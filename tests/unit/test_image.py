"""Unit tests for image reference helpers."""

import pytest

from pocker.utils.image import (
    derive_docker_hub_slug,
    friendly_image_name,
    get_icon_name_variations,
    get_image_base,
    get_service_name_candidates,
    normalize_digest,
    parse_image_reference,
)


def test_parse_official_image():
    """Test an official Docker Hub image with a tag."""
    ref = parse_image_reference("nginx:1.25")
    assert ref.registry is None
    assert ref.repository == "nginx"
    assert ref.tag == "1.25"
    assert ref.digest is None
    assert ref.namespace_and_name == ("library", "nginx")


def test_parse_registry_with_port_and_digest():
    """Test a private registry with a port, tag and digest."""
    ref = parse_image_reference("registry.lan:5000/team/app:2.0@sha256:ABCDEF")
    assert ref.registry == "registry.lan:5000"
    assert ref.repository == "team/app"
    assert ref.tag == "2.0"
    assert ref.digest == "sha256:ABCDEF"


def test_parse_explicit_docker_io():
    """Test that docker.io is treated as the default registry."""
    ref = parse_image_reference("docker.io/louislam/uptime-kuma")
    assert ref.registry is None
    assert ref.tag is None
    assert get_image_base(ref) == "louislam/uptime-kuma"


@pytest.mark.parametrize(
    "image,expected",
    [
        ("nginx", "nginx"),
        ("nginx:latest", "nginx"),
        ("Syncthing/Syncthing:1.27", "syncthing/syncthing"),
        ("ghcr.io/Org/App:1.0", "ghcr.io/org/app"),
        ("index.docker.io/library/redis:7", "library/redis"),
    ],
)
def test_image_base(image, expected):
    """Test normalized grouping keys."""
    assert get_image_base(parse_image_reference(image)) == expected


def test_docker_hub_slug():
    """Test product page paths."""
    assert derive_docker_hub_slug(parse_image_reference("nginx")) == "/_/nginx"
    assert derive_docker_hub_slug(parse_image_reference("library/redis")) == "/_/redis"
    assert derive_docker_hub_slug(parse_image_reference("portainer/portainer-ce")) == (
        "/r/portainer/portainer-ce"
    )
    assert derive_docker_hub_slug(parse_image_reference("ghcr.io/org/app")) is None


def test_friendly_name():
    """Test the last path segment is used."""
    assert friendly_image_name(parse_image_reference("ghcr.io/org/app:1")) == "app"


def test_normalize_digest():
    """Test algorithm prefix removal."""
    assert normalize_digest("sha256:ABC123") == "abc123"
    assert normalize_digest("abc123") == "abc123"
    assert normalize_digest("") is None
    assert normalize_digest(None) is None


def test_service_name_candidates():
    """Test icon name candidates."""
    assert get_service_name_candidates(parse_image_reference("louislam/uptime-kuma")) == [
        "uptime-kuma"
    ]
    assert get_service_name_candidates(parse_image_reference("portainer/portainer-ce")) == [
        "portainer-ce",
        "portainer",
    ]


def test_icon_name_variations():
    """Test icon spelling variations."""
    assert get_icon_name_variations("nginx-proxy-manager") == [
        "nginx-proxy-manager",
        "nginxproxymanager",
    ]
    assert get_icon_name_variations("Portainer-CE") == ["portainer-ce", "portainerce", "portainer"]
    assert get_icon_name_variations("nginx") == ["nginx"]
