"""Unit tests for settings and Docker source loading."""

import json

import pytest

from pocker.config import (
    find_source,
    get_settings,
    load_icon_map,
    load_sources,
)
from pocker.config.sources import assign_colors, parse_json_source, parse_legacy_source
from pocker.utils.exceptions import SourceConfigError, SourceNotFoundError


def test_settings_defaults():
    """Test default settings values."""
    settings = get_settings()
    assert settings.docker_api_timeout_s == 10.0
    assert settings.version_batch_size == 10
    assert settings.version_batch_timeout_s == 30.0
    assert settings.docker_hub_enabled is True
    assert settings.port == 4173


def test_derived_ttls(configure):
    """Test the CDN cap and hub page TTL."""
    configure(icon_ttl_s=604800, description_ttl_s=3600)
    settings = get_settings()
    assert settings.cdn_icon_ttl_s == 86400
    assert settings.hub_page_ttl_s == 604800


def test_parse_legacy_source():
    """Test the 'name|key=value' format."""
    source = parse_legacy_source(
        "nas|endpoint=tcp://10.0.0.5:2375|label=NAS|ui=http://nas.lan:9000|timeout=5|color=#ff0000"
    )
    assert source.name == "nas"
    assert source.display_name == "NAS"
    assert source.endpoint == "tcp://10.0.0.5:2375"
    assert source.ui_base == "http://nas.lan:9000"
    assert source.timeout_s == 5.0
    assert source.color == "#ff0000"


def test_parse_json_source_with_auth_and_tls():
    """Test JSON sources with credentials and TLS material."""
    source = parse_json_source(
        {
            "name": "edge",
            "displayName": "Edge",
            "endpoint": "https://edge.lan:2376",
            "user": "admin",
            "password": "secret",
            "ca": "certs/ca.pem",
            "tls_reject_unauthorized": "false",
        }
    )
    assert source.display_name == "Edge"
    assert source.auth.username == "admin"
    assert source.tls.ca_path == "certs/ca.pem"
    assert source.tls.verify is False


def test_socket_prefix_is_stripped():
    """Test unix:// socket paths."""
    source = parse_json_source({"name": "local", "socket": "unix:///run/docker.sock"})
    assert source.socket_path == "/run/docker.sock"
    assert source.display_name == "local"


def test_source_without_connection_is_rejected():
    """Test that a source needs an endpoint or socket."""
    with pytest.raises(SourceConfigError):
        parse_json_source({"name": "broken"})


def test_invalid_color_is_ignored():
    """Test that malformed colors are dropped."""
    source = parse_json_source({"name": "a", "endpoint": "tcp://a:2375", "color": "red"})
    assert source.color is None


def test_assign_colors_fills_missing():
    """Test that every source ends up with a color."""
    sources = assign_colors(
        [
            parse_json_source({"name": "a", "endpoint": "tcp://a:2375"}),
            parse_json_source({"name": "b", "endpoint": "tcp://b:2375", "color": "#123456"}),
        ]
    )
    assert sources[0].color and sources[0].color.startswith("#")
    assert sources[1].color == "#123456"


def test_sources_file_is_exclusive(isolated_settings, configure):
    """Test that a sources file replaces environment sources."""
    path = isolated_settings / "docker-sources.json"
    path.write_text(json.dumps([{"name": "file-host", "endpoint": "tcp://f:2375"}]))
    configure(docker_sources="env-host|endpoint=tcp://e:2375")

    sources = load_sources()
    assert [source.name for source in sources] == ["file-host"]


def test_environment_sources_json_and_duplicates(configure):
    """Test JSON environment sources with a duplicate name."""
    configure(
        docker_sources=json.dumps(
            [
                {"name": "one", "endpoint": "tcp://one:2375"},
                {"name": "one", "endpoint": "tcp://other:2375"},
                {"name": "two", "endpoint": "tcp://two:2375"},
            ]
        )
    )
    sources = load_sources()
    assert [source.name for source in sources] == ["one", "two"]
    assert sources[0].endpoint == "tcp://one:2375"


def test_environment_sources_legacy(configure):
    """Test legacy environment sources with comments."""
    configure(docker_sources="a|endpoint=tcp://a:2375;b|endpoint=tcp://b:2375 # lab")
    sources = load_sources()
    assert [source.name for source in sources] == ["a", "b"]


def test_find_source(configure):
    """Test lookup by name."""
    configure(docker_sources="a|endpoint=tcp://a:2375")
    assert find_source("a").endpoint == "tcp://a:2375"
    with pytest.raises(SourceNotFoundError):
        find_source("missing")


def test_load_icon_map(isolated_settings):
    """Test reading the icon override map."""
    (isolated_settings / "icon-map.json").write_text(
        json.dumps({"plexinc/pms-docker": "https://icons.lan/plex.png", "empty": ""})
    )
    assert load_icon_map() == {"plexinc/pms-docker": "https://icons.lan/plex.png"}


def test_missing_icon_map_is_empty():
    """Test that a missing icon map is not an error."""
    assert load_icon_map() == {}
