"""Configuration module for Pocker."""

from .settings import Settings, get_settings
from .sources import (
    SourceAuth,
    SourceConfig,
    SourceTLS,
    find_source,
    get_sources,
    load_icon_map,
    load_sources,
)

__all__ = [
    "Settings",
    "SourceAuth",
    "SourceConfig",
    "SourceTLS",
    "find_source",
    "get_settings",
    "get_sources",
    "load_icon_map",
    "load_sources",
]
