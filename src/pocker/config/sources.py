"""Docker source definitions and loading."""

import json
import os
import re
from functools import lru_cache
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from pocker.config.settings import Settings, get_settings
from pocker.utils import get_logger
from pocker.utils.colors import generate_color_for_string
from pocker.utils.exceptions import SourceConfigError, SourceNotFoundError

logger = get_logger(__name__)

SOURCE_DELIMITER = re.compile(r"[;\n]")
FIELD_DELIMITER = "|"
HEX_COLOR = re.compile(r"^#([A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})$")


class SourceAuth(BaseModel):
    """Basic-auth credentials for a remote Docker endpoint."""

    model_config = ConfigDict(frozen=True)

    username: Optional[str] = None
    password: Optional[str] = None


class SourceTLS(BaseModel):
    """TLS material for a remote Docker endpoint."""

    model_config = ConfigDict(frozen=True)

    ca_path: Optional[str] = None
    cert_path: Optional[str] = None
    key_path: Optional[str] = None
    verify: bool = True


class SourceConfig(BaseModel):
    """One Docker host the dashboard reads from."""

    model_config = ConfigDict(frozen=True)

    name: str
    display_name: str
    endpoint: Optional[str] = None
    socket_path: Optional[str] = None
    ui_base: Optional[str] = None
    color: Optional[str] = None
    auth: Optional[SourceAuth] = None
    tls: Optional[SourceTLS] = None
    timeout_s: Optional[float] = None

    def effective_timeout(self, default_s: float) -> float:
        """Per-source timeout override, else the global one."""
        return self.timeout_s if self.timeout_s else default_s


def _coerce_bool(value: Any) -> Optional[bool]:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    lowered = str(value).strip().lower()
    if lowered in ("true", "1", "yes"):
        return True
    if lowered in ("false", "0", "no"):
        return False
    return None


def _normalize_socket_path(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    if value.startswith("unix://"):
        return value[len("unix://") :]
    return value


def _validate_color(name: str, color: Any) -> Optional[str]:
    if not color or not isinstance(color, str):
        return None
    if not HEX_COLOR.match(color):
        logger.warning(
            "Invalid color format for source, ignoring",
            extra={"source": name, "color": color},
        )
        return None
    return color


def _build_source(name: Any, values: Dict[str, Any]) -> SourceConfig:
    """Build a SourceConfig from already-flattened key/value pairs."""
    if not name or not isinstance(name, str):
        raise SourceConfigError(str(name), 'a "name" field is required')

    endpoint = values.get("endpoint") or None
    socket_path = _normalize_socket_path(values.get("socket") or values.get("socketpath"))
    if not endpoint and not socket_path:
        raise SourceConfigError(name, "must define an endpoint or socket path")

    username = values.get("user") or values.get("username")
    password = values.get("password")
    auth = SourceAuth(username=username, password=password) if username or password else None

    tls_verify = _coerce_bool(values.get("tlsrejectunauthorized"))
    tls = None
    if values.get("ca") or values.get("cert") or values.get("key") or tls_verify is not None:
        tls = SourceTLS(
            ca_path=values.get("ca"),
            cert_path=values.get("cert"),
            key_path=values.get("key"),
            verify=True if tls_verify is None else tls_verify,
        )

    timeout_s = None
    raw_timeout = values.get("timeout") or values.get("timeouts")
    if raw_timeout not in (None, ""):
        try:
            timeout_s = float(raw_timeout)
        except (TypeError, ValueError):
            raise SourceConfigError(name, f"timeout '{raw_timeout}' is not a number")

    return SourceConfig(
        name=name,
        display_name=values.get("label") or values.get("displayname") or name,
        endpoint=endpoint,
        socket_path=socket_path,
        ui_base=values.get("ui") or values.get("uibase"),
        color=_validate_color(name, values.get("color")),
        auth=auth,
        tls=tls,
        timeout_s=timeout_s,
    )


def parse_json_source(obj: Any) -> Optional[SourceConfig]:
    """
    Parse one source from a JSON object.

    Args:
        obj: Decoded JSON value

    Returns:
        SourceConfig, or None when obj is not an object

    Raises:
        SourceConfigError: If the object does not describe a usable source
    """
    if not isinstance(obj, dict):
        return None
    values = {str(key).lower().replace("_", ""): value for key, value in obj.items()}
    return _build_source(obj.get("name") or obj.get("id"), values)


def parse_legacy_source(raw: str) -> Optional[SourceConfig]:
    """
    Parse one 'name|key=value|...' source entry.

    Args:
        raw: A single entry

    Returns:
        SourceConfig, or None for an empty entry
    """
    segments = [segment.strip() for segment in raw.split(FIELD_DELIMITER)]
    segments = [segment for segment in segments if segment]
    if not segments:
        return None

    name = segments.pop(0)
    values: Dict[str, str] = {}
    for segment in segments:
        key, _, value = segment.partition("=")
        if key.strip():
            values[key.strip().lower()] = value.strip()
    return _build_source(name, values)


def _parse_json_sources(payload: Any, origin: str) -> List[SourceConfig]:
    items = payload if isinstance(payload, list) else [payload]
    sources: List[SourceConfig] = []
    for index, item in enumerate(items):
        try:
            source = parse_json_source(item)
        except SourceConfigError as e:
            logger.error(
                "Failed to parse source",
                extra={"origin": origin, "index": index + 1, "error": str(e)},
            )
            continue
        if source:
            sources.append(source)
    return sources


def _parse_legacy_sources(raw: str) -> List[SourceConfig]:
    cleaned = raw.strip().strip("\"'")
    sources: List[SourceConfig] = []
    for line in SOURCE_DELIMITER.split(cleaned):
        line = line.strip().strip("\"'")
        line = line.split("#", 1)[0].strip()
        if not line:
            continue
        try:
            source = parse_legacy_source(line)
        except SourceConfigError as e:
            logger.error("Failed to parse legacy source", extra={"error": str(e)})
            continue
        if source:
            sources.append(source)
    return sources


def assign_colors(sources: List[SourceConfig]) -> List[SourceConfig]:
    """
    Give every source a color, keeping colors unique where possible.

    Args:
        sources: Loaded sources, some possibly without a color

    Returns:
        New list of sources that all carry a color
    """
    taken = {source.color.lower() for source in sources if source.color}
    colored: List[SourceConfig] = []
    for source in sources:
        if source.color:
            colored.append(source)
            continue
        color = generate_color_for_string(source.name)
        attempts = 0
        while color.lower() in taken and attempts < 20:
            color = generate_color_for_string(f"{source.name}-{attempts}")
            attempts += 1
        taken.add(color.lower())
        colored.append(source.model_copy(update={"color": color}))
    return colored


def load_sources(settings: Optional[Settings] = None) -> List[SourceConfig]:
    """
    Load Docker sources.

    A sources file, when present, is the complete list. Otherwise the local
    socket (unless disabled) is combined with POCKER_DOCKER_SOURCES.

    Args:
        settings: Settings to read from (defaults to the global settings)

    Returns:
        List of sources, each with a display color
    """
    settings = settings or get_settings()
    sources: List[SourceConfig] = []

    sources_file = settings.docker_sources_file
    if not os.path.isabs(sources_file):
        sources_file = os.path.join(os.getcwd(), sources_file)

    if os.path.exists(sources_file):
        try:
            with open(sources_file, encoding="utf-8") as handle:
                payload = json.load(handle)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(
                "Failed to read sources file, falling back to environment",
                extra={"path": sources_file, "error": str(e)},
            )
        else:
            sources = assign_colors(_parse_json_sources(payload, sources_file))
            logger.info(
                "Loaded Docker sources from file",
                extra={"path": sources_file, "count": len(sources)},
            )
            return sources

    if not settings.docker_socket_disable:
        socket_path = _normalize_socket_path(settings.docker_socket)
        if socket_path and (
            settings.docker_socket.startswith("unix://") or os.path.exists(socket_path)
        ):
            sources.append(
                SourceConfig(
                    name="local",
                    display_name=settings.docker_socket_label,
                    socket_path=socket_path,
                )
            )

    raw = (settings.docker_sources or "").strip()
    if raw:
        parsed: List[SourceConfig] = []
        if raw.startswith("[") or raw.startswith("{"):
            try:
                parsed = _parse_json_sources(json.loads(raw), "POCKER_DOCKER_SOURCES")
            except json.JSONDecodeError as e:
                logger.warning(
                    "POCKER_DOCKER_SOURCES is not valid JSON, trying legacy format",
                    extra={"error": str(e)},
                )
                parsed = _parse_legacy_sources(raw)
        else:
            parsed = _parse_legacy_sources(raw)
        sources.extend(parsed)

    names = set()
    unique: List[SourceConfig] = []
    for source in sources:
        if source.name in names:
            logger.warning("Duplicate source name ignored", extra={"source": source.name})
            continue
        names.add(source.name)
        unique.append(source)

    sources = assign_colors(unique)
    logger.info("Loaded Docker sources", extra={"count": len(sources)})
    return sources


def load_icon_map(settings: Optional[Settings] = None) -> Dict[str, str]:
    """
    Load the operator icon override map.

    Args:
        settings: Settings to read from (defaults to the global settings)

    Returns:
        Mapping of image string or repository base to icon URL
    """
    settings = settings or get_settings()
    path = settings.icon_map_file
    if not os.path.isabs(path):
        path = os.path.join(os.getcwd(), path)
    if not os.path.exists(path):
        logger.info("Icon map file not found, skipping", extra={"path": path})
        return {}

    try:
        with open(path, encoding="utf-8") as handle:
            payload = json.load(handle)
    except (OSError, json.JSONDecodeError) as e:
        logger.error("Failed to read icon map", extra={"path": path, "error": str(e)})
        return {}

    if not isinstance(payload, dict):
        logger.error("Icon map must be a JSON object", extra={"path": path})
        return {}

    icon_map = {str(key): str(value) for key, value in payload.items() if value}
    logger.info("Loaded icon map", extra={"path": path, "count": len(icon_map)})
    return icon_map


@lru_cache
def get_sources() -> List[SourceConfig]:
    """Get the sources loaded once for the process lifetime."""
    return load_sources()


def find_source(name: str) -> SourceConfig:
    """
    Find a configured source by name.

    Raises:
        SourceNotFoundError: If no source has that name
    """
    for source in get_sources():
        if source.name == name:
            return source
    raise SourceNotFoundError(name)
