"""Image reference parsing and naming helpers."""

import re
from dataclasses import dataclass
from typing import List, Optional

DEFAULT_REGISTRIES = frozenset({"docker.io", "index.docker.io", "registry-1.docker.io"})

_SUFFIX_RE = re.compile(r"(-ce|-ee|-agent|-latest|-docker)$")
_SEPARATORS_RE = re.compile(r"[-_]")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")


@dataclass(frozen=True)
class ImageReference:
    """Parsed form of an image string such as ghcr.io/org/app:1.2@sha256:..."""

    repository: str
    registry: Optional[str] = None
    tag: Optional[str] = None
    digest: Optional[str] = None

    @property
    def is_default_registry(self) -> bool:
        return self.registry is None or self.registry.lower() in DEFAULT_REGISTRIES

    @property
    def namespace_and_name(self) -> tuple[str, str]:
        """Docker Hub style (namespace, name); official images live in 'library'."""
        parts = self.repository.split("/")
        name = parts[-1]
        namespace = "/".join(parts[:-1]) or "library"
        return namespace, name


def parse_image_reference(image: str) -> ImageReference:
    """
    Parse an image string.

    The default registry is reported as None.

    Args:
        image: Image string as reported by Docker

    Returns:
        ImageReference
    """
    reference, _, digest = image.strip().partition("@")
    last_slash = reference.rfind("/")
    last_colon = reference.rfind(":")

    tag = None
    path = reference
    if last_colon > last_slash:
        tag = reference[last_colon + 1 :] or None
        path = reference[:last_colon]

    segments = path.split("/")
    registry = None
    if len(segments) > 1 and (
        "." in segments[0] or ":" in segments[0] or segments[0] == "localhost"
    ):
        registry = segments.pop(0)

    if registry and registry.lower() == "docker.io":
        registry = None

    return ImageReference(
        repository="/".join(segments),
        registry=registry,
        tag=tag,
        digest=digest or None,
    )


def get_image_base(ref: ImageReference) -> str:
    """
    Normalized repository used to group containers.

    Lowercased, with the default registry dropped, e.g. 'nginx' or
    'ghcr.io/org/app'.
    """
    repository = ref.repository.lower().strip()
    if ref.registry and not ref.is_default_registry:
        return f"{ref.registry.lower().strip()}/{repository}"
    return repository


def derive_docker_hub_slug(ref: ImageReference) -> Optional[str]:
    """Docker Hub product page path ('/_/nginx' or '/r/ns/name'), if on the Hub."""
    if not ref.is_default_registry:
        return None

    parts = ref.repository.split("/")
    if len(parts) == 1 or parts[0] == "library":
        return f"/_/{parts[-1]}"

    namespace = parts[0]
    repository = "/".join(parts[1:])
    return f"/r/{namespace}/{repository}" if namespace else None


def friendly_image_name(ref: ImageReference) -> str:
    """Last path segment of the repository."""
    return ref.repository.split("/")[-1]


def normalize_digest(digest: Optional[str]) -> Optional[str]:
    """Strip the 'sha256:' style algorithm prefix and lowercase."""
    if not digest:
        return None
    value = digest.strip()
    if ":" in value:
        value = value.split(":", 1)[1]
    return value.lower() or None


def get_service_name_candidates(ref: ImageReference) -> List[str]:
    """
    Names an icon library is likely to use for this image.

    Examples:
        louislam/uptime-kuma -> ['uptime-kuma']
        portainer/portainer-ce -> ['portainer-ce', 'portainer']
    """
    parts = ref.repository.split("/")
    repo_name = parts[-1]
    namespace = parts[0] if len(parts) > 1 else None
    base_name = _SUFFIX_RE.sub("", repo_name)

    candidates = [repo_name]
    if base_name != repo_name:
        candidates.append(base_name)
    if (
        namespace
        and namespace != "library"
        and repo_name.startswith(namespace)
        and namespace not in (repo_name, base_name)
    ):
        candidates.append(namespace)

    return list(dict.fromkeys(candidates))


def get_icon_name_variations(name: str) -> List[str]:
    """
    Spellings to probe in icon libraries.

    'nginx-proxy-manager' -> ['nginx-proxy-manager', 'nginxproxymanager']
    'portainer-ce' -> ['portainer-ce', 'portainerce', 'portainer']
    """
    lower = name.lower()
    variations = [lower]

    no_separators = _SEPARATORS_RE.sub("", lower)
    if no_separators != lower:
        variations.append(no_separators)

    base_name = _SUFFIX_RE.sub("", lower)
    if base_name != lower:
        variations.append(base_name)

    alphanumeric = _NON_ALNUM_RE.sub("", lower)
    if alphanumeric != lower:
        variations.append(alphanumeric)

    return [variant for variant in dict.fromkeys(variations) if variant]
