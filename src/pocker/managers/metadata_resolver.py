"""Icon and description lookup through an ordered set of providers."""

from dataclasses import dataclass, field
from html.parser import HTMLParser
from typing import Awaitable, Callable, Dict, List, Optional, Tuple
from urllib.parse import urlsplit

import httpx

from pocker.config import get_settings, load_icon_map
from pocker.utils import get_logger
from pocker.utils.cache import (
    CDN_FAILURE_TTL_S,
    CDN_ICONS,
    HUB_PAGE,
    HUB_PRODUCT,
    HUB_REPOSITORY,
    CacheRegistry,
    get_cache_registry,
)
from pocker.utils.exceptions import MetadataError
from pocker.utils.image import (
    ImageReference,
    derive_docker_hub_slug,
    get_icon_name_variations,
    get_image_base,
    get_service_name_candidates,
    parse_image_reference,
)
from pocker.utils.metrics_collector import get_metrics_collector

logger = get_logger(__name__)

MAX_DESCRIPTION_LENGTH = 600
CDN_PROBE_TIMEOUT_S = 3.0

SELFHST_SVG_URL = "https://cdn.jsdelivr.net/gh/selfhst/icons@main/svg/{name}.svg"
SELFHST_PNG_URL = "https://cdn.jsdelivr.net/gh/selfhst/icons@main/png/{name}.png"
HYPOLUXA_SVG_URL = "https://cdn.jsdelivr.net/gh/HypoLuxa/dashboard-icons@main/svg/{name}.svg"

HUB_BASE_URL = "https://hub.docker.com"
HUB_REPOSITORY_URL = HUB_BASE_URL + "/v2/repositories/{namespace}/{name}/"
HUB_PRODUCT_SEARCH_URL = HUB_BASE_URL + "/api/content/v1/products/search"

ICON_LABELS = ("homelab.icon", "app.icon", "icon")
DESCRIPTION_LABELS = ("org.opencontainers.image.description", "description")


def sanitize_url(value: Optional[str]) -> Optional[str]:
    """Return the URL when it is an absolute http(s) URL, else None."""
    if not value or not isinstance(value, str):
        return None
    try:
        parts = urlsplit(value.strip())
    except ValueError:
        return None
    if parts.scheme.lower() not in ("http", "https") or not parts.netloc:
        return None
    return parts.geturl()


def sanitize_description(value: Optional[str]) -> Optional[str]:
    """Trim and cap a description."""
    if not value or not isinstance(value, str):
        return None
    trimmed = value.strip()[:MAX_DESCRIPTION_LENGTH]
    return trimmed or None


@dataclass
class MetadataContext:
    """What is known about an app when looking up its icon and description."""

    image: str
    labels: Dict[str, str] = field(default_factory=dict)
    icon_hint: Optional[str] = None
    description_hint: Optional[str] = None

    @property
    def reference(self) -> ImageReference:
        return parse_image_reference(self.image)


@dataclass(frozen=True)
class HubMetadata:
    """Icon and description found on Docker Hub."""

    icon: Optional[str] = None
    description: Optional[str] = None


class _OpenGraphParser(HTMLParser):
    """Collects og:image and og:description from a product page."""

    WANTED = ("og:image", "og:description")

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.properties: Dict[str, str] = {}

    def handle_starttag(self, tag: str, attrs: List[Tuple[str, Optional[str]]]) -> None:
        if tag.lower() != "meta":
            return
        values = {key.lower(): value for key, value in attrs if value is not None}
        name = values.get("property") or values.get("name")
        content = values.get("content")
        if name in self.WANTED and content and name not in self.properties:
            self.properties[name] = content


def parse_open_graph(html: str) -> HubMetadata:
    """Extract the social preview icon and description from HTML."""
    parser = _OpenGraphParser()
    parser.feed(html)
    parser.close()
    return HubMetadata(
        icon=sanitize_url(parser.properties.get("og:image")),
        description=sanitize_description(parser.properties.get("og:description")),
    )


Provider = Callable[[MetadataContext], Awaitable[Optional[str]]]


class MetadataResolver:
    """
    Resolves display icons and descriptions.

    Each lookup walks an ordered list of providers and stops at the first
    one that answers. Provider failures are logged at debug level and treated
    as 'no answer'; nothing here raises to the caller.
    """

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        caches: Optional[CacheRegistry] = None,
        icon_map: Optional[Dict[str, str]] = None,
    ) -> None:
        """
        Initialize metadata resolver.

        Args:
            http_client: HTTP client to use (created lazily when omitted)
            caches: Cache tiers (defaults to the global registry)
            icon_map: Operator icon overrides (defaults to the icon map file)
        """
        self.settings = get_settings()
        self._client = http_client
        self.caches = caches or get_cache_registry()
        self.icon_map = icon_map if icon_map is not None else load_icon_map(self.settings)
        self.metrics = get_metrics_collector()

        # Tiers tried after the label and icon map checks
        self.icon_providers: List[Tuple[str, Provider]] = [
            ("selfhst", self._icon_from_selfhst),
            ("hypoluxa", self._icon_from_hypoluxa),
            ("hub-repository", self._icon_from_hub_repository),
            ("hub-product", self._icon_from_hub_product),
            ("hub-page", self._icon_from_hub_page),
        ]
        self.description_providers: List[Tuple[str, Provider]] = [
            ("label", self._description_from_labels),
            ("hub-repository", self._description_from_hub_repository),
            ("hub-product", self._description_from_hub_product),
            ("hub-page", self._description_from_hub_page),
        ]

    @property
    def http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.settings.docker_hub_timeout_s,
                follow_redirects=True,
                headers={"User-Agent": "pocker"},
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _debug(self, message: str, **fields: object) -> None:
        if self.settings.metadata_debug:
            logger.debug(message, extra=fields)

    async def _first(
        self, kind: str, providers: List[Tuple[str, Provider]], context: MetadataContext
    ) -> Optional[str]:
        for name, provider in providers:
            try:
                value = await provider(context)
            except Exception as e:
                self.metrics.record_metadata_lookup(name, "error")
                logger.debug(
                    "Metadata provider failed",
                    extra={"kind": kind, "provider": name, "image": context.image, "error": str(e)},
                )
                continue
            if value:
                self.metrics.record_metadata_lookup(name, "hit")
                self._debug(
                    "Metadata resolved",
                    kind=kind,
                    provider=name,
                    image=context.image,
                    value=value,
                )
                return value
            self.metrics.record_metadata_lookup(name, "miss")
        self._debug("Metadata not found", kind=kind, image=context.image)
        return None

    async def resolve_icon(self, context: MetadataContext) -> Optional[str]:
        """
        Resolve an icon URL.

        Order: explicit label or hint, operator icon map, the selfh.st and
        HypoLuxa icon CDNs, then Docker Hub (repository API, product search,
        product page). An icon map entry ends the search, even when later
        providers would also match.

        Args:
            context: Image, labels and hints of the app

        Returns:
            Icon URL or None
        """
        explicit = await self._icon_from_labels(context)
        if explicit:
            self.metrics.record_metadata_lookup("label", "hit")
            return explicit

        mapped = self._icon_from_map(context)
        if mapped:
            self.metrics.record_metadata_lookup("icon-map", "hit")
            self._debug("Icon map match", image=context.image, value=mapped)
            return mapped

        return await self._first("icon", self.icon_providers, context)

    async def resolve_description(self, context: MetadataContext) -> Optional[str]:
        """
        Resolve a description.

        Order: hint or description labels, then the Docker Hub providers.

        Args:
            context: Image, labels and hints of the app

        Returns:
            Description text (at most 600 characters) or None
        """
        return await self._first("description", self.description_providers, context)

    # Label and operator providers

    async def _icon_from_labels(self, context: MetadataContext) -> Optional[str]:
        candidate = context.icon_hint
        if not candidate:
            candidate = next(
                (context.labels[key] for key in ICON_LABELS if context.labels.get(key)), None
            )
        return sanitize_url(candidate)

    def _icon_from_map(self, context: MetadataContext) -> Optional[str]:
        if not self.icon_map:
            return None
        exact = sanitize_url(self.icon_map.get(context.image))
        if exact:
            return exact
        return sanitize_url(self.icon_map.get(get_image_base(context.reference)))

    async def _description_from_labels(self, context: MetadataContext) -> Optional[str]:
        candidate = context.description_hint
        if not candidate:
            candidate = next(
                (context.labels[key] for key in DESCRIPTION_LABELS if context.labels.get(key)),
                None,
            )
        return sanitize_description(candidate)

    # Icon CDN providers

    async def _probe_icon(self, url: str) -> Optional[str]:
        """HEAD an icon URL; both outcomes are cached, failures for an hour."""
        tier = self.caches.tier(CDN_ICONS)
        hit, cached = tier.lookup(url)
        if hit:
            return cached

        try:
            response = await self.http.head(url, timeout=CDN_PROBE_TIMEOUT_S)
        except httpx.HTTPError as e:
            self._debug("Icon probe failed", url=url, error=str(e))
            tier.set(url, None, ttl_s=CDN_FAILURE_TTL_S)
            return None

        found = url if response.is_success else None
        tier.set(url, found)
        self._debug("Icon probe", url=url, found=bool(found))
        return found

    def _icon_names(self, context: MetadataContext) -> List[str]:
        names: List[str] = []
        for candidate in get_service_name_candidates(context.reference):
            names.extend(get_icon_name_variations(candidate))
        return list(dict.fromkeys(name for name in names if name))

    async def _icon_from_selfhst(self, context: MetadataContext) -> Optional[str]:
        for name in self._icon_names(context):
            for template in (SELFHST_SVG_URL, SELFHST_PNG_URL):
                found = await self._probe_icon(template.format(name=name))
                if found:
                    return found
        return None

    async def _icon_from_hypoluxa(self, context: MetadataContext) -> Optional[str]:
        for name in self._icon_names(context):
            found = await self._probe_icon(HYPOLUXA_SVG_URL.format(name=name))
            if found:
                return found
        return None

    # Docker Hub providers

    async def hub_repository(self, ref: ImageReference) -> Optional[HubMetadata]:
        """Repository info from the Docker Hub v2 API."""
        if not self.settings.docker_hub_enabled or not ref.is_default_registry:
            return None

        namespace, name = ref.namespace_and_name
        key = f"{namespace}/{name}".lower()
        tier = self.caches.tier(HUB_REPOSITORY)
        hit, cached = tier.lookup(key)
        if hit:
            return cached

        response = await self.http.get(HUB_REPOSITORY_URL.format(namespace=namespace, name=name))
        if response.status_code == 404:
            tier.set(key, None)
            return None
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            raise MetadataError("hub-repository", "unexpected payload")

        result = HubMetadata(
            icon=sanitize_url(payload.get("logo_url")),
            description=sanitize_description(
                payload.get("short_description")
                or payload.get("description")
                or payload.get("full_description")
            ),
        )
        tier.set(key, result)
        return result

    async def hub_product(self, ref: ImageReference) -> Optional[HubMetadata]:
        """Best match from the Docker Hub product search."""
        if not self.settings.docker_hub_enabled:
            return None

        key = f"product:{ref.repository}".lower()
        tier = self.caches.tier(HUB_PRODUCT)
        hit, cached = tier.lookup(key)
        if hit:
            return cached

        repository = ref.repository
        slugs = [
            candidate.lower()
            for candidate in (
                repository,
                repository.removeprefix("library/"),
                repository.replace("/", "-"),
            )
            if candidate
        ]
        response = await self.http.get(
            HUB_PRODUCT_SEARCH_URL,
            params={"page_size": 16, "query": repository, "type": "image"},
        )
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            raise MetadataError("hub-product", "unexpected payload")

        raw_summaries = payload.get("summaries") or []
        if not isinstance(raw_summaries, list):
            raise MetadataError("hub-product", "unexpected summaries")
        summaries = [item for item in raw_summaries if isinstance(item, dict)]
        match = next(
            (item for item in summaries if str(item.get("slug") or "").lower() in slugs),
            summaries[0] if summaries else None,
        )
        if match is None:
            tier.set(key, None)
            return None

        result = HubMetadata(
            icon=sanitize_url(match.get("logo_url")),
            description=sanitize_description(match.get("short_description")),
        )
        tier.set(key, result)
        return result

    async def hub_page(self, ref: ImageReference) -> Optional[HubMetadata]:
        """Social preview tags scraped from the Docker Hub product page."""
        if not self.settings.docker_hub_enabled:
            return None

        slug = derive_docker_hub_slug(ref)
        if not slug:
            return None

        tier = self.caches.tier(HUB_PAGE)
        hit, cached = tier.lookup(slug)
        if hit:
            return cached

        response = await self.http.get(HUB_BASE_URL + slug)
        if response.status_code == 404:
            tier.set(slug, None)
            return None
        response.raise_for_status()

        result = parse_open_graph(response.text)
        tier.set(slug, result)
        return result

    async def _icon_from_hub_repository(self, context: MetadataContext) -> Optional[str]:
        metadata = await self.hub_repository(context.reference)
        return metadata.icon if metadata else None

    async def _icon_from_hub_product(self, context: MetadataContext) -> Optional[str]:
        metadata = await self.hub_product(context.reference)
        return metadata.icon if metadata else None

    async def _icon_from_hub_page(self, context: MetadataContext) -> Optional[str]:
        metadata = await self.hub_page(context.reference)
        return metadata.icon if metadata else None

    async def _description_from_hub_repository(self, context: MetadataContext) -> Optional[str]:
        metadata = await self.hub_repository(context.reference)
        return metadata.description if metadata else None

    async def _description_from_hub_product(self, context: MetadataContext) -> Optional[str]:
        metadata = await self.hub_product(context.reference)
        return metadata.description if metadata else None

    async def _description_from_hub_page(self, context: MetadataContext) -> Optional[str]:
        metadata = await self.hub_page(context.reference)
        return metadata.description if metadata else None


# Singleton instance
_metadata_resolver: Optional[MetadataResolver] = None


def get_metadata_resolver() -> MetadataResolver:
    """Get the metadata resolver singleton."""
    global _metadata_resolver
    if _metadata_resolver is None:
        _metadata_resolver = MetadataResolver()
    return _metadata_resolver


async def close_metadata_resolver() -> None:
    """Close the singleton's HTTP client."""
    global _metadata_resolver
    if _metadata_resolver is not None:
        await _metadata_resolver.close()
        _metadata_resolver = None
