"""Resolution of image digests back to human version tags."""

import asyncio
import hashlib
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

import httpx

from pocker.config import get_settings
from pocker.utils import get_logger
from pocker.utils.cache import DIGEST_TAGS, CacheTier, get_cache_registry
from pocker.utils.deadline import Deadline
from pocker.utils.exceptions import RegistryError
from pocker.utils.image import (
    ImageReference,
    get_image_base,
    normalize_digest,
    parse_image_reference,
)
from pocker.utils.metrics_collector import get_metrics_collector
from pocker.utils.version import is_latest, is_semantic_version, latest_of, version_key

logger = get_logger(__name__)

DOCKER_HUB = "docker.io"
GHCR = "ghcr.io"

HUB_TAGS_URL = "https://hub.docker.com/v2/repositories/{namespace}/{name}/tags"
HUB_PAGE_SIZE = 100
HUB_MAX_PAGES = 5

GHCR_BASE_URL = "https://ghcr.io"
GHCR_TAG_LIST_SIZE = 1000
GHCR_TAG_CAP = 50
GHCR_MANIFEST_CONCURRENCY = 10

MANIFEST_ACCEPT = ", ".join(
    [
        "application/vnd.oci.image.index.v1+json",
        "application/vnd.docker.distribution.manifest.list.v2+json",
        "application/vnd.oci.image.manifest.v1+json",
        "application/vnd.docker.distribution.manifest.v2+json",
    ]
)


@dataclass(frozen=True)
class VersionRequest:
    """One container whose version should be resolved from its digest."""

    key: str
    image: str
    digest: str


def choose_best_tag(tags: Iterable[str]) -> Optional[str]:
    """
    Pick the tag to report among tags sharing one digest.

    The greatest vN.N.N-shaped tag wins; otherwise the first tag that is
    not 'latest'.
    """
    matches = list(dict.fromkeys(tags))
    semantic = [tag for tag in matches if is_semantic_version(tag)]
    if semantic:
        return latest_of(semantic)
    for tag in matches:
        if not is_latest(tag):
            return tag
    return None


def _registry_of(ref: ImageReference) -> str:
    if ref.is_default_registry:
        return DOCKER_HUB
    return (ref.registry or "").lower()


class DigestVersionResolver:
    """Finds the version tag that a registry publishes for a content digest."""

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        cache: Optional[CacheTier] = None,
    ) -> None:
        """
        Initialize digest version resolver.

        Args:
            http_client: HTTP client to use (created lazily when omitted)
            cache: Digest cache tier (defaults to the global permanent tier)
        """
        self.settings = get_settings()
        self._client = http_client
        self.cache = cache or get_cache_registry().tier(DIGEST_TAGS)
        self.metrics = get_metrics_collector()

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

    def _timeout(self, deadline: Deadline) -> float:
        remaining = deadline.remaining()
        if remaining <= 0:
            raise RegistryError("deadline", "time budget exhausted")
        return min(self.settings.docker_hub_timeout_s, remaining)

    @staticmethod
    def cache_key(ref: ImageReference, digest: str) -> Tuple[str, str]:
        """Cache key: (registry-scoped repository, normalized digest)."""
        if _registry_of(ref) == DOCKER_HUB:
            namespace, name = ref.namespace_and_name
            return f"{DOCKER_HUB}/{namespace}/{name}".lower(), digest
        return get_image_base(ref), digest

    async def resolve(
        self,
        image: str | ImageReference,
        digest: Optional[str],
        deadline: Optional[Deadline] = None,
    ) -> Optional[str]:
        """
        Resolve a digest to the best matching version tag.

        Successful lookups, including 'no tag matches', are cached for the
        life of the process: a digest always names the same content.
        Failures are not cached.

        Args:
            image: Image string or parsed reference
            digest: Content digest, with or without the 'sha256:' prefix
            deadline: Deadline bounding every registry call

        Returns:
            Version tag, or None when unknown or unsupported
        """
        ref = parse_image_reference(image) if isinstance(image, str) else image
        normalized = normalize_digest(digest)
        if not normalized or not ref.repository:
            return None

        registry = _registry_of(ref)
        if registry not in (DOCKER_HUB, GHCR):
            self.metrics.record_version_resolution(registry, "unsupported")
            return None

        key = self.cache_key(ref, normalized)
        hit, cached = self.cache.lookup(key)
        if hit:
            self.metrics.record_version_resolution(registry, "cached")
            return cached

        deadline = deadline or Deadline.after(self.settings.version_batch_timeout_s)
        try:
            if registry == DOCKER_HUB:
                tag = await self._resolve_docker_hub(ref, normalized, deadline)
            else:
                tag = await self._resolve_ghcr(ref, normalized, deadline)
        except (httpx.HTTPError, RegistryError, ValueError) as e:
            self.metrics.record_version_resolution(registry, "error")
            logger.debug(
                "Digest resolution failed",
                extra={"repository": key[0], "digest": normalized[:12], "error": str(e)},
            )
            return None

        self.cache.set(key, tag)
        self.metrics.record_version_resolution(registry, "resolved" if tag else "not_found")
        logger.debug(
            "Digest resolved",
            extra={"repository": key[0], "digest": normalized[:12], "tag": tag},
        )
        return tag

    async def _resolve_docker_hub(
        self, ref: ImageReference, digest: str, deadline: Deadline
    ) -> Optional[str]:
        namespace, name = ref.namespace_and_name
        url = HUB_TAGS_URL.format(namespace=namespace, name=name)
        matches: List[str] = []

        for page in range(1, HUB_MAX_PAGES + 1):
            response = await self.http.get(
                url,
                params={"page_size": HUB_PAGE_SIZE, "page": page},
                timeout=self._timeout(deadline),
            )
            if response.status_code == 404:
                break
            response.raise_for_status()
            payload = response.json()
            if not isinstance(payload, dict):
                raise RegistryError(DOCKER_HUB, "unexpected tag listing payload")

            for entry in payload.get("results") or []:
                if isinstance(entry, dict) and self._hub_tag_matches(entry, digest):
                    matches.append(str(entry.get("name")))

            if not payload.get("next"):
                break

        return choose_best_tag(tag for tag in matches if tag)

    @staticmethod
    def _hub_tag_matches(entry: dict, digest: str) -> bool:
        candidates = [entry.get("digest")]
        for image in entry.get("images") or []:
            if isinstance(image, dict):
                candidates.append(image.get("digest"))
        return any(normalize_digest(candidate) == digest for candidate in candidates if candidate)

    async def _ghcr_token(self, repository: str, deadline: Deadline) -> Optional[str]:
        """Anonymous pull token; public images also work without one."""
        try:
            response = await self.http.get(
                f"{GHCR_BASE_URL}/token",
                params={"scope": f"repository:{repository}:pull", "service": GHCR},
                timeout=self._timeout(deadline),
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.debug("GHCR token request failed", extra={"repository": repository, "error": str(e)})
            return None
        if not isinstance(payload, dict):
            return None
        return payload.get("token") or payload.get("access_token")

    async def _ghcr_manifest_digest(
        self, repository: str, tag: str, headers: Dict[str, str], deadline: Deadline
    ) -> Optional[str]:
        """
        Digest of one tag's manifest, None when the tag is gone.

        Raises:
            httpx.HTTPError: If the registry fails to answer
        """
        url = f"{GHCR_BASE_URL}/v2/{repository}/manifests/{tag}"
        request_headers = {**headers, "Accept": MANIFEST_ACCEPT}
        response = await self.http.head(url, headers=request_headers, timeout=self._timeout(deadline))
        if response.status_code == 405:
            response = await self.http.get(url, headers=request_headers, timeout=self._timeout(deadline))
        if response.status_code == 404:
            return None
        response.raise_for_status()

        header = response.headers.get("Docker-Content-Digest")
        if header:
            return normalize_digest(header)
        if response.content:
            return hashlib.sha256(response.content).hexdigest()
        return None

    async def _resolve_ghcr(
        self, ref: ImageReference, digest: str, deadline: Deadline
    ) -> Optional[str]:
        repository = ref.repository.lower()
        token = await self._ghcr_token(repository, deadline)
        headers = {"Authorization": f"Bearer {token}"} if token else {}

        response = await self.http.get(
            f"{GHCR_BASE_URL}/v2/{repository}/tags/list",
            params={"n": GHCR_TAG_LIST_SIZE},
            headers=headers,
            timeout=self._timeout(deadline),
        )
        if response.status_code == 404:
            return None
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            raise RegistryError(GHCR, "unexpected tag listing payload")

        tags = [str(tag) for tag in payload.get("tags") or [] if tag]
        semantic = sorted((tag for tag in tags if is_semantic_version(tag)), key=version_key, reverse=True)
        others = [tag for tag in tags if not is_semantic_version(tag) and not is_latest(tag)]
        candidates = (semantic + others)[:GHCR_TAG_CAP]

        # Newest semantic tags come first, so the first chunk with a match
        # holds the best semantic answer.
        failed = 0
        for start in range(0, len(candidates), GHCR_MANIFEST_CONCURRENCY):
            chunk = candidates[start : start + GHCR_MANIFEST_CONCURRENCY]
            digests = await asyncio.gather(
                *(self._ghcr_manifest_digest(repository, tag, headers, deadline) for tag in chunk),
                return_exceptions=True,
            )
            matches = []
            for tag, found in zip(chunk, digests):
                if isinstance(found, httpx.HTTPError):
                    failed += 1
                    logger.debug(
                        "GHCR manifest lookup failed",
                        extra={"repository": repository, "tag": tag, "error": str(found)},
                    )
                elif isinstance(found, BaseException):
                    raise found
                elif found == digest:
                    matches.append(tag)
            if matches:
                return choose_best_tag(matches)
            if deadline.expired:
                raise RegistryError(GHCR, "time budget exhausted")

        # A tag we could not check may still match; "not found" would be
        # cached for good.
        if failed:
            raise RegistryError(GHCR, f"{failed} manifest lookups failed")
        return None

    async def resolve_many(
        self, requests: List[VersionRequest], deadline: Optional[Deadline] = None
    ) -> Dict[str, Optional[str]]:
        """
        Resolve many digests in fixed-size concurrent batches.

        Each batch is bounded by the batch timeout (and the outer deadline);
        lookups still running when a batch runs out of time are cancelled and
        reported as unresolved, without affecting the other batches.

        Args:
            requests: Containers to resolve
            deadline: Outer request deadline

        Returns:
            Resolved tag (or None) per request key
        """
        deadline = deadline or Deadline.after(self.settings.request_budget_s)
        results: Dict[str, Optional[str]] = {request.key: None for request in requests}

        # Containers sharing an image and digest need one lookup
        groups: Dict[Tuple[str, str], List[VersionRequest]] = {}
        for request in requests:
            ref = parse_image_reference(request.image)
            normalized = normalize_digest(request.digest)
            if not normalized:
                continue
            groups.setdefault((get_image_base(ref), normalized), []).append(request)

        unique = list(groups.values())
        batch_size = max(self.settings.version_batch_size, 1)

        for start in range(0, len(unique), batch_size):
            if deadline.expired:
                logger.info(
                    "Version resolution budget exhausted",
                    extra={"remaining_groups": len(unique) - start},
                )
                break

            batch = unique[start : start + batch_size]
            batch_deadline = deadline.limit(self.settings.version_batch_timeout_s)
            tasks = [
                asyncio.create_task(self.resolve(group[0].image, group[0].digest, batch_deadline))
                for group in batch
            ]
            done, pending = await asyncio.wait(tasks, timeout=batch_deadline.remaining())
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
                logger.debug("Version batch timed out", extra={"pending": len(pending)})

            for group, task in zip(batch, tasks):
                if task not in done or task.cancelled():
                    continue
                error = task.exception()
                if error is not None:
                    logger.debug(
                        "Version resolution raised",
                        extra={"image": group[0].image, "error": str(error)},
                    )
                    continue
                for request in group:
                    results[request.key] = task.result()

        return results


# Singleton instance
_version_resolver: Optional[DigestVersionResolver] = None


def get_version_resolver() -> DigestVersionResolver:
    """Get the digest version resolver singleton."""
    global _version_resolver
    if _version_resolver is None:
        _version_resolver = DigestVersionResolver()
    return _version_resolver


async def close_version_resolver() -> None:
    """Close the singleton's HTTP client."""
    global _version_resolver
    if _version_resolver is not None:
        await _version_resolver.close()
        _version_resolver = None
