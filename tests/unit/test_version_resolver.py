"""Tests for DigestVersionResolver."""

import asyncio
import hashlib
import time

import httpx
import pytest

from pocker.managers.version_resolver import (
    DigestVersionResolver,
    VersionRequest,
    choose_best_tag,
)
from pocker.utils.cache import DIGEST_TAGS, CacheTier
from pocker.utils.deadline import Deadline

DIGEST = "sha256:" + "a" * 64
OTHER_DIGEST = "sha256:" + "b" * 64


def make_resolver(handler) -> DigestVersionResolver:
    """Resolver backed by an httpx mock transport and a fresh cache."""
    return DigestVersionResolver(
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        cache=CacheTier(DIGEST_TAGS),
    )


def hub_tags(*entries, next_page=None):
    return httpx.Response(200, json={"results": list(entries), "next": next_page})


def test_choose_best_tag():
    """Test tag selection among same-digest tags."""
    assert choose_best_tag(["nightly", "2.4.1", "2.4", "v2.4.0"]) == "2.4.1"
    assert choose_best_tag(["latest", "stable"]) == "stable"
    assert choose_best_tag(["latest"]) is None
    assert choose_best_tag([]) is None


@pytest.mark.asyncio
async def test_docker_hub_match_is_cached_permanently():
    """Test a Hub lookup and that the second call makes no requests."""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        assert request.url.path == "/v2/repositories/acme/widget/tags"
        return hub_tags(
            {"name": "nightly", "digest": DIGEST},
            {"name": "2.4.1", "digest": DIGEST},
            {"name": "2.4", "digest": DIGEST},
            {"name": "2.3.0", "digest": OTHER_DIGEST},
        )

    resolver = make_resolver(handler)

    assert await resolver.resolve("acme/widget:nightly", DIGEST) == "2.4.1"
    assert await resolver.resolve("docker.io/acme/widget", "A" * 64) == "2.4.1"
    assert len(calls) == 1

    await resolver.close()


@pytest.mark.asyncio
async def test_docker_hub_official_image_and_pagination():
    """Test the library namespace and following 'next' pages."""
    pages = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v2/repositories/library/redis/tags"
        page = int(request.url.params["page"])
        pages.append(page)
        if page == 1:
            return hub_tags({"name": "7.0.0", "digest": OTHER_DIGEST}, next_page="page-2")
        return hub_tags({"name": "7.2.4", "images": [{"digest": DIGEST}]})

    resolver = make_resolver(handler)

    assert await resolver.resolve("redis:7", DIGEST) == "7.2.4"
    assert pages == [1, 2]

    await resolver.close()


@pytest.mark.asyncio
async def test_not_found_is_cached_but_errors_are_not():
    """Test negative caching and error handling."""
    responses = [httpx.Response(500), hub_tags({"name": "1.0.0", "digest": OTHER_DIGEST})]
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        return responses[min(len(calls) - 1, 1)]

    resolver = make_resolver(handler)

    assert await resolver.resolve("acme/widget", DIGEST) is None
    assert resolver.cache.lookup(("docker.io/acme/widget", "a" * 64)) == (False, None)

    assert await resolver.resolve("acme/widget", DIGEST) is None
    assert resolver.cache.lookup(("docker.io/acme/widget", "a" * 64)) == (True, None)

    assert await resolver.resolve("acme/widget", DIGEST) is None
    assert len(calls) == 2

    await resolver.close()


@pytest.mark.asyncio
async def test_ghcr_resolves_through_manifests():
    """Test token, tag listing and HEAD manifest digests on GHCR."""
    seen_auth = []

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/token":
            return httpx.Response(200, json={"token": "anon"})
        if path == "/v2/org/app/tags/list":
            seen_auth.append(request.headers.get("Authorization"))
            return httpx.Response(200, json={"tags": ["latest", "main", "1.0.0", "1.1.0", "1.2.0"]})
        if path.startswith("/v2/org/app/manifests/"):
            tag = path.rsplit("/", 1)[-1]
            assert request.method == "HEAD"
            digest = DIGEST if tag in ("1.1.0", "main") else OTHER_DIGEST
            return httpx.Response(200, headers={"Docker-Content-Digest": digest})
        return httpx.Response(404)

    resolver = make_resolver(handler)

    assert await resolver.resolve("ghcr.io/Org/App:main", DIGEST) == "1.1.0"
    assert seen_auth == ["Bearer anon"]

    await resolver.close()


@pytest.mark.asyncio
async def test_ghcr_manifest_body_hash_fallback():
    """Test hashing the manifest body when HEAD is refused and no header is sent."""
    body = b'{"schemaVersion": 2}'
    digest = "sha256:" + hashlib.sha256(body).hexdigest()

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/token":
            return httpx.Response(401)
        if path == "/v2/org/tool/tags/list":
            return httpx.Response(200, json={"tags": ["2.0.0"]})
        if request.method == "HEAD":
            return httpx.Response(405)
        return httpx.Response(200, content=body)

    resolver = make_resolver(handler)

    assert await resolver.resolve("ghcr.io/org/tool", digest) == "2.0.0"

    await resolver.close()


@pytest.mark.asyncio
async def test_ghcr_manifest_failure_is_not_cached():
    """Test that a failed manifest lookup is retried instead of cached as not found."""
    manifest_calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/token":
            return httpx.Response(200, json={"token": "anon"})
        if path == "/v2/org/app/tags/list":
            return httpx.Response(200, json={"tags": ["1.0.0"]})
        manifest_calls.append(path)
        if len(manifest_calls) == 1:
            return httpx.Response(503)
        return httpx.Response(200, headers={"Docker-Content-Digest": DIGEST})

    resolver = make_resolver(handler)

    assert await resolver.resolve("ghcr.io/org/app", DIGEST) is None
    assert resolver.cache.lookup(("ghcr.io/org/app", "a" * 64)) == (False, None)

    assert await resolver.resolve("ghcr.io/org/app", DIGEST) == "1.0.0"
    assert len(manifest_calls) == 2

    await resolver.close()


@pytest.mark.asyncio
async def test_ghcr_missing_manifest_counts_as_no_match():
    """Test that a deleted tag is an ordinary miss and the miss is cached."""

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/token":
            return httpx.Response(200, json={"token": "anon"})
        if path == "/v2/org/app/tags/list":
            return httpx.Response(200, json={"tags": ["1.0.0", "1.1.0"]})
        if path.endswith("/1.0.0"):
            return httpx.Response(404)
        return httpx.Response(200, headers={"Docker-Content-Digest": OTHER_DIGEST})

    resolver = make_resolver(handler)

    assert await resolver.resolve("ghcr.io/org/app", DIGEST) is None
    assert resolver.cache.lookup(("ghcr.io/org/app", "a" * 64)) == (True, None)

    await resolver.close()


@pytest.mark.asyncio
async def test_unsupported_registry_makes_no_calls():
    """Test that other registries are skipped."""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(500)

    resolver = make_resolver(handler)

    assert await resolver.resolve("quay.io/org/app:nightly", DIGEST) is None
    assert await resolver.resolve("acme/widget", None) is None
    assert calls == []

    await resolver.close()


@pytest.mark.asyncio
async def test_resolve_many_dedupes_by_image_and_digest():
    """Test that containers sharing an image and digest share one lookup."""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        return hub_tags({"name": "1.25.3", "digest": DIGEST})

    resolver = make_resolver(handler)

    results = await resolver.resolve_many(
        [
            VersionRequest(key="alpha:1", image="nginx:latest", digest=DIGEST),
            VersionRequest(key="beta:2", image="nginx:mainline", digest=DIGEST),
            VersionRequest(key="beta:3", image="nginx:stable", digest=""),
        ]
    )

    assert results == {"alpha:1": "1.25.3", "beta:2": "1.25.3", "beta:3": None}
    assert len(calls) == 1

    await resolver.close()


@pytest.mark.asyncio
async def test_resolve_many_batch_timeout_isolates_slow_lookup(configure):
    """Test that a hanging registry leaves other lookups unaffected."""
    configure(version_batch_timeout_s=0.2)

    async def handler(request: httpx.Request) -> httpx.Response:
        if "slow" in request.url.path:
            await asyncio.sleep(5)
        return hub_tags({"name": "3.0.0", "digest": DIGEST})

    resolver = make_resolver(handler)

    started = time.monotonic()
    results = await resolver.resolve_many(
        [
            VersionRequest(key="alpha:slow", image="acme/slow:edge", digest=DIGEST),
            VersionRequest(key="alpha:fast", image="acme/fast:edge", digest=DIGEST),
        ]
    )
    elapsed = time.monotonic() - started

    assert results == {"alpha:slow": None, "alpha:fast": "3.0.0"}
    assert elapsed < 2
    assert resolver.cache.lookup(("docker.io/acme/slow", "a" * 64)) == (False, None)

    await resolver.close()


@pytest.mark.asyncio
async def test_resolve_many_stops_at_expired_deadline():
    """Test that no lookups start once the outer deadline has passed."""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return hub_tags()

    resolver = make_resolver(handler)

    results = await resolver.resolve_many(
        [VersionRequest(key="alpha:1", image="nginx:latest", digest=DIGEST)],
        Deadline.after(0),
    )

    assert results == {"alpha:1": None}
    assert calls == []

    await resolver.close()
