"""Caching utilities for composition validation and calculation.

Two caches live on ``app.state`` (see ``app.services.runtime``):

  - ValidationResultCache → orchestrator results, keyed by a canonical
    request signature, gated by TTL *and* a content checksum
  - DependencyCache       → /calculate results tagged with the products and
    pallet they depend on, invalidated per dependency

Both sit on a ``CacheStore``: an in-process LRU for single-instance
deployments, or Redis so several backend instances share entries.
"""

import functools
import hashlib
import json
import logging
import time
from collections import OrderedDict
from typing import Awaitable, Callable, Iterable, Optional, Protocol

import redis.asyncio as redis
from fastapi import Request

from app.config import settings
from app.schemas.composition import CompositionRequest
from app.schemas.validation import ValidationResult

logger = logging.getLogger(__name__)

# Global Redis connection pool
_redis_client: Optional[redis.Redis] = None


async def get_redis() -> redis.Redis:
    """Get or create Redis client connection."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=50,
        )
    return _redis_client


async def close_redis():
    """Close Redis connection (call on app shutdown)."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


# ── Stores ───────────────────────────────────────────────────

class CacheStore(Protocol):
    max_entries: int

    async def get(self, key: str) -> dict | None: ...

    async def set(self, key: str, value: dict, ttl: int, tags: Iterable[str] = ()) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def invalidate_tag(self, tag: str) -> int: ...

    async def clear(self) -> int: ...

    async def size(self) -> int: ...

    async def values(self) -> list[dict]: ...


class InMemoryCacheStore:
    """Process-local LRU store.

    Entries are not shared between backend instances.  Eviction is by
    recency once ``max_entries`` is reached; expiry is checked on read.
    """

    def __init__(self, max_entries: int = 1000, clock: Callable[[], float] = time.monotonic):
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, dict]] = OrderedDict()
        self._tags: dict[str, set[str]] = {}

    async def get(self, key: str) -> dict | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            self._drop(key)
            return None
        self._entries.move_to_end(key)
        return value

    async def set(self, key: str, value: dict, ttl: int, tags: Iterable[str] = ()) -> None:
        if key in self._entries:
            self._entries.move_to_end(key)
        self._entries[key] = (self._clock() + ttl, value)
        for tag in tags:
            self._tags.setdefault(tag, set()).add(key)
        while len(self._entries) > self.max_entries:
            oldest, _ = next(iter(self._entries.items()))
            self._drop(oldest)

    async def delete(self, key: str) -> None:
        self._drop(key)

    async def invalidate_tag(self, tag: str) -> int:
        keys = self._tags.pop(tag, set())
        removed = 0
        for key in keys:
            if key in self._entries:
                self._drop(key)
                removed += 1
        return removed

    async def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        self._tags.clear()
        return count

    async def size(self) -> int:
        return len(self._entries)

    async def values(self) -> list[dict]:
        return [value for _, value in self._entries.values()]

    def _drop(self, key: str) -> None:
        self._entries.pop(key, None)
        for tag in list(self._tags):
            keys = self._tags[tag]
            keys.discard(key)
            if not keys:
                del self._tags[tag]


class RedisCacheStore:
    """Redis-backed store shared across instances.

    Values are JSON strings written with SETEX; tags are Redis sets of keys.
    Redis failures are logged and treated as misses.
    """

    def __init__(
        self,
        namespace: str,
        max_entries: int = 1000,
        client_factory: Callable[[], Awaitable[redis.Redis]] = get_redis,
    ):
        self.namespace = namespace
        self.max_entries = max_entries
        self._client_factory = client_factory

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def _tag_key(self, tag: str) -> str:
        return f"{self.namespace}:tag:{tag}"

    async def get(self, key: str) -> dict | None:
        try:
            client = await self._client_factory()
            raw = await client.get(self._key(key))
        except redis.RedisError as e:
            logger.warning(f"Redis error (treating as miss): {e}")
            return None
        return json.loads(raw) if raw else None

    async def set(self, key: str, value: dict, ttl: int, tags: Iterable[str] = ()) -> None:
        try:
            client = await self._client_factory()
            async with client.pipeline(transaction=True) as pipe:
                pipe.setex(self._key(key), ttl, json.dumps(value))
                for tag in tags:
                    pipe.sadd(self._tag_key(tag), key)
                    pipe.expire(self._tag_key(tag), ttl)
                await pipe.execute()
        except redis.RedisError as e:
            logger.warning(f"Redis error (result not cached): {e}")

    async def delete(self, key: str) -> None:
        try:
            client = await self._client_factory()
            await client.delete(self._key(key))
        except redis.RedisError as e:
            logger.warning(f"Failed to delete cache key {key}: {e}")

    async def invalidate_tag(self, tag: str) -> int:
        try:
            client = await self._client_factory()
            keys = await client.smembers(self._tag_key(tag))
            removed = 0
            if keys:
                removed = await client.delete(*(self._key(k) for k in keys))
            await client.delete(self._tag_key(tag))
            return removed
        except redis.RedisError as e:
            logger.warning(f"Failed to invalidate tag {tag}: {e}")
            return 0

    async def clear(self) -> int:
        try:
            client = await self._client_factory()
            keys = [k async for k in client.scan_iter(match=f"{self.namespace}:*")]
            if keys:
                await client.delete(*keys)
            return len([k for k in keys if ":tag:" not in k])
        except redis.RedisError as e:
            logger.warning(f"Failed to clear cache namespace {self.namespace}: {e}")
            return 0

    async def size(self) -> int:
        try:
            client = await self._client_factory()
            count = 0
            async for key in client.scan_iter(match=f"{self.namespace}:*"):
                if ":tag:" not in key:
                    count += 1
            return count
        except redis.RedisError as e:
            logger.warning(f"Failed to size cache namespace {self.namespace}: {e}")
            return 0

    async def values(self) -> list[dict]:
        try:
            client = await self._client_factory()
            keys = [
                k async for k in client.scan_iter(match=f"{self.namespace}:*")
                if ":tag:" not in k
            ]
            if not keys:
                return []
            raws = await client.mget(keys)
        except redis.RedisError as e:
            logger.warning(f"Failed to read cache namespace {self.namespace}: {e}")
            return []
        return [json.loads(raw) for raw in raws if raw]


def build_store(namespace: str, max_entries: int, backend: str | None = None) -> CacheStore:
    backend = backend or settings.cache_backend
    if backend == "redis":
        return RedisCacheStore(namespace, max_entries=max_entries)
    return InMemoryCacheStore(max_entries=max_entries)


# ── Keys ─────────────────────────────────────────────────────

def canonical_signature(request: CompositionRequest) -> str:
    """Order-independent signature of (products, pallet, constraints).

    Format: ``id:qty:pkg|id:qty:pkg|<pallet_id or auto>|w:..|h:..|v:..``
    (or ``none`` when no constraints are given).
    """
    products = sorted(request.products, key=lambda p: (p.product_id, p.packaging_type_id or 0, p.quantity))
    parts = [
        f"{p.product_id}:{p.quantity:g}:{p.packaging_type_id if p.packaging_type_id is not None else 'default'}"
        for p in products
    ]
    parts.append(str(request.pallet_id) if request.pallet_id is not None else "auto")
    c = request.constraints
    if c is None or c.fields_set_count() == 0:
        parts.append("none")
    else:
        parts.append(f"w:{c.max_weight or ''}|h:{c.max_height or ''}|v:{c.max_volume or ''}")
    return "|".join(parts)


def signature_key(prefix: str, mode: str, request: CompositionRequest) -> str:
    digest = hashlib.sha1(canonical_signature(request).encode()).hexdigest()
    return f"{prefix}:{mode}:{digest}"


def request_checksum(request: CompositionRequest) -> str:
    """md5 over the canonical JSON of the (products, pallet, constraints) triple."""
    payload = {
        "products": sorted(
            (p.model_dump() for p in request.products),
            key=lambda p: (p["product_id"], p["packaging_type_id"] or 0, p["quantity"]),
        ),
        "pallet_id": request.pallet_id,
        "constraints": request.constraints.model_dump() if request.constraints else None,
    }
    return hashlib.md5(json.dumps(payload, sort_keys=True).encode()).hexdigest()


def dependency_tags(request: CompositionRequest) -> list[str]:
    tags = sorted({f"product:{p.product_id}" for p in request.products})
    tags.append(f"pallet:{request.pallet_id if request.pallet_id is not None else 'auto'}")
    return tags


# ── Validation result cache ──────────────────────────────────

class ValidationResultCache:
    """TTL + checksum gated cache of ``ValidationResult`` objects.

    An entry is usable only when it is younger than ``ttl`` seconds and its
    stored checksum matches a fresh checksum of the incoming request.
    """

    prefix = "validation"

    def __init__(self, store: CacheStore, ttl: int = 600, clock: Callable[[], float] = time.time):
        self.store = store
        self.ttl = ttl
        self._clock = clock
        self.hits = 0
        self.misses = 0

    def key_for(self, request: CompositionRequest, mode: str) -> str:
        return signature_key(self.prefix, mode, request)

    async def get(self, request: CompositionRequest, mode: str) -> ValidationResult | None:
        key = self.key_for(request, mode)
        entry = await self.store.get(key)
        if entry is None:
            self.misses += 1
            logger.debug(f"Cache MISS: {key}")
            return None
        if self._clock() - entry["timestamp"] >= self.ttl:
            await self.store.delete(key)
            self.misses += 1
            logger.debug(f"Cache STALE: {key}")
            return None
        if entry["checksum"] != request_checksum(request):
            await self.store.delete(key)
            self.misses += 1
            logger.debug(f"Cache CHECKSUM MISMATCH: {key}")
            return None
        self.hits += 1
        logger.debug(f"Cache HIT: {key}")
        return ValidationResult.model_validate(entry["result"])

    async def set(self, request: CompositionRequest, mode: str, result: ValidationResult) -> None:
        entry = {
            "timestamp": self._clock(),
            "result": result.model_dump(mode="json"),
            "checksum": request_checksum(request),
        }
        await self.store.set(
            self.key_for(request, mode), entry, self.ttl, tags=dependency_tags(request)
        )

    async def invalidate(self, dependency: str) -> int:
        return await self.store.invalidate_tag(dependency)

    async def clear(self) -> int:
        self.hits = 0
        self.misses = 0
        return await self.store.clear()

    async def stats(self) -> dict:
        now = self._clock()
        ages = [now - e["timestamp"] for e in await self.store.values() if "timestamp" in e]
        lookups = self.hits + self.misses
        return {
            "size": await self.store.size(),
            "max_size": self.store.max_entries,
            "ttl_seconds": self.ttl,
            "hits": self.hits,
            "misses": self.misses,
            "hit_ratio": round(self.hits / lookups, 4) if lookups else 0.0,
            "oldest_entry_age_seconds": round(max(ages), 3) if ages else None,
            "newest_entry_age_seconds": round(min(ages), 3) if ages else None,
        }


# ── Dependency-tagged cache ──────────────────────────────────

def with_cache(
    fn: Callable[..., Awaitable[dict]],
    *,
    store: CacheStore,
    key_fn: Callable[..., str],
    ttl: int,
    tags_fn: Callable[..., Iterable[str]] | None = None,
    on_lookup: Callable[[bool], None] | None = None,
) -> Callable[..., Awaitable[tuple[dict, bool]]]:
    """Wrap ``fn`` so its JSON-able result is served from ``store``.

    The wrapper returns ``(result, cached)``.

    Example:
        calculate = with_cache(
            compute_layout_result, store=store, ttl=300,
            key_fn=lambda db, req: signature_key("calc", req.algorithm, req),
            tags_fn=lambda db, req: dependency_tags(req),
        )
        result, hit = await calculate(db, request)
    """

    @functools.wraps(fn)
    async def wrapper(*args, **kwargs) -> tuple[dict, bool]:
        key = key_fn(*args, **kwargs)
        cached_value = await store.get(key)
        if cached_value is not None:
            logger.debug(f"Cache HIT: {key}")
            if on_lookup:
                on_lookup(True)
            return cached_value, True

        logger.debug(f"Cache MISS: {key}")
        if on_lookup:
            on_lookup(False)
        result = await fn(*args, **kwargs)
        tags = list(tags_fn(*args, **kwargs)) if tags_fn else []
        await store.set(key, result, ttl, tags=tags)
        return result, False

    return wrapper


class DependencyCache:
    """Results tagged by the products/pallet they were computed from.

    ``invalidate("product:42")`` drops every entry that depended on
    product 42.
    """

    def __init__(self, store: CacheStore, ttl: int = 300):
        self.store = store
        self.ttl = ttl
        self.hits = 0
        self.misses = 0

    def _record(self, hit: bool) -> None:
        if hit:
            self.hits += 1
        else:
            self.misses += 1

    def wrap(
        self,
        fn: Callable[..., Awaitable[dict]],
        key_fn: Callable[..., str],
        tags_fn: Callable[..., Iterable[str]] | None = None,
    ) -> Callable[..., Awaitable[tuple[dict, bool]]]:
        return with_cache(
            fn, store=self.store, key_fn=key_fn, ttl=self.ttl,
            tags_fn=tags_fn, on_lookup=self._record,
        )

    async def invalidate(self, dependency: str) -> int:
        removed = await self.store.invalidate_tag(dependency)
        logger.info(f"Invalidated {removed} cache entries depending on {dependency}")
        return removed

    async def clear(self) -> int:
        self.hits = 0
        self.misses = 0
        return await self.store.clear()

    async def stats(self) -> dict:
        lookups = self.hits + self.misses
        return {
            "size": await self.store.size(),
            "max_size": self.store.max_entries,
            "ttl_seconds": self.ttl,
            "hits": self.hits,
            "misses": self.misses,
            "hit_ratio": round(self.hits / lookups, 4) if lookups else 0.0,
        }


# ── FastAPI dependencies ─────────────────────────────────────

def get_validation_cache(request: Request) -> ValidationResultCache:
    return request.app.state.validation_cache


def get_dependency_cache(request: Request) -> DependencyCache:
    return request.app.state.dependency_cache

