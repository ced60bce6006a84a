"""Tests for the validation result cache and the dependency-tagged cache."""

import pytest

from app.models.warehouse import Pallet, Product
from app.schemas.composition import CompositionConstraints, CompositionProduct, CompositionRequest
from app.services.composition_validation import ResolvedComposition, evaluate
from app.utils.cache import (
    DependencyCache,
    InMemoryCacheStore,
    RedisCacheStore,
    ValidationResultCache,
    canonical_signature,
    dependency_tags,
    request_checksum,
    signature_key,
)


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def make_request(*lines, pallet_id=1, constraints=None) -> CompositionRequest:
    return CompositionRequest(
        products=[CompositionProduct(product_id=pid, quantity=qty) for pid, qty in lines],
        pallet_id=pallet_id,
        constraints=constraints,
    )


def make_result(request: CompositionRequest):
    products = {
        p.product_id: Product(id=p.product_id, sku=f"S{p.product_id}", name="P", weight=2.0,
                              width=20.0, length=25.0, height=20.0)
        for p in request.products
    }
    pallet = Pallet(id=1, code="PLT-1", width=100.0, length=120.0, max_weight=1000.0)
    return evaluate(ResolvedComposition(request, products, pallet, {}), "quick")


@pytest.mark.cache
class TestSignature:
    """Canonical signature and checksum."""

    def test_signature_is_order_independent(self):
        a = make_request((2, 5), (1, 10))
        b = make_request((1, 10), (2, 5))

        assert canonical_signature(a) == canonical_signature(b) == "1:10:default|2:5:default|1|none"
        assert request_checksum(a) == request_checksum(b)

    def test_signature_format_with_auto_pallet_and_constraints(self):
        request = make_request(
            (3, 1), pallet_id=None, constraints=CompositionConstraints(max_weight=800)
        )

        assert canonical_signature(request) == "3:1:default|auto|w:800.0|h:|v:"

    def test_key_layout(self):
        key = signature_key("validation", "full", make_request((1, 1)))

        prefix, mode, digest = key.split(":")
        assert (prefix, mode) == ("validation", "full")
        assert len(digest) == 40

    def test_dependency_tags(self):
        assert dependency_tags(make_request((2, 1), (1, 1), pallet_id=None)) == [
            "product:1", "product:2", "pallet:auto",
        ]


@pytest.mark.cache
@pytest.mark.asyncio
class TestValidationResultCache:
    """TTL and checksum gating, LRU bound and stats."""

    async def test_hit_after_set(self):
        cache = ValidationResultCache(InMemoryCacheStore(), ttl=600)
        request = make_request((1, 10))
        await cache.set(request, "quick", make_result(request))

        hit = await cache.get(make_request((1, 10)), "quick")

        assert hit is not None
        assert hit.metrics.total_weight == pytest.approx(20.0)
        assert cache.hits == 1

    async def test_mode_is_part_of_the_key(self):
        cache = ValidationResultCache(InMemoryCacheStore())
        request = make_request((1, 10))
        await cache.set(request, "quick", make_result(request))

        assert await cache.get(request, "full") is None

    async def test_expired_entry_is_a_miss(self):
        clock = FakeClock()
        cache = ValidationResultCache(InMemoryCacheStore(), ttl=600, clock=clock)
        request = make_request((1, 10))
        await cache.set(request, "quick", make_result(request))

        clock.now += 600

        assert await cache.get(request, "quick") is None
        assert cache.misses == 1

    async def test_checksum_mismatch_is_a_miss(self):
        cache = ValidationResultCache(InMemoryCacheStore())
        stored = make_request((1, 10))
        await cache.set(stored, "quick", make_result(stored))
        # Same signature (quantity formatted with :g) but different content.
        near = make_request((1, 10.0000001))
        assert signature_key("validation", "quick", near) == signature_key("validation", "quick", stored)

        assert await cache.get(near, "quick") is None
        assert await cache.store.size() == 0

    async def test_changed_constraints_miss(self):
        cache = ValidationResultCache(InMemoryCacheStore())
        request = make_request((1, 10))
        await cache.set(request, "quick", make_result(request))

        changed = make_request((1, 10), constraints=CompositionConstraints(max_weight=500))

        assert await cache.get(changed, "quick") is None

    async def test_lru_eviction(self):
        cache = ValidationResultCache(InMemoryCacheStore(max_entries=2))
        r1, r2, r3 = make_request((1, 1)), make_request((2, 1)), make_request((3, 1))
        await cache.set(r1, "quick", make_result(r1))
        await cache.set(r2, "quick", make_result(r2))
        await cache.get(r1, "quick")  # r1 becomes most recent
        await cache.set(r3, "quick", make_result(r3))

        assert await cache.get(r2, "quick") is None
        assert await cache.get(r1, "quick") is not None
        assert await cache.get(r3, "quick") is not None

    async def test_evicted_keys_leave_no_empty_tags(self):
        store = InMemoryCacheStore(max_entries=1)
        await store.set("a", {"v": 1}, ttl=60, tags=["product:1"])
        await store.set("b", {"v": 2}, ttl=60, tags=["product:2"])

        assert store._tags == {"product:2": {"b"}}

    async def test_invalidate_by_dependency(self):
        cache = ValidationResultCache(InMemoryCacheStore())
        r1, r2 = make_request((1, 1)), make_request((2, 1))
        await cache.set(r1, "quick", make_result(r1))
        await cache.set(r2, "quick", make_result(r2))

        assert await cache.invalidate("product:1") == 1
        assert await cache.get(r1, "quick") is None
        assert await cache.get(r2, "quick") is not None

    async def test_stats(self):
        clock = FakeClock()
        cache = ValidationResultCache(InMemoryCacheStore(max_entries=10), ttl=600, clock=clock)
        r1, r2 = make_request((1, 1)), make_request((2, 1))
        await cache.set(r1, "quick", make_result(r1))
        clock.now += 30
        await cache.set(r2, "quick", make_result(r2))
        await cache.get(r1, "quick")
        await cache.get(make_request((9, 1)), "quick")

        stats = await cache.stats()

        assert stats["size"] == 2
        assert stats["max_size"] == 10
        assert stats["ttl_seconds"] == 600
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_ratio"] == 0.5
        assert stats["oldest_entry_age_seconds"] == 30
        assert stats["newest_entry_age_seconds"] == 0

    async def test_clear_resets_counters(self):
        cache = ValidationResultCache(InMemoryCacheStore())
        request = make_request((1, 1))
        await cache.set(request, "quick", make_result(request))
        await cache.get(request, "quick")

        assert await cache.clear() == 1
        assert (await cache.stats())["hits"] == 0


@pytest.mark.cache
@pytest.mark.asyncio
class TestDependencyCache:
    """with_cache wrapper and dependency invalidation."""

    async def test_wrap_caches_until_invalidated(self):
        cache = DependencyCache(InMemoryCacheStore(), ttl=300)
        calls = 0

        async def compute(request: CompositionRequest) -> dict:
            nonlocal calls
            calls += 1
            return {"weight": sum(p.quantity for p in request.products)}

        cached_compute = cache.wrap(
            compute,
            key_fn=lambda r: signature_key("calc", "standard", r),
            tags_fn=lambda r: dependency_tags(r),
        )
        request = make_request((1, 4), (2, 6))

        first, hit1 = await cached_compute(request)
        second, hit2 = await cached_compute(make_request((2, 6), (1, 4)))

        assert first == second == {"weight": 10}
        assert (hit1, hit2) == (False, True)
        assert calls == 1

        assert await cache.invalidate("product:2") == 1
        _, hit3 = await cached_compute(request)
        assert hit3 is False
        assert calls == 2

        stats = await cache.stats()
        assert (stats["hits"], stats["misses"]) == (1, 2)


@pytest.mark.cache
@pytest.mark.integration
@pytest.mark.asyncio
class TestRedisCacheStore:
    """Redis-backed store (skipped without a Redis server)."""

    async def test_set_get_and_tag_invalidation(self, redis_client):
        async def factory():
            return redis_client

        store = RedisCacheStore("test-composition", client_factory=factory)
        await store.set("a", {"value": 1}, ttl=60, tags=["product:1"])
        await store.set("b", {"value": 2}, ttl=60, tags=["product:2"])

        assert await store.get("a") == {"value": 1}
        assert await store.size() == 2

        assert await store.invalidate_tag("product:1") == 1
        assert await store.get("a") is None
        assert await store.get("b") == {"value": 2}

        assert await store.clear() == 1
        assert await store.size() == 0
