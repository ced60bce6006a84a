"""Application runtime state: caches and the rate limiter.

Components are built per application and stored on ``app.state`` so that
routes receive them through dependencies and tests can swap them:

    app.state.validation_cache  → ValidationResultCache
    app.state.dependency_cache  → DependencyCache (calculate results)
    app.state.rate_limiter      → ComplexityRateLimiter

Usage:
    In main.py:

        from app.services.runtime import lifespan
        app = FastAPI(lifespan=lifespan, ...)

Configuration:
    CACHE_BACKEND=memory   (single instance, default)
    CACHE_BACKEND=redis    (shared across instances, uses REDIS_URL)
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.config import settings
from app.middleware.rate_limit import build_rate_limiter
from app.utils.cache import DependencyCache, ValidationResultCache, build_store, close_redis

logger = logging.getLogger(__name__)


def init_app_state(app: FastAPI, backend: str | None = None) -> None:
    """Build fresh caches and limiter for ``app``."""
    backend = backend or settings.cache_backend
    app.state.validation_cache = ValidationResultCache(
        build_store("composition", settings.validation_cache_max_entries, backend),
        ttl=settings.validation_cache_ttl_seconds,
    )
    app.state.dependency_cache = DependencyCache(
        build_store("intelligent", settings.validation_cache_max_entries, backend),
        ttl=settings.dependency_cache_ttl_seconds,
    )
    app.state.rate_limiter = build_rate_limiter(
        backend,
        settings.composition_rate_limit,
        settings.composition_rate_window_seconds,
    )
    logger.info(f"Runtime state initialised (cache backend: {backend})")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI lifespan: build runtime state on startup, close Redis on shutdown."""
    init_app_state(app)
    yield
    await close_redis()
    logger.info("Runtime state released")
