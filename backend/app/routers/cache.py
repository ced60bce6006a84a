"""Cache administration router (admin only).

Endpoints:
    GET  /api/cache/stats                                  Validation + dependency cache stats
    POST /api/cache/clear?type=composition|intelligent|all Drop cached entries
    POST /api/cache/invalidate/{dependency}?cascade=       Drop entries tagged with a dependency
                                                           (e.g. product:42, pallet:7)
"""

import logging
from typing import Literal

from fastapi import APIRouter, Depends, Query

from app.auth.deps import Principal, require_role
from app.utils.cache import (
    DependencyCache,
    ValidationResultCache,
    get_dependency_cache,
    get_validation_cache,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/stats")
async def cache_stats(
    validation_cache: ValidationResultCache = Depends(get_validation_cache),
    dependency_cache: DependencyCache = Depends(get_dependency_cache),
    _principal: Principal = Depends(require_role("admin")),
):
    return {
        "composition": await validation_cache.stats(),
        "intelligent": await dependency_cache.stats(),
    }


@router.post("/clear")
async def clear_cache(
    type: Literal["composition", "intelligent", "all"] = Query("all"),
    validation_cache: ValidationResultCache = Depends(get_validation_cache),
    dependency_cache: DependencyCache = Depends(get_dependency_cache),
    principal: Principal = Depends(require_role("admin")),
):
    cleared = {}
    if type in ("composition", "all"):
        cleared["composition"] = await validation_cache.clear()
    if type in ("intelligent", "all"):
        cleared["intelligent"] = await dependency_cache.clear()
    logger.info(f"Cache cleared by {principal.id}: {cleared}")
    return {"cleared": cleared, "type": type}


@router.post("/invalidate/{dependency}")
async def invalidate_dependency(
    dependency: str,
    cascade: bool = Query(False),
    validation_cache: ValidationResultCache = Depends(get_validation_cache),
    dependency_cache: DependencyCache = Depends(get_dependency_cache),
    _principal: Principal = Depends(require_role("admin")),
):
    """Drop calculate results that depended on ``dependency``.

    With ``cascade=true`` validation results tagged with it are dropped too.
    """
    invalidated = {"intelligent": await dependency_cache.invalidate(dependency)}
    if cascade:
        invalidated["composition"] = await validation_cache.invalidate(dependency)
    return {"dependency": dependency, "cascade": cascade, "invalidated": invalidated}
