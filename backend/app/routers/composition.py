"""Composition router.

Endpoints:
    POST  /api/composition/calculate          Layout + full validation (cached per dependency)
    POST  /api/composition/validate           Full validation, 400 on violations
                                              (?realTime=true → real-time behaviour)
    POST  /api/composition/real-time          Validation in quick|business|full mode, never 400s
    POST  /api/composition/save               Persist as draft with its validation result
    GET   /api/composition/{composition_id}   Saved composition with items
    PATCH /api/composition/{composition_id}/status   draft → validated → approved → executed
    POST  /api/composition/assemble           Approved composition → UCP
    POST  /api/composition/disassemble        Remove composition products from UCPs

Calculation and validation endpoints consume the complexity-aware rate
limit budget of the caller.
"""

import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.deps import Principal, get_current_principal
from app.database import get_db
from app.middleware.rate_limit import enforce_composition_rate_limit
from app.schemas.composition import (
    AssembleRequest,
    AssembleResult,
    CalculateRequest,
    CalculationData,
    CalculationMetadata,
    CalculationResponse,
    CompositionItemOut,
    CompositionOut,
    CompositionRequest,
    CompositionStatusUpdate,
    DisassembleRequest,
    DisassembleResult,
    Layout,
    RealTimeValidationRequest,
    SaveCompositionRequest,
    ValidationMode,
)
from app.schemas.validation import ValidationResult
from app.services import composition as composition_service
from app.services.composition_validation import validate_composition
from app.utils.cache import (
    DependencyCache,
    ValidationResultCache,
    dependency_tags,
    get_dependency_cache,
    get_validation_cache,
    signature_key,
)

router = APIRouter()


def _composition_out(composition, items) -> CompositionOut:
    out = CompositionOut.model_validate(composition)
    out.items = [CompositionItemOut.model_validate(i) for i in items]
    return out


# ── POST /api/composition/calculate ──────────────────────────

@router.post("/calculate", response_model=CalculationResponse)
async def calculate(
    body: CalculateRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    dep_cache: DependencyCache = Depends(get_dependency_cache),
):
    await enforce_composition_rate_limit(request, principal.id, body)
    started = time.perf_counter()

    calculate_cached = dep_cache.wrap(
        composition_service.calculate_composition,
        key_fn=lambda _db, b: signature_key("calc", b.algorithm, b),
        tags_fn=lambda _db, b: dependency_tags(b),
    )
    data, cached = await calculate_cached(db, body)

    return CalculationResponse(
        data=CalculationData(
            layout=Layout.model_validate(data["layout"]),
            validation=ValidationResult.model_validate(data["validation"]),
        ),
        metadata=CalculationMetadata(
            response_time_ms=round((time.perf_counter() - started) * 1000, 3),
            algorithm=data["algorithm"],
            attempts=data["attempts"],
            cached=cached,
            timestamp=datetime.now(timezone.utc),
        ),
    )


# ── POST /api/composition/validate ───────────────────────────

@router.post("/validate", response_model=ValidationResult)
async def validate(
    body: CompositionRequest,
    request: Request,
    real_time: bool = Query(False, alias="realTime"),
    mode: ValidationMode = Query("quick"),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    cache: ValidationResultCache = Depends(get_validation_cache),
):
    """Full validation; any blocking violation is a 400 with the violations.

    With ``?realTime=true`` the result is returned as-is in ``mode``.
    """
    await enforce_composition_rate_limit(request, principal.id, body)
    if real_time:
        return await validate_composition(db, body, mode, cache)

    result = await validate_composition(db, body, "full", cache)
    composition_service.raise_for_violations(result)
    return result


# ── POST /api/composition/real-time ──────────────────────────

@router.post("/real-time", response_model=ValidationResult)
async def validate_real_time(
    body: RealTimeValidationRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    cache: ValidationResultCache = Depends(get_validation_cache),
):
    await enforce_composition_rate_limit(request, principal.id, body)
    return await validate_composition(db, body, body.mode, cache)


# ── POST /api/composition/save ───────────────────────────────

@router.post("/save", response_model=CompositionOut, status_code=201)
async def save(
    body: SaveCompositionRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    cache: ValidationResultCache = Depends(get_validation_cache),
):
    await enforce_composition_rate_limit(
        request, principal.id,
        CompositionRequest(products=body.products, pallet_id=body.pallet_id, constraints=body.constraints),
    )
    composition, items = await composition_service.save_composition(
        db, body, user_id=principal.id, cache=cache
    )
    return _composition_out(composition, items)


# ── GET /api/composition/{composition_id} ────────────────────

@router.get("/{composition_id}", response_model=CompositionOut)
async def get_composition(
    composition_id: int,
    db: AsyncSession = Depends(get_db),
    _principal: Principal = Depends(get_current_principal),
):
    composition = await composition_service.get_composition_or_404(db, composition_id)
    items = await composition_service.get_composition_items(db, composition.id)
    return _composition_out(composition, items)


# ── PATCH /api/composition/{composition_id}/status ───────────

@router.patch("/{composition_id}/status", response_model=CompositionOut)
async def update_status(
    composition_id: int,
    body: CompositionStatusUpdate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    cache: ValidationResultCache = Depends(get_validation_cache),
):
    composition = await composition_service.update_composition_status(
        db, composition_id, body.status, user_id=principal.id, cache=cache
    )
    items = await composition_service.get_composition_items(db, composition.id)
    return _composition_out(composition, items)


# ── POST /api/composition/assemble ───────────────────────────

@router.post("/assemble", response_model=AssembleResult)
async def assemble(
    body: AssembleRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    cache: ValidationResultCache = Depends(get_validation_cache),
):
    return await composition_service.assemble_composition(
        db, body, user_id=principal.id, cache=cache
    )


# ── POST /api/composition/disassemble ────────────────────────

@router.post("/disassemble", response_model=DisassembleResult)
async def disassemble(
    body: DisassembleRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return await composition_service.disassemble_composition(
        db, body, user_id=principal.id
    )
