"""Validation orchestrator.

Resolves the request against the database, then runs the pure checks in
``composition_rules`` according to the mode:

  quick    → physical constraints only (live typing feedback)
  business → constraints + business rules
  full     → constraints + business rules + compatibility
             (required before saving, approving or assembling)

Results are served from the ``ValidationResultCache`` when one is given.
"""

import logging
import time
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.middleware.exceptions import ConflictError, ResourceNotFoundError
from app.models.warehouse.pallet import Pallet, PalletStatus
from app.models.warehouse.product import PackagingType, Product
from app.schemas.composition import CompositionRequest
from app.schemas.validation import ValidationMetrics, ValidationResult
from app.services.composition_rules import (
    BusinessRuleEngine,
    calculate_totals,
    check_compatibility,
    real_time_score,
    risk_level,
    validate_constraints,
)
from app.utils.cache import ValidationResultCache

logger = logging.getLogger(__name__)

MODES = ("quick", "business", "full")


@dataclass
class ResolvedComposition:
    """Everything the checks need, loaded once."""
    request: CompositionRequest
    products: dict[int, Product]
    pallet: Pallet
    packaging_types: dict[int, PackagingType]


# ── Resolution ───────────────────────────────────────────────

async def resolve_pallet(db: AsyncSession, pallet_id: int | None) -> Pallet:
    """Load the requested pallet, or auto-select the first free one."""
    if pallet_id is not None:
        pallet = await db.get(Pallet, pallet_id)
        if pallet is None:
            raise ResourceNotFoundError("Pallet", pallet_id)
        return pallet

    pallet = await db.scalar(
        select(Pallet)
        .where(Pallet.status == PalletStatus.DISPONIVEL.value)
        .order_by(Pallet.id)
        .limit(1)
    )
    if pallet is None:
        raise ConflictError(
            "No available pallet to evaluate the composition against",
            error_code="NO_PALLET_AVAILABLE",
            suggestions=["Pass pallet_id explicitly or free a pallet"],
        )
    return pallet


async def load_products(db: AsyncSession, product_ids: set[int]) -> dict[int, Product]:
    result = await db.execute(select(Product).where(Product.id.in_(product_ids)))
    products = {p.id: p for p in result.scalars().all()}
    missing = sorted(product_ids - products.keys())
    if missing:
        raise ResourceNotFoundError("Product", ", ".join(str(m) for m in missing))
    return products


async def load_packaging_types(db: AsyncSession, ids: set[int]) -> dict[int, PackagingType]:
    if not ids:
        return {}
    result = await db.execute(select(PackagingType).where(PackagingType.id.in_(ids)))
    return {p.id: p for p in result.scalars().all()}


async def resolve_request(db: AsyncSession, request: CompositionRequest) -> ResolvedComposition:
    products = await load_products(db, {p.product_id for p in request.products})
    pallet = await resolve_pallet(db, request.pallet_id)
    packaging_types = await load_packaging_types(
        db, {p.packaging_type_id for p in request.products if p.packaging_type_id is not None}
    )
    return ResolvedComposition(request, products, pallet, packaging_types)


# ── Evaluation ───────────────────────────────────────────────

def evaluate(
    resolved: ResolvedComposition,
    mode: str = "full",
    rules: BusinessRuleEngine | None = None,
) -> ValidationResult:
    """Run the checks for ``mode`` over an already-resolved request.

    Products are evaluated in id order so that reordering the request
    never changes the result.
    """
    if mode not in MODES:
        raise ValueError(f"Unknown validation mode: {mode}")
    started = time.perf_counter()

    request = resolved.request.model_copy(update={
        "products": sorted(resolved.request.products, key=lambda p: p.product_id),
    })
    totals = calculate_totals(request.products, resolved.products)
    report = validate_constraints(totals, resolved.pallet, request.constraints)

    violations = list(report.violations)
    warnings = list(report.warnings)
    suggestions = list(report.suggestions)
    business_checks = []
    compatibility = None

    if mode in ("business", "full"):
        business = (rules or BusinessRuleEngine()).evaluate(request)
        business_checks = business.checks
        violations.extend(business.violations)
        warnings.extend(business.warnings)

    if mode == "full":
        compat = check_compatibility(
            request, resolved.packaging_types, resolved.pallet, report.checks
        )
        compatibility = compat.report
        violations.extend(compat.violations)

    checks = report.checks
    metrics = ValidationMetrics(
        total_weight=totals.total_weight,
        total_volume=totals.total_volume,
        max_height=totals.max_height,
        weight_utilization=checks.weight.utilization,
        volume_utilization=checks.volume.utilization,
        height_utilization=checks.height.utilization,
        efficiency=report.efficiency,
        stability=report.stability,
        risk_level=risk_level(violations, warnings),
        pallet_id=resolved.pallet.id,
        product_count=len(request.products),
        processing_time_ms=round((time.perf_counter() - started) * 1000, 3),
    )
    return ValidationResult(
        is_valid=not violations,
        mode=mode,
        violations=violations,
        warnings=warnings,
        suggestions=suggestions,
        metrics=metrics,
        constraints=checks,
        business_rules=business_checks,
        compatibility=compatibility,
        real_time_score=real_time_score(report.efficiency, report.stability),
    )


async def validate_composition(
    db: AsyncSession,
    request: CompositionRequest,
    mode: str = "full",
    cache: ValidationResultCache | None = None,
) -> ValidationResult:
    """Validate ``request`` in ``mode``, consulting ``cache`` first."""
    if cache is not None:
        hit = await cache.get(request, mode)
        if hit is not None:
            return hit.model_copy(update={"cached": True})

    resolved = await resolve_request(db, request)
    result = evaluate(resolved, mode)

    if cache is not None:
        await cache.set(request, mode, result)
    logger.debug(
        f"Validated composition ({mode}): valid={result.is_valid}, "
        f"violations={len(result.violations)}, warnings={len(result.warnings)}"
    )
    return result
