"""Composition workflows: calculate, save, status transitions, assemble and
disassemble.

Assembling turns an approved composition into a concrete UCP by driving the
lifecycle service (create + add item per product).  Disassembling drives
``remove item`` for each requested UCP/product pair.  Each of the two runs
as a single unit of work: any failure rolls back every lifecycle step.
"""

import asyncio
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import transaction, utcnow
from app.middleware.exceptions import (
    BusinessRuleViolation,
    CalculationTimeoutError,
    CompositionViolationError,
    ConflictError,
    ResourceNotFoundError,
)
from app.models.warehouse.composition import CompositionItem, CompositionStatus, PackagingComposition
from app.models.warehouse.product import Product
from app.models.warehouse.ucp import Ucp, UcpStatus
from app.schemas.composition import (
    AssembleRequest,
    AssembleResult,
    CalculateRequest,
    CompositionConstraints,
    CompositionProduct,
    CompositionRequest,
    DisassembleRequest,
    DisassembleResult,
    Layout,
    SaveCompositionRequest,
)
from app.schemas.validation import ValidationResult
from app.services import ucp_lifecycle
from app.services.composition_validation import evaluate, resolve_request, validate_composition
from app.services.layout import STRATEGIES, LayoutStrategy
from app.utils.cache import ValidationResultCache

logger = logging.getLogger(__name__)

# draft → validated → approved → executed, one step at a time
NEXT_STATUS = {
    CompositionStatus.DRAFT.value: CompositionStatus.VALIDATED.value,
    CompositionStatus.VALIDATED.value: CompositionStatus.APPROVED.value,
    CompositionStatus.APPROVED.value: CompositionStatus.EXECUTED.value,
}


def raise_for_violations(result: ValidationResult, message: str = "Composition failed validation") -> None:
    if result.is_valid:
        return
    raise CompositionViolationError(
        message,
        violations=[v.model_dump() for v in result.violations],
        warnings=[w.model_dump() for w in result.warnings],
        suggestions=[s.model_dump() for s in result.suggestions],
        metrics=result.metrics.model_dump(),
    )


# ── Calculate ────────────────────────────────────────────────

async def compute_layout_with_retries(
    strategy_name: str,
    resolved,
    *,
    timeout: float | None = None,
    max_attempts: int | None = None,
    strategies: dict[str, LayoutStrategy] | None = None,
) -> tuple[Layout, str, int]:
    """Run the layout strategy under a time budget.

    After a timeout the calculation falls back to ``standard``; after
    ``max_attempts`` timeouts it gives up with 503.
    Returns ``(layout, algorithm_used, attempts)``.
    """
    timeout = timeout if timeout is not None else settings.layout_timeout_seconds
    max_attempts = max_attempts or settings.layout_max_attempts
    strategies = strategies or STRATEGIES

    name = strategy_name if strategy_name in strategies else "standard"
    for attempt in range(1, max_attempts + 1):
        strategy = strategies[name]
        try:
            layout = await asyncio.wait_for(
                strategy.compute_layout(
                    resolved.request.products, resolved.products,
                    resolved.pallet, resolved.request.constraints,
                ),
                timeout=timeout,
            )
            return layout, name, attempt
        except asyncio.TimeoutError:
            logger.warning(
                f"Layout '{name}' timed out after {timeout}s (attempt {attempt}/{max_attempts})"
            )
            name = "standard"
    raise CalculationTimeoutError(attempts=max_attempts)


async def calculate_composition(
    db: AsyncSession,
    body: CalculateRequest,
    *,
    strategies: dict[str, LayoutStrategy] | None = None,
) -> dict:
    """Layout + full validation, as a JSON-able dict (cacheable)."""
    request = CompositionRequest(
        products=body.products, pallet_id=body.pallet_id, constraints=body.constraints
    )
    resolved = await resolve_request(db, request)
    layout, algorithm, attempts = await compute_layout_with_retries(
        body.algorithm, resolved, strategies=strategies
    )
    validation = evaluate(resolved, "full")
    return {
        "layout": layout.model_dump(mode="json"),
        "validation": validation.model_dump(mode="json"),
        "algorithm": algorithm,
        "attempts": attempts,
    }


# ── Persistence ──────────────────────────────────────────────

async def get_composition_or_404(db: AsyncSession, composition_id: int) -> PackagingComposition:
    composition = await db.get(PackagingComposition, composition_id)
    if composition is None or not composition.is_active:
        raise ResourceNotFoundError("Composition", composition_id)
    return composition


async def get_composition_items(db: AsyncSession, composition_id: int) -> list[CompositionItem]:
    result = await db.execute(
        select(CompositionItem)
        .where(CompositionItem.composition_id == composition_id)
        .order_by(CompositionItem.sort_order, CompositionItem.id)
    )
    return list(result.scalars().all())


def request_from_composition(
    composition: PackagingComposition, items: list[CompositionItem]
) -> CompositionRequest:
    return CompositionRequest(
        products=[
            CompositionProduct(
                product_id=i.product_id,
                quantity=i.quantity,
                packaging_type_id=i.packaging_type_id,
            )
            for i in items
        ],
        pallet_id=composition.pallet_id,
        constraints=CompositionConstraints(**composition.constraints) if composition.constraints else None,
    )


async def save_composition(
    db: AsyncSession,
    body: SaveCompositionRequest,
    *,
    user_id: str,
    cache: ValidationResultCache | None = None,
) -> tuple[PackagingComposition, list[CompositionItem]]:
    """Persist a ``draft`` composition with its full validation result."""
    request = CompositionRequest(
        products=body.products, pallet_id=body.pallet_id, constraints=body.constraints
    )
    async with transaction(db):
        result = await validate_composition(db, request, "full", cache)
        composition = PackagingComposition(
            name=body.name,
            description=body.description,
            pallet_id=result.metrics.pallet_id,
            status=CompositionStatus.DRAFT.value,
            constraints=body.constraints.model_dump() if body.constraints else None,
            result=result.model_dump(mode="json"),
            efficiency=result.metrics.efficiency,
            total_weight=result.metrics.total_weight,
            total_volume=result.metrics.total_volume,
            total_height=result.metrics.max_height,
            created_by=user_id,
        )
        db.add(composition)
        await db.flush()

        items = [
            CompositionItem(
                composition_id=composition.id,
                product_id=p.product_id,
                packaging_type_id=p.packaging_type_id,
                quantity=p.quantity,
                layer=1,
                sort_order=index,
            )
            for index, p in enumerate(body.products)
        ]
        db.add_all(items)
        await db.flush()

    logger.info(f"Composition {composition.id} saved as draft (valid={result.is_valid})")
    return composition, items


async def update_composition_status(
    db: AsyncSession,
    composition_id: int,
    new_status: str,
    *,
    user_id: str,
    cache: ValidationResultCache | None = None,
) -> PackagingComposition:
    """Advance the composition exactly one step."""
    async with transaction(db):
        composition = await get_composition_or_404(db, composition_id)
        expected = NEXT_STATUS.get(composition.status)
        if expected is None:
            raise BusinessRuleViolation(
                f"Composition {composition.id} is {composition.status} and cannot change status",
                error_code="INVALID_STATUS_TRANSITION",
            )
        if new_status != expected:
            raise BusinessRuleViolation(
                f"Cannot move composition from {composition.status} to {new_status}; next status is {expected}",
                error_code="INVALID_STATUS_TRANSITION",
            )

        if new_status == CompositionStatus.VALIDATED.value:
            items = await get_composition_items(db, composition.id)
            result = await validate_composition(
                db, request_from_composition(composition, items), "full", cache
            )
            raise_for_violations(result, "Composition cannot be validated")
            composition.result = result.model_dump(mode="json")
            composition.efficiency = result.metrics.efficiency
        elif new_status == CompositionStatus.APPROVED.value:
            composition.approved_by = user_id
            composition.approved_at = utcnow()

        old_status = composition.status
        composition.status = new_status
        await db.flush()

    logger.info(f"Composition {composition.id}: {old_status} → {new_status}")
    return composition


# ── Assemble / disassemble ───────────────────────────────────

async def _onto_target(db: AsyncSession, request: CompositionRequest, ucp: Ucp) -> CompositionRequest:
    """The composition as it would sit on ``ucp``: that UCP's pallet, plus
    whatever it already holds (merged per product)."""
    held = [
        CompositionProduct(
            product_id=i.product_id, quantity=i.quantity, packaging_type_id=i.packaging_type_id
        )
        for i in await ucp_lifecycle.active_items(db, ucp.id)
    ]
    merged: dict[int, CompositionProduct] = {}
    for line in [*request.products, *held]:
        current = merged.get(line.product_id)
        if current is None:
            merged[line.product_id] = line
        else:
            merged[line.product_id] = current.model_copy(update={
                "quantity": current.quantity + line.quantity,
                "packaging_type_id": current.packaging_type_id or line.packaging_type_id,
            })
    return request.model_copy(update={"products": list(merged.values()), "pallet_id": ucp.pallet_id})


async def assemble_composition(
    db: AsyncSession,
    body: AssembleRequest,
    *,
    user_id: str,
    cache: ValidationResultCache | None = None,
) -> AssembleResult:
    """Materialize an approved composition into a UCP."""
    async with transaction(db):
        composition = await get_composition_or_404(db, body.composition_id)
        if composition.status != CompositionStatus.APPROVED.value:
            raise BusinessRuleViolation(
                f"Composition must be approved before assembly (current: {composition.status})",
            )
        items = await get_composition_items(db, composition.id)

        target = None
        if body.target_ucp_id is not None:
            target = await ucp_lifecycle.get_ucp_or_404(db, body.target_ucp_id)
            if target.status == UcpStatus.ARCHIVED.value:
                raise ConflictError(
                    f"Target UCP {target.code} is archived", error_code="UCP_ARCHIVED"
                )
            if target.pallet_id is None:
                raise ConflictError(
                    f"Target UCP {target.code} has no pallet", error_code="UCP_WITHOUT_PALLET"
                )

        # Always re-validate: products and pallet may have changed since approval.
        request = request_from_composition(composition, items)
        if target is not None:
            request = await _onto_target(db, request, target)
        validation = await validate_composition(db, request, "full", cache)
        raise_for_violations(validation, "Composition no longer passes validation")

        shortages = []
        for item in items:
            product = await db.get(Product, item.product_id)
            if product is None:
                raise ResourceNotFoundError("Product", item.product_id)
            if (product.stock_quantity or 0) < item.quantity:
                shortages.append({
                    "product_id": product.id,
                    "requested": item.quantity,
                    "available": product.stock_quantity or 0,
                })
        if shortages:
            raise BusinessRuleViolation(
                "Insufficient stock to assemble the composition",
                details={"shortages": shortages},
                suggestions=["Reduce quantities or replenish stock before assembling"],
            )

        if target is not None:
            ucp = target
        else:
            ucp = await ucp_lifecycle.create_ucp(
                db,
                pallet_id=composition.pallet_id,
                position_id=body.position_id,
                user_id=user_id,
                observations=f"Assembled from composition {composition.name}",
            )

        item_ids = []
        for item in items:
            added = await ucp_lifecycle.add_item(
                db, ucp.id,
                product_id=item.product_id,
                quantity=item.quantity,
                packaging_type_id=item.packaging_type_id,
                user_id=user_id,
            )
            item_ids.append(added.id)

        composition.ucp_id = ucp.id
        await db.flush()

    logger.info(f"Composition {composition.id} assembled into UCP {ucp.code}")
    return AssembleResult(
        composition_id=composition.id,
        ucp_id=ucp.id,
        ucp_code=ucp.code,
        item_ids=item_ids,
        validation=validation,
    )


async def disassemble_composition(
    db: AsyncSession,
    body: DisassembleRequest,
    *,
    user_id: str,
) -> DisassembleResult:
    """Remove composition products from the given UCPs."""
    async with transaction(db):
        composition = await get_composition_or_404(db, body.composition_id)
        if composition.status == CompositionStatus.EXECUTED.value:
            raise BusinessRuleViolation(
                f"Composition {composition.id} is executed and cannot be disassembled",
                error_code="COMPOSITION_ALREADY_EXECUTED",
            )
        items = await get_composition_items(db, composition.id)
        planned: dict[int, float] = {}
        for item in items:
            planned[item.product_id] = planned.get(item.product_id, 0) + item.quantity

        # Check every target before touching anything.
        requested_per_product: dict[int, float] = {}
        requested_per_pair: dict[tuple[int, int], float] = {}
        for target in body.target_ucps:
            if target.product_id not in planned:
                raise BusinessRuleViolation(
                    f"Product {target.product_id} is not part of composition {composition.id}",
                    error_code="PRODUCT_NOT_IN_COMPOSITION",
                )
            requested_per_product[target.product_id] = (
                requested_per_product.get(target.product_id, 0) + target.quantity
            )
            pair = (target.ucp_id, target.product_id)
            requested_per_pair[pair] = requested_per_pair.get(pair, 0) + target.quantity

        for product_id, requested in requested_per_product.items():
            if requested > planned[product_id]:
                raise BusinessRuleViolation(
                    f"Requested {requested:g} of product {product_id} but the composition holds {planned[product_id]:g}",
                    error_code="QUANTITY_EXCEEDS_COMPOSITION",
                )
        for (ucp_id, product_id), requested in requested_per_pair.items():
            ucp = await ucp_lifecycle.get_ucp_or_404(db, ucp_id)
            on_hand = await ucp_lifecycle.active_quantity(db, ucp.id, product_id)
            if requested > on_hand:
                raise BusinessRuleViolation(
                    f"UCP {ucp.code} holds {on_hand:g} of product {product_id}, cannot remove {requested:g}",
                    error_code="INSUFFICIENT_QUANTITY",
                )

        removed_item_ids: list[int] = []
        emptied: list[int] = []
        reason = f"Disassembled from composition {composition.name}"
        for (ucp_id, product_id), requested in requested_per_pair.items():
            remaining = requested
            for line in await ucp_lifecycle.active_items(db, ucp_id, product_id):
                if remaining <= 0:
                    break
                take = min(remaining, line.quantity)
                _, ucp = await ucp_lifecycle.remove_item(
                    db, line.id, reason=reason, user_id=user_id,
                    quantity=take if take < line.quantity else None,
                )
                removed_item_ids.append(line.id)
                remaining -= take
                if ucp.status == UcpStatus.EMPTY.value and ucp.id not in emptied:
                    emptied.append(ucp.id)

    logger.info(f"Composition {composition.id} disassembled from {len(requested_per_pair)} UCP/product pair(s)")
    return DisassembleResult(
        composition_id=composition.id,
        removed_item_ids=removed_item_ids,
        emptied_ucp_ids=emptied,
    )
