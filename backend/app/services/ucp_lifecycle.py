"""UCP lifecycle: the only code allowed to change UCP, pallet and position
status.

States: active → empty (last item removed) → archived (dismantled, terminal).
A UCP can move between positions any number of times while not archived.

Every public operation:
  - runs inside ``transaction(db)`` so the status changes and the
    history row commit or roll back together (an enclosing unit of work,
    e.g. the assembler, is joined instead of committed)
  - binds pallets/positions with compare-and-swap UPDATEs on the expected
    status; a lost race or an occupied target raises 409
  - appends exactly one history entry per state change
"""

import logging

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import transaction, utcnow
from app.middleware.exceptions import ConflictError, DomainValidationError, ResourceNotFoundError
from app.models.warehouse.pallet import Pallet, PalletStatus
from app.models.warehouse.position import Position, PositionStatus
from app.models.warehouse.product import PackagingType, Product
from app.models.warehouse.ucp import ItemTransfer, Ucp, UcpAction, UcpHistory, UcpItem, UcpStatus
from app.utils.activity import record_history
from app.utils.numbering import generate_ucp_code

logger = logging.getLogger(__name__)

DISMANTLE_REASON = "UCP desmontada"


# ── Lookups ──────────────────────────────────────────────────

async def get_ucp_or_404(db: AsyncSession, ucp_id: int) -> Ucp:
    ucp = await db.get(Ucp, ucp_id)
    if ucp is None:
        raise ResourceNotFoundError("UCP", ucp_id)
    return ucp


async def get_item_or_404(db: AsyncSession, item_id: int) -> UcpItem:
    item = await db.get(UcpItem, item_id)
    if item is None:
        raise ResourceNotFoundError("UCP item", item_id)
    return item


async def active_items(db: AsyncSession, ucp_id: int, product_id: int | None = None) -> list[UcpItem]:
    stmt = select(UcpItem).where(UcpItem.ucp_id == ucp_id, UcpItem.is_active == True)  # noqa: E712
    if product_id is not None:
        stmt = stmt.where(UcpItem.product_id == product_id)
    result = await db.execute(stmt.order_by(UcpItem.added_at, UcpItem.id))
    return list(result.scalars().all())


async def active_quantity(db: AsyncSession, ucp_id: int, product_id: int) -> float:
    total = await db.scalar(
        select(func.coalesce(func.sum(UcpItem.quantity), 0))
        .where(
            UcpItem.ucp_id == ucp_id,
            UcpItem.product_id == product_id,
            UcpItem.is_active == True,  # noqa: E712
        )
    )
    return float(total or 0)


def _ensure_not_archived(ucp: Ucp) -> None:
    if ucp.status == UcpStatus.ARCHIVED.value:
        raise ConflictError(f"UCP {ucp.code} is archived", error_code="UCP_ARCHIVED")


# ── Compare-and-swap bindings ────────────────────────────────

async def _swap_status(db: AsyncSession, model, row_id: int, expected: str, new: str) -> bool:
    result = await db.execute(
        update(model)
        .where(model.id == row_id, model.status == expected)
        .values(status=new, updated_at=utcnow())
        .execution_options(synchronize_session="evaluate")
    )
    return result.rowcount == 1


async def _bind_pallet(db: AsyncSession, pallet_id: int) -> Pallet:
    pallet = await db.get(Pallet, pallet_id)
    if pallet is None:
        raise ResourceNotFoundError("Pallet", pallet_id)
    if not await _swap_status(
        db, Pallet, pallet_id, PalletStatus.DISPONIVEL.value, PalletStatus.EM_USO.value
    ):
        await db.refresh(pallet)
        raise ConflictError(
            f"Pallet {pallet.code} is not available (status: {pallet.status})",
            error_code="PALLET_UNAVAILABLE",
            suggestions=["Dismantle the UCP currently using this pallet, or pick another pallet"],
        )
    return pallet


async def _release_pallet(db: AsyncSession, pallet_id: int | None) -> None:
    if pallet_id is not None:
        await _swap_status(
            db, Pallet, pallet_id, PalletStatus.EM_USO.value, PalletStatus.DISPONIVEL.value
        )


async def _occupy_position(db: AsyncSession, position_id: int) -> Position:
    position = await db.get(Position, position_id)
    if position is None:
        raise ResourceNotFoundError("Position", position_id)
    if not await _swap_status(
        db, Position, position_id, PositionStatus.DISPONIVEL.value, PositionStatus.OCUPADA.value
    ):
        await db.refresh(position)
        error_code = (
            "POSITION_OCCUPIED" if position.status == PositionStatus.OCUPADA.value
            else "POSITION_UNAVAILABLE"
        )
        raise ConflictError(
            f"Position {position.code} is not available (status: {position.status})",
            error_code=error_code,
            suggestions=["Choose a free position"],
        )
    return position


async def _free_position(db: AsyncSession, position_id: int | None) -> None:
    if position_id is not None:
        await _swap_status(
            db, Position, position_id, PositionStatus.OCUPADA.value, PositionStatus.DISPONIVEL.value
        )


# ── Transitions ──────────────────────────────────────────────

async def create_ucp(
    db: AsyncSession,
    *,
    pallet_id: int,
    user_id: str,
    position_id: int | None = None,
    observations: str | None = None,
) -> Ucp:
    """New ``active`` UCP on a free pallet, optionally stored at a position."""
    async with transaction(db):
        await _bind_pallet(db, pallet_id)
        if position_id is not None:
            await _occupy_position(db, position_id)

        ucp = Ucp(
            code=await generate_ucp_code(db),
            pallet_id=pallet_id,
            position_id=position_id,
            status=UcpStatus.ACTIVE.value,
            observations=observations,
            created_by=user_id,
        )
        db.add(ucp)
        await db.flush()

        await record_history(
            db, ucp, UcpAction.CREATED,
            performed_by=user_id,
            description=f"UCP {ucp.code} created on pallet {pallet_id}",
            new_value={"code": ucp.code, "pallet_id": pallet_id, "position_id": position_id},
            to_position_id=position_id,
        )
    return ucp


async def add_item(
    db: AsyncSession,
    ucp_id: int,
    *,
    product_id: int,
    quantity: float,
    user_id: str,
    packaging_type_id: int | None = None,
    lot: str | None = None,
    expiry_date=None,
    internal_code: str | None = None,
) -> UcpItem:
    """Add an active item line. The UCP status is left as it is."""
    async with transaction(db):
        ucp = await get_ucp_or_404(db, ucp_id)
        _ensure_not_archived(ucp)
        if quantity <= 0:
            raise DomainValidationError("Quantity must be greater than zero", error_code="INVALID_QUANTITY")
        if await db.get(Product, product_id) is None:
            raise ResourceNotFoundError("Product", product_id)
        if packaging_type_id is not None and await db.get(PackagingType, packaging_type_id) is None:
            raise ResourceNotFoundError("Packaging type", packaging_type_id)

        item = UcpItem(
            ucp_id=ucp.id,
            product_id=product_id,
            packaging_type_id=packaging_type_id,
            quantity=quantity,
            lot=lot,
            expiry_date=expiry_date,
            internal_code=internal_code,
            is_active=True,
            added_by=user_id,
            added_at=utcnow(),
        )
        db.add(item)
        await db.flush()

        await record_history(
            db, ucp, UcpAction.ITEM_ADDED,
            performed_by=user_id,
            description=f"Added {quantity:g} x product {product_id}",
            new_value={"product_id": product_id, "quantity": quantity, "packaging_type_id": packaging_type_id},
            item_id=item.id,
        )
    return item


async def _remove_quantity(
    db: AsyncSession,
    ucp: Ucp,
    item: UcpItem,
    *,
    quantity: float | None,
    reason: str,
    user_id: str,
    partial_action: UcpAction = UcpAction.ITEM_REMOVED,
) -> bool:
    """Remove ``quantity`` (all when None) from ``item``; returns True if the line was closed."""
    if not item.is_active:
        raise ConflictError(f"Item {item.id} was already removed", error_code="ITEM_ALREADY_REMOVED")
    if quantity is not None and quantity > item.quantity:
        raise DomainValidationError(
            f"Cannot remove {quantity:g}: only {item.quantity:g} on item {item.id}",
            error_code="QUANTITY_EXCEEDS_AVAILABLE",
        )

    old_quantity = item.quantity
    if quantity is not None and quantity < item.quantity:
        item.quantity = old_quantity - quantity
        await db.flush()
        await record_history(
            db, ucp, partial_action,
            performed_by=user_id,
            description=f"Removed {quantity:g} of product {item.product_id}: {reason}",
            old_value={"quantity": old_quantity},
            new_value={"quantity": item.quantity, "reason": reason},
            item_id=item.id,
        )
        return False

    item.is_active = False
    item.removed_by = user_id
    item.removed_at = utcnow()
    item.removal_reason = reason
    await db.flush()
    await record_history(
        db, ucp, UcpAction.ITEM_REMOVED,
        performed_by=user_id,
        description=f"Removed product {item.product_id}: {reason}",
        old_value={"quantity": old_quantity, "is_active": True},
        new_value={"is_active": False, "reason": reason},
        item_id=item.id,
    )
    await _mark_empty_if_drained(db, ucp, user_id)
    return True


async def _mark_empty_if_drained(db: AsyncSession, ucp: Ucp, user_id: str) -> None:
    if ucp.status != UcpStatus.ACTIVE.value:
        return
    remaining = await db.scalar(
        select(func.count(UcpItem.id)).where(
            UcpItem.ucp_id == ucp.id, UcpItem.is_active == True  # noqa: E712
        )
    )
    if remaining:
        return
    ucp.status = UcpStatus.EMPTY.value
    await db.flush()
    await record_history(
        db, ucp, UcpAction.STATUS_CHANGED,
        performed_by=user_id,
        description="Last active item removed, UCP is now empty",
        old_value={"status": UcpStatus.ACTIVE.value},
        new_value={"status": UcpStatus.EMPTY.value},
    )


async def remove_item(
    db: AsyncSession,
    item_id: int,
    *,
    reason: str,
    user_id: str,
    quantity: float | None = None,
) -> tuple[UcpItem, Ucp]:
    """Remove an item line (or part of it). Emptying the UCP flips it to ``empty``."""
    async with transaction(db):
        item = await get_item_or_404(db, item_id)
        ucp = await get_ucp_or_404(db, item.ucp_id)
        _ensure_not_archived(ucp)
        await _remove_quantity(db, ucp, item, quantity=quantity, reason=reason, user_id=user_id)
    return item, ucp


async def move_ucp(
    db: AsyncSession,
    ucp_id: int,
    *,
    position_id: int,
    user_id: str,
    reason: str | None = None,
) -> Ucp:
    """Free the old position and occupy the new one, atomically."""
    async with transaction(db):
        ucp = await get_ucp_or_404(db, ucp_id)
        _ensure_not_archived(ucp)
        old_position_id = ucp.position_id
        if old_position_id == position_id:
            raise DomainValidationError(
                "UCP is already at this position", error_code="SAME_POSITION"
            )

        await _free_position(db, old_position_id)
        new_position = await _occupy_position(db, position_id)

        result = await db.execute(
            update(Ucp)
            .where(
                Ucp.id == ucp.id,
                Ucp.status != UcpStatus.ARCHIVED.value,
                Ucp.position_id.is_(None) if old_position_id is None
                else Ucp.position_id == old_position_id,
            )
            .values(position_id=position_id, updated_at=utcnow())
            .execution_options(synchronize_session="evaluate")
        )
        if result.rowcount != 1:
            raise ConflictError(
                f"UCP {ucp.code} was modified concurrently", error_code="CONCURRENT_MODIFICATION"
            )

        await record_history(
            db, ucp, UcpAction.MOVED,
            performed_by=user_id,
            description=f"Moved to position {new_position.code}" + (f": {reason}" if reason else ""),
            old_value={"position_id": old_position_id},
            new_value={"position_id": position_id, "reason": reason},
            from_position_id=old_position_id,
            to_position_id=position_id,
        )
    return ucp


async def dismantle_ucp(
    db: AsyncSession,
    ucp_id: int,
    *,
    user_id: str,
    reason: str | None = None,
) -> Ucp:
    """Terminal: close every item, archive the UCP, free pallet and position."""
    reason = reason or DISMANTLE_REASON
    async with transaction(db):
        ucp = await get_ucp_or_404(db, ucp_id)
        if ucp.status == UcpStatus.ARCHIVED.value:
            raise ConflictError(
                f"UCP {ucp.code} is already dismantled", error_code="UCP_ALREADY_ARCHIVED"
            )
        old_status = ucp.status
        old_position_id = ucp.position_id

        if not await _swap_status(db, Ucp, ucp.id, old_status, UcpStatus.ARCHIVED.value):
            raise ConflictError(
                f"UCP {ucp.code} was modified concurrently", error_code="CONCURRENT_MODIFICATION"
            )

        items = await active_items(db, ucp.id)
        now = utcnow()
        for item in items:
            item.is_active = False
            item.removed_by = user_id
            item.removed_at = now
            item.removal_reason = reason

        await _release_pallet(db, ucp.pallet_id)
        await _free_position(db, old_position_id)
        ucp.position_id = None
        await db.flush()

        await record_history(
            db, ucp, UcpAction.DISMANTLED,
            performed_by=user_id,
            description=f"UCP dismantled: {reason}",
            old_value={
                "status": old_status,
                "pallet_id": ucp.pallet_id,
                "position_id": old_position_id,
                "active_items": len(items),
            },
            new_value={"status": UcpStatus.ARCHIVED.value, "reason": reason},
            from_position_id=old_position_id,
        )
    return ucp


async def reactivate_pallet(
    db: AsyncSession,
    pallet_id: int,
    *,
    user_id: str,
    position_id: int | None = None,
    observations: str | None = None,
) -> Ucp:
    """Start a fresh UCP (new code) on a free pallet, regardless of its past UCPs."""
    async with transaction(db):
        pallet = await db.get(Pallet, pallet_id)
        if pallet is None:
            raise ResourceNotFoundError("Pallet", pallet_id)
        if pallet.status != PalletStatus.DISPONIVEL.value:
            raise ConflictError(
                f"Pallet {pallet.code} is not available (status: {pallet.status})",
                error_code="PALLET_UNAVAILABLE",
            )
        ucp = await create_ucp(
            db, pallet_id=pallet_id, user_id=user_id,
            position_id=position_id,
            observations=observations or f"Pallet {pallet.code} reactivated",
        )
    return ucp


async def transfer_item(
    db: AsyncSession,
    *,
    source_item_id: int,
    target_ucp_id: int,
    quantity: float,
    user_id: str,
    reason: str | None = None,
) -> ItemTransfer:
    """Move ``quantity`` of an item line into another UCP."""
    async with transaction(db):
        source_item = await get_item_or_404(db, source_item_id)
        source_ucp = await get_ucp_or_404(db, source_item.ucp_id)
        target_ucp = await get_ucp_or_404(db, target_ucp_id)
        _ensure_not_archived(source_ucp)
        _ensure_not_archived(target_ucp)
        if source_ucp.id == target_ucp.id:
            raise DomainValidationError(
                "Source and target UCP are the same", error_code="SAME_UCP"
            )
        if not source_item.is_active:
            raise ConflictError(
                f"Item {source_item.id} was already removed", error_code="ITEM_ALREADY_REMOVED"
            )
        if quantity <= 0 or quantity > source_item.quantity:
            raise DomainValidationError(
                f"Invalid transfer quantity {quantity:g} (available: {source_item.quantity:g})",
                error_code="QUANTITY_EXCEEDS_AVAILABLE",
            )

        complete = quantity >= source_item.quantity
        note = reason or f"Transferred to UCP {target_ucp.code}"
        await _remove_quantity(
            db, source_ucp, source_item,
            quantity=None if complete else quantity,
            reason=note,
            user_id=user_id,
            partial_action=UcpAction.ITEM_TRANSFERRED,
        )

        target_item = UcpItem(
            ucp_id=target_ucp.id,
            product_id=source_item.product_id,
            packaging_type_id=source_item.packaging_type_id,
            quantity=quantity,
            lot=source_item.lot,
            expiry_date=source_item.expiry_date,
            internal_code=source_item.internal_code,
            is_active=True,
            added_by=user_id,
            added_at=utcnow(),
        )
        db.add(target_item)
        await db.flush()
        await record_history(
            db, target_ucp, UcpAction.ITEM_ADDED,
            performed_by=user_id,
            description=f"Received {quantity:g} of product {source_item.product_id} from UCP {source_ucp.code}",
            new_value={"product_id": source_item.product_id, "quantity": quantity, "source_item_id": source_item.id},
            item_id=target_item.id,
        )

        transfer = ItemTransfer(
            source_ucp_id=source_ucp.id,
            target_ucp_id=target_ucp.id,
            source_item_id=source_item.id,
            target_item_id=target_item.id,
            product_id=source_item.product_id,
            quantity=quantity,
            reason=reason,
            transfer_type="complete" if complete else "partial",
            performed_by=user_id,
        )
        db.add(transfer)
        await db.flush()
    return transfer


# ── Read side ────────────────────────────────────────────────

async def get_ucp(
    db: AsyncSession, ucp_id: int, include_removed: bool = False
) -> tuple[Ucp, list[UcpItem]]:
    ucp = await get_ucp_or_404(db, ucp_id)
    stmt = select(UcpItem).where(UcpItem.ucp_id == ucp.id)
    if not include_removed:
        stmt = stmt.where(UcpItem.is_active == True)  # noqa: E712
    result = await db.execute(stmt.order_by(UcpItem.id))
    return ucp, list(result.scalars().all())


async def list_ucps(
    db: AsyncSession,
    *,
    include_archived: bool = False,
    status: str | None = None,
    pallet_id: int | None = None,
    position_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Ucp], int]:
    base = select(Ucp)
    if status:
        base = base.where(Ucp.status == status)
    elif not include_archived:
        base = base.where(Ucp.status != UcpStatus.ARCHIVED.value)
    if pallet_id is not None:
        base = base.where(Ucp.pallet_id == pallet_id)
    if position_id is not None:
        base = base.where(Ucp.position_id == position_id)

    total = await db.scalar(select(func.count()).select_from(base.subquery()))
    result = await db.execute(base.order_by(Ucp.id.desc()).limit(limit).offset(offset))
    return list(result.scalars().all()), int(total or 0)


async def get_ucp_history(db: AsyncSession, ucp_id: int) -> list[UcpHistory]:
    await get_ucp_or_404(db, ucp_id)
    result = await db.execute(
        select(UcpHistory)
        .where(UcpHistory.ucp_id == ucp_id)
        .order_by(UcpHistory.timestamp, UcpHistory.id)
    )
    return list(result.scalars().all())


async def get_ucp_by_code(db: AsyncSession, code: str) -> Ucp:
    ucp = await db.scalar(select(Ucp).where(Ucp.code == code))
    if ucp is None:
        raise ResourceNotFoundError("UCP", code)
    return ucp


async def ucp_stats(db: AsyncSession) -> dict[str, int]:
    """UCP counts per status, plus the overall total."""
    result = await db.execute(select(Ucp.status, func.count()).group_by(Ucp.status))
    counts = dict(result.all())
    stats = {s.value: int(counts.get(s.value, 0)) for s in UcpStatus}
    stats["total"] = sum(stats.values())
    return stats


async def ucps_for_transfer(db: AsyncSession) -> list[Ucp]:
    """UCPs that can receive items: everything not archived."""
    result = await db.execute(
        select(Ucp)
        .where(Ucp.status != UcpStatus.ARCHIVED.value)
        .order_by(Ucp.code)
    )
    return list(result.scalars().all())


async def pallets_for_ucp(db: AsyncSession) -> list[Pallet]:
    """Free pallets that no live UCP is sitting on."""
    in_use = (
        select(Ucp.id)
        .where(Ucp.pallet_id == Pallet.id, Ucp.status != UcpStatus.ARCHIVED.value)
        .exists()
    )
    result = await db.execute(
        select(Pallet)
        .where(Pallet.status == PalletStatus.DISPONIVEL.value, ~in_use)
        .order_by(Pallet.code)
    )
    return list(result.scalars().all())
