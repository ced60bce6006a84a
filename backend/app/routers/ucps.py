"""UCP router.

Endpoints:
    POST   /api/ucps/                       Create a UCP on a free pallet
    GET    /api/ucps/                       List UCPs (archived excluded unless asked)
    GET    /api/ucps/stats                  Counts per status
    GET    /api/ucps/available-for-transfer Non-archived UCPs that can receive items
    GET    /api/ucps/code/{code}            Look a UCP up by its code
    POST   /api/ucps/transfer-item          Move (part of) an item line to another UCP
    DELETE /api/ucps/items/{item_id}        Remove an item line, fully or partially
    GET    /api/ucps/{ucp_id}               UCP detail with items
    GET    /api/ucps/{ucp_id}/history       Audit trail
    POST   /api/ucps/{ucp_id}/items         Add an item line
    POST   /api/ucps/{ucp_id}/move          Move to another position
    POST   /api/ucps/{ucp_id}/dismantle     Archive the UCP, freeing pallet and position
"""

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.deps import Principal, get_current_principal, require_manager
from app.database import get_db
from app.schemas.common import PaginatedResponse
from app.schemas.ucp import (
    ItemRemovalOut,
    ItemTransferOut,
    ItemTransferRequest,
    UcpCreate,
    UcpDetail,
    UcpDismantle,
    UcpHistoryOut,
    UcpItemCreate,
    UcpItemOut,
    UcpItemRemove,
    UcpMove,
    UcpStats,
    UcpSummary,
)
from app.services import ucp_lifecycle

router = APIRouter()


async def _detail(db: AsyncSession, ucp_id: int, include_removed: bool = False) -> UcpDetail:
    ucp, items = await ucp_lifecycle.get_ucp(db, ucp_id, include_removed=include_removed)
    detail = UcpDetail.model_validate(ucp)
    detail.items = [UcpItemOut.model_validate(i) for i in items]
    return detail


# ── POST /api/ucps/ ──────────────────────────────────────────

@router.post("/", response_model=UcpDetail, status_code=201)
async def create_ucp(
    body: UcpCreate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_manager),
):
    ucp = await ucp_lifecycle.create_ucp(
        db,
        pallet_id=body.pallet_id,
        position_id=body.position_id,
        observations=body.observations,
        user_id=principal.id,
    )
    return await _detail(db, ucp.id)


# ── GET /api/ucps/ ───────────────────────────────────────────

@router.get("/", response_model=PaginatedResponse[UcpSummary])
async def list_ucps(
    include_archived: bool = Query(False),
    status: str | None = Query(None),
    pallet_id: int | None = Query(None),
    position_id: int | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    _principal: Principal = Depends(get_current_principal),
):
    ucps, total = await ucp_lifecycle.list_ucps(
        db,
        include_archived=include_archived,
        status=status,
        pallet_id=pallet_id,
        position_id=position_id,
        limit=limit,
        offset=offset,
    )
    return PaginatedResponse[UcpSummary].from_page(
        [UcpSummary.model_validate(u) for u in ucps], total, limit, offset
    )


# ── GET /api/ucps/stats ──────────────────────────────────────

@router.get("/stats", response_model=UcpStats)
async def ucp_stats(
    db: AsyncSession = Depends(get_db),
    _principal: Principal = Depends(get_current_principal),
):
    return await ucp_lifecycle.ucp_stats(db)


# ── GET /api/ucps/available-for-transfer ─────────────────────

@router.get("/available-for-transfer", response_model=list[UcpSummary])
async def available_for_transfer(
    db: AsyncSession = Depends(get_db),
    _principal: Principal = Depends(get_current_principal),
):
    return [UcpSummary.model_validate(u) for u in await ucp_lifecycle.ucps_for_transfer(db)]


# ── GET /api/ucps/code/{code} ────────────────────────────────

@router.get("/code/{code}", response_model=UcpDetail)
async def get_ucp_by_code(
    code: str,
    db: AsyncSession = Depends(get_db),
    _principal: Principal = Depends(get_current_principal),
):
    ucp = await ucp_lifecycle.get_ucp_by_code(db, code)
    return await _detail(db, ucp.id)


# ── POST /api/ucps/transfer-item ─────────────────────────────

@router.post("/transfer-item", response_model=ItemTransferOut, status_code=201)
async def transfer_item(
    body: ItemTransferRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return await ucp_lifecycle.transfer_item(
        db,
        source_item_id=body.source_item_id,
        target_ucp_id=body.target_ucp_id,
        quantity=body.quantity,
        reason=body.reason,
        user_id=principal.id,
    )


# ── DELETE /api/ucps/items/{item_id} ─────────────────────────

@router.delete("/items/{item_id}", response_model=ItemRemovalOut)
async def remove_item(
    item_id: int,
    body: UcpItemRemove = Body(...),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    item, ucp = await ucp_lifecycle.remove_item(
        db, item_id, reason=body.reason, quantity=body.quantity, user_id=principal.id
    )
    return ItemRemovalOut(item=UcpItemOut.model_validate(item), ucp_status=ucp.status)


# ── GET /api/ucps/{ucp_id} ───────────────────────────────────

@router.get("/{ucp_id}", response_model=UcpDetail)
async def get_ucp(
    ucp_id: int,
    include_removed: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    _principal: Principal = Depends(get_current_principal),
):
    return await _detail(db, ucp_id, include_removed=include_removed)


# ── GET /api/ucps/{ucp_id}/history ───────────────────────────

@router.get("/{ucp_id}/history", response_model=list[UcpHistoryOut])
async def get_history(
    ucp_id: int,
    db: AsyncSession = Depends(get_db),
    _principal: Principal = Depends(get_current_principal),
):
    entries = await ucp_lifecycle.get_ucp_history(db, ucp_id)
    return [UcpHistoryOut.model_validate(e) for e in entries]


# ── POST /api/ucps/{ucp_id}/items ────────────────────────────

@router.post("/{ucp_id}/items", response_model=UcpItemOut, status_code=201)
async def add_item(
    ucp_id: int,
    body: UcpItemCreate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return await ucp_lifecycle.add_item(
        db, ucp_id,
        product_id=body.product_id,
        quantity=body.quantity,
        packaging_type_id=body.packaging_type_id,
        lot=body.lot,
        expiry_date=body.expiry_date,
        internal_code=body.internal_code,
        user_id=principal.id,
    )


# ── POST /api/ucps/{ucp_id}/move ─────────────────────────────

@router.post("/{ucp_id}/move", response_model=UcpDetail)
async def move_ucp(
    ucp_id: int,
    body: UcpMove,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_manager),
):
    await ucp_lifecycle.move_ucp(
        db, ucp_id, position_id=body.position_id, reason=body.reason, user_id=principal.id
    )
    return await _detail(db, ucp_id)


# ── POST /api/ucps/{ucp_id}/dismantle ────────────────────────

@router.post("/{ucp_id}/dismantle", response_model=UcpDetail)
async def dismantle_ucp(
    ucp_id: int,
    body: UcpDismantle | None = Body(None),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_manager),
):
    await ucp_lifecycle.dismantle_ucp(
        db, ucp_id, reason=body.reason if body else None, user_id=principal.id
    )
    return await _detail(db, ucp_id, include_removed=True)
