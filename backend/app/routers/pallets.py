"""Pallet router.

Endpoints:
    GET  /api/pallets/available-for-ucp         Free pallets no live UCP is using
    POST /api/pallets/{pallet_id}/reactivate   Start a new UCP on a free pallet
"""

from fastapi import APIRouter, Body, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.deps import Principal, get_current_principal, require_manager
from app.database import get_db
from app.schemas.ucp import PalletOut, PalletReactivate, UcpDetail
from app.services import ucp_lifecycle

router = APIRouter()


@router.get("/available-for-ucp", response_model=list[PalletOut])
async def available_for_ucp(
    db: AsyncSession = Depends(get_db),
    _principal: Principal = Depends(get_current_principal),
):
    return [PalletOut.model_validate(p) for p in await ucp_lifecycle.pallets_for_ucp(db)]


@router.post("/{pallet_id}/reactivate", response_model=UcpDetail, status_code=201)
async def reactivate_pallet(
    pallet_id: int,
    body: PalletReactivate | None = Body(None),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_manager),
):
    """Issue a new UCP code for the pallet, independent of its previous UCPs."""
    ucp = await ucp_lifecycle.reactivate_pallet(
        db, pallet_id,
        position_id=body.position_id if body else None,
        observations=body.observations if body else None,
        user_id=principal.id,
    )
    return UcpDetail.model_validate(ucp)
