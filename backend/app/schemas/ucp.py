"""Pydantic schemas for UCPs, their items and history."""

from datetime import datetime

from pydantic import BaseModel, Field


# ── Requests ─────────────────────────────────────────────────

class UcpCreate(BaseModel):
    """Payload for POST /api/ucps/."""
    pallet_id: int
    position_id: int | None = None
    observations: str | None = None


class UcpItemCreate(BaseModel):
    """Payload for POST /api/ucps/{ucp_id}/items."""
    product_id: int
    quantity: float = Field(..., gt=0)
    packaging_type_id: int | None = None
    lot: str | None = None
    expiry_date: datetime | None = None
    internal_code: str | None = None


class UcpItemRemove(BaseModel):
    """Body for DELETE /api/ucps/items/{item_id}. Omit quantity to remove the whole line."""
    reason: str = Field(..., min_length=1)
    quantity: float | None = Field(None, gt=0)


class UcpMove(BaseModel):
    position_id: int
    reason: str | None = None


class UcpDismantle(BaseModel):
    reason: str | None = None


class ItemTransferRequest(BaseModel):
    source_item_id: int
    target_ucp_id: int
    quantity: float = Field(..., gt=0)
    reason: str | None = None


class PalletReactivate(BaseModel):
    position_id: int | None = None
    observations: str | None = None


# ── Responses ────────────────────────────────────────────────

class UcpItemOut(BaseModel):
    id: int
    ucp_id: int
    product_id: int
    packaging_type_id: int | None
    quantity: float
    lot: str | None
    is_active: bool
    added_by: str
    added_at: datetime
    removed_by: str | None
    removed_at: datetime | None
    removal_reason: str | None

    model_config = {"from_attributes": True}


class UcpSummary(BaseModel):
    id: int
    code: str
    status: str
    pallet_id: int | None
    position_id: int | None
    observations: str | None
    created_by: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class UcpDetail(UcpSummary):
    items: list[UcpItemOut] = []


class UcpHistoryOut(BaseModel):
    id: int
    ucp_id: int
    action: str
    description: str
    old_value: dict | None
    new_value: dict | None
    item_id: int | None
    from_position_id: int | None
    to_position_id: int | None
    performed_by: str
    timestamp: datetime

    model_config = {"from_attributes": True}


class ItemTransferOut(BaseModel):
    id: int
    source_ucp_id: int
    target_ucp_id: int
    source_item_id: int
    target_item_id: int
    product_id: int
    quantity: float
    transfer_type: str
    reason: str | None
    performed_by: str
    created_at: datetime

    model_config = {"from_attributes": True}


class ItemRemovalOut(BaseModel):
    item: UcpItemOut
    ucp_status: str


class UcpStats(BaseModel):
    total: int
    active: int
    empty: int
    archived: int


class PalletOut(BaseModel):
    id: int
    code: str
    type: str
    material: str
    width: float
    length: float
    height: float
    max_weight: float | None
    status: str

    model_config = {"from_attributes": True}
