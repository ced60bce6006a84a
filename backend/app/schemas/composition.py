"""Pydantic schemas for composition requests and saved compositions."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from app.schemas.validation import ValidationResult

ValidationMode = Literal["quick", "business", "full"]
LayoutAlgorithm = Literal["standard", "enhanced"]


# ── Request payloads ─────────────────────────────────────────

class CompositionProduct(BaseModel):
    """One product line of a composition request."""
    product_id: int
    quantity: float = Field(..., gt=0)
    packaging_type_id: int | None = None


class CompositionConstraints(BaseModel):
    """Optional overrides of the pallet-derived limits."""
    max_weight: float | None = Field(None, gt=0)  # kg
    max_height: float | None = Field(None, gt=0)  # cm
    max_volume: float | None = Field(None, gt=0)  # m³

    def fields_set_count(self) -> int:
        return sum(
            1 for v in (self.max_weight, self.max_height, self.max_volume) if v is not None
        )


class CompositionRequest(BaseModel):
    """Payload for POST /api/composition/calculate and /validate.

    Duplicate product ids are accepted here and rejected by the
    business rules, so the caller sees them as a violation.
    """
    products: list[CompositionProduct] = Field(..., min_length=1)
    pallet_id: int | None = None
    constraints: CompositionConstraints | None = None


class CalculateRequest(CompositionRequest):
    algorithm: LayoutAlgorithm = "standard"


class RealTimeValidationRequest(CompositionRequest):
    mode: ValidationMode = "quick"


class SaveCompositionRequest(BaseModel):
    """Payload for POST /api/composition/save."""
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    products: list[CompositionProduct] = Field(..., min_length=1)
    pallet_id: int | None = None
    constraints: CompositionConstraints | None = None


class CompositionStatusUpdate(BaseModel):
    """Payload for PATCH /api/composition/{id}/status."""
    status: Literal["draft", "validated", "approved", "executed"]


class AssembleRequest(BaseModel):
    composition_id: int
    target_ucp_id: int | None = None
    position_id: int | None = None


class DisassembleTarget(BaseModel):
    product_id: int
    quantity: float = Field(..., gt=0)
    ucp_id: int


class DisassembleRequest(BaseModel):
    composition_id: int
    target_ucps: list[DisassembleTarget] = Field(..., min_length=1)


# ── Layout ───────────────────────────────────────────────────

class LayoutPlacement(BaseModel):
    product_id: int
    quantity: float
    x: float
    y: float
    z: float


class LayoutLayer(BaseModel):
    layer: int
    height: float
    placements: list[LayoutPlacement]


class Layout(BaseModel):
    algorithm: LayoutAlgorithm
    layers: list[LayoutLayer]
    total_layers: int
    total_height: float
    footprint_utilization: float


# ── Responses ────────────────────────────────────────────────

class CalculationData(BaseModel):
    layout: Layout
    validation: ValidationResult


class CalculationMetadata(BaseModel):
    response_time_ms: float
    algorithm: LayoutAlgorithm
    attempts: int
    cached: bool
    timestamp: datetime


class CalculationResponse(BaseModel):
    success: bool = True
    data: CalculationData
    metadata: CalculationMetadata


class CompositionItemOut(BaseModel):
    id: int
    product_id: int
    packaging_type_id: int | None
    quantity: float
    layer: int
    sort_order: int

    model_config = {"from_attributes": True}


class CompositionOut(BaseModel):
    id: int
    name: str
    description: str | None
    pallet_id: int
    status: str
    constraints: dict | None
    result: dict | None
    efficiency: float
    total_weight: float
    total_volume: float
    total_height: float
    ucp_id: int | None
    created_by: str
    approved_by: str | None
    approved_at: datetime | None
    created_at: datetime
    items: list[CompositionItemOut] = []

    model_config = {"from_attributes": True}


class AssembleResult(BaseModel):
    composition_id: int
    ucp_id: int
    ucp_code: str
    item_ids: list[int]
    validation: ValidationResult


class DisassembleResult(BaseModel):
    composition_id: int
    removed_item_ids: list[int]
    emptied_ucp_ids: list[int]
