"""Warehouse models: physical stock, logical containers, compositions."""

# ── Physical stock ───────────────────────────────────────────
from app.models.warehouse.product import Product, PackagingType
from app.models.warehouse.pallet import Pallet, PalletStatus
from app.models.warehouse.position import Position, PositionStatus

# ── Logical containers ───────────────────────────────────────
from app.models.warehouse.ucp import ItemTransfer, Ucp, UcpAction, UcpHistory, UcpItem, UcpStatus

# ── Compositions ─────────────────────────────────────────────
from app.models.warehouse.composition import CompositionItem, CompositionStatus, PackagingComposition
