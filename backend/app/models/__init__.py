"""Aggregate model imports for Alembic auto-detection."""

from app.models.warehouse.product import Product, PackagingType  # noqa: F401
from app.models.warehouse.pallet import Pallet  # noqa: F401
from app.models.warehouse.position import Position  # noqa: F401
from app.models.warehouse.ucp import Ucp, UcpItem, UcpHistory, ItemTransfer  # noqa: F401
from app.models.warehouse.composition import PackagingComposition, CompositionItem  # noqa: F401
