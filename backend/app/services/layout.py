"""Layout strategies for /composition/calculate.

The geometry is deliberately simple: products are laid out row by row on
the pallet footprint and a new layer starts when the footprint is full.
Anything smarter plugs in as another ``LayoutStrategy``.

Strategies:
  standard → products in request order
  enhanced → heaviest products first, so they end up on the bottom layers
"""

import asyncio
from typing import Protocol

from app.models.warehouse.pallet import Pallet
from app.models.warehouse.product import Product
from app.schemas.composition import (
    CompositionConstraints,
    CompositionProduct,
    Layout,
    LayoutLayer,
    LayoutPlacement,
)


class LayoutStrategy(Protocol):
    name: str

    async def compute_layout(
        self,
        items: list[CompositionProduct],
        products: dict[int, Product],
        pallet: Pallet,
        constraints: CompositionConstraints | None,
    ) -> Layout: ...


class _RowLayout:
    name = "standard"

    def order(self, items: list[CompositionProduct], products: dict[int, Product]) -> list[CompositionProduct]:
        return list(items)

    async def compute_layout(
        self,
        items: list[CompositionProduct],
        products: dict[int, Product],
        pallet: Pallet,
        constraints: CompositionConstraints | None,
    ) -> Layout:
        pallet_area = (pallet.width or 0) * (pallet.length or 0)
        layers: list[LayoutLayer] = []
        placements: list[LayoutPlacement] = []
        used_area = 0.0
        layer_height = 0.0
        base_z = 0.0
        x = y = row_depth = 0.0
        total_footprint = 0.0

        def close_layer():
            nonlocal placements, used_area, layer_height, base_z, x, y, row_depth
            if placements:
                layers.append(LayoutLayer(
                    layer=len(layers) + 1, height=layer_height, placements=placements,
                ))
                base_z += layer_height
            placements = []
            used_area = layer_height = 0.0
            x = y = row_depth = 0.0

        for item in self.order(items, products):
            product = products[item.product_id]
            w, l = product.width or 1, product.length or 1
            footprint = w * l
            remaining = item.quantity
            while remaining > 0:
                if used_area + footprint > pallet_area and placements:
                    close_layer()
                    # Yield between layers so a slow calculation can be timed out.
                    await asyncio.sleep(0)
                if x + w > pallet.width:
                    x = 0.0
                    y += row_depth
                    row_depth = 0.0
                count = min(remaining, 1.0)
                placements.append(LayoutPlacement(
                    product_id=item.product_id, quantity=count, x=x, y=y, z=base_z,
                ))
                x += w
                row_depth = max(row_depth, l)
                used_area += footprint
                total_footprint += footprint * count
                layer_height = max(layer_height, product.height or 0)
                remaining -= count
        close_layer()

        total_height = sum(layer.height for layer in layers)
        capacity = pallet_area * max(len(layers), 1)
        return Layout(
            algorithm=self.name,
            layers=layers,
            total_layers=len(layers),
            total_height=total_height,
            footprint_utilization=round(total_footprint / capacity, 4) if capacity else 0.0,
        )


class StandardLayout(_RowLayout):
    name = "standard"


class EnhancedLayout(_RowLayout):
    name = "enhanced"

    def order(self, items: list[CompositionProduct], products: dict[int, Product]) -> list[CompositionProduct]:
        return sorted(
            items,
            key=lambda i: (-(products[i.product_id].weight or 0), i.product_id),
        )


STRATEGIES: dict[str, LayoutStrategy] = {
    "standard": StandardLayout(),
    "enhanced": EnhancedLayout(),
}


def get_strategy(name: str) -> LayoutStrategy:
    return STRATEGIES.get(name, STRATEGIES["standard"])
