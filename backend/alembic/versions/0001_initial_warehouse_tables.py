"""Initial warehouse schema: products, pallets, positions, UCPs, compositions.

Revision ID: 0001
Revises: (none)
Create Date: 2026-10-19

Run with:
    cd backend && alembic upgrade head
"""

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

from alembic import op
import sqlalchemy as sa


def upgrade() -> None:
    # ── Physical stock ───────────────────────────────────────

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("sku", sa.String(50), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("weight", sa.Float(), server_default="0"),
        sa.Column("width", sa.Float(), server_default="0"),
        sa.Column("length", sa.Float(), server_default="0"),
        sa.Column("height", sa.Float(), server_default="0"),
        sa.Column("stock_quantity", sa.Float(), server_default="0"),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )

    op.create_table(
        "packaging_types",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("barcode", sa.String(255)),
        sa.Column("base_unit_quantity", sa.Float(), server_default="1"),
        sa.Column("is_base_unit", sa.Boolean(), server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_packaging_types_product_id", "packaging_types", ["product_id"])

    op.create_table(
        "pallets",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(50), nullable=False, unique=True),
        sa.Column("type", sa.String(50), server_default="PBR"),
        sa.Column("material", sa.String(50), server_default="madeira"),
        sa.Column("width", sa.Float(), nullable=False),
        sa.Column("length", sa.Float(), nullable=False),
        sa.Column("height", sa.Float(), server_default="15"),
        sa.Column("max_weight", sa.Float()),
        sa.Column("status", sa.String(20), server_default="disponivel"),
        sa.Column("observations", sa.Text()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_pallets_status", "pallets", ["status"])

    op.create_table(
        "positions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(50), nullable=False, unique=True),
        sa.Column("street", sa.String(10)),
        sa.Column("side", sa.String(1)),
        sa.Column("position", sa.Integer()),
        sa.Column("level", sa.Integer()),
        sa.Column("max_pallets", sa.Integer(), server_default="1"),
        sa.Column("max_weight", sa.Float()),
        sa.Column("status", sa.String(20), server_default="disponivel"),
        sa.Column("observations", sa.Text()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_positions_status", "positions", ["status"])

    # ── Logical containers ───────────────────────────────────

    op.create_table(
        "ucps",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(50), nullable=False),
        sa.Column("pallet_id", sa.Integer(), sa.ForeignKey("pallets.id")),
        sa.Column("position_id", sa.Integer(), sa.ForeignKey("positions.id")),
        sa.Column("status", sa.String(20), server_default="active"),
        sa.Column("observations", sa.Text()),
        sa.Column("created_by", sa.String(36), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_ucps_code", "ucps", ["code"], unique=True)
    op.create_index("ix_ucps_pallet_id", "ucps", ["pallet_id"])
    op.create_index("ix_ucps_position_id", "ucps", ["position_id"])
    op.create_index("ix_ucps_status", "ucps", ["status"])

    op.create_table(
        "ucp_items",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("ucp_id", sa.Integer(), sa.ForeignKey("ucps.id"), nullable=False),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("packaging_type_id", sa.Integer(), sa.ForeignKey("packaging_types.id")),
        sa.Column("quantity", sa.Float(), nullable=False),
        sa.Column("lot", sa.String(100)),
        sa.Column("expiry_date", sa.DateTime()),
        sa.Column("internal_code", sa.String(100)),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("added_by", sa.String(36), nullable=False),
        sa.Column("added_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("removed_by", sa.String(36)),
        sa.Column("removed_at", sa.DateTime()),
        sa.Column("removal_reason", sa.Text()),
    )
    op.create_index("ix_ucp_items_ucp_id", "ucp_items", ["ucp_id"])
    op.create_index("ix_ucp_items_product_id", "ucp_items", ["product_id"])
    op.create_index("ix_ucp_items_is_active", "ucp_items", ["is_active"])

    op.create_table(
        "ucp_history",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("ucp_id", sa.Integer(), sa.ForeignKey("ucps.id"), nullable=False),
        sa.Column("action", sa.String(30), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("old_value", sa.JSON()),
        sa.Column("new_value", sa.JSON()),
        sa.Column("item_id", sa.Integer(), sa.ForeignKey("ucp_items.id")),
        sa.Column("from_position_id", sa.Integer(), sa.ForeignKey("positions.id")),
        sa.Column("to_position_id", sa.Integer(), sa.ForeignKey("positions.id")),
        sa.Column("performed_by", sa.String(36), nullable=False),
        sa.Column("timestamp", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_ucp_history_ucp_id", "ucp_history", ["ucp_id"])
    op.create_index("ix_ucp_history_action", "ucp_history", ["action"])
    op.create_index("ix_ucp_history_timestamp", "ucp_history", ["timestamp"])

    op.create_table(
        "item_transfers",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("source_ucp_id", sa.Integer(), sa.ForeignKey("ucps.id"), nullable=False),
        sa.Column("target_ucp_id", sa.Integer(), sa.ForeignKey("ucps.id"), nullable=False),
        sa.Column("source_item_id", sa.Integer(), sa.ForeignKey("ucp_items.id"), nullable=False),
        sa.Column("target_item_id", sa.Integer(), sa.ForeignKey("ucp_items.id"), nullable=False),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("quantity", sa.Float(), nullable=False),
        sa.Column("reason", sa.Text()),
        sa.Column("transfer_type", sa.String(20), nullable=False),
        sa.Column("performed_by", sa.String(36), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )

    # ── Compositions ─────────────────────────────────────────

    op.create_table(
        "packaging_compositions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("pallet_id", sa.Integer(), sa.ForeignKey("pallets.id"), nullable=False),
        sa.Column("status", sa.String(20), server_default="draft"),
        sa.Column("constraints", sa.JSON()),
        sa.Column("result", sa.JSON()),
        sa.Column("efficiency", sa.Float(), server_default="0"),
        sa.Column("total_weight", sa.Float(), server_default="0"),
        sa.Column("total_volume", sa.Float(), server_default="0"),
        sa.Column("total_height", sa.Float(), server_default="0"),
        sa.Column("ucp_id", sa.Integer(), sa.ForeignKey("ucps.id")),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("created_by", sa.String(36), nullable=False),
        sa.Column("approved_by", sa.String(36)),
        sa.Column("approved_at", sa.DateTime()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_packaging_compositions_pallet_id", "packaging_compositions", ["pallet_id"])
    op.create_index("ix_packaging_compositions_status", "packaging_compositions", ["status"])

    op.create_table(
        "composition_items",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("composition_id", sa.Integer(), sa.ForeignKey("packaging_compositions.id"), nullable=False),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("packaging_type_id", sa.Integer(), sa.ForeignKey("packaging_types.id")),
        sa.Column("quantity", sa.Float(), nullable=False),
        sa.Column("layer", sa.Integer(), server_default="1"),
        sa.Column("sort_order", sa.Integer(), server_default="0"),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_composition_items_composition_id", "composition_items", ["composition_id"])


def downgrade() -> None:
    op.drop_table("composition_items")
    op.drop_table("packaging_compositions")
    op.drop_table("item_transfers")
    op.drop_table("ucp_history")
    op.drop_table("ucp_items")
    op.drop_table("ucps")
    op.drop_table("positions")
    op.drop_table("pallets")
    op.drop_table("packaging_types")
    op.drop_table("products")
