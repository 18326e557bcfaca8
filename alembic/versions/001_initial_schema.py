"""Initial schema: products, orders, order items, stock ledger, activity log

Revision ID: 001
Revises:
Create Date: 2026-10-17 09:00:00.000000
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


movement_reason = sa.Enum(
    "manual_adjustment", "restock", "order_fulfillment", "order_reversal",
    name="movement_reason",
)
order_status = sa.Enum(
    "placed", "paid", "packed", "out_for_delivery", "collected", "delivered", "cancelled", "refunded",
    name="order_status",
)
fulfillment_type = sa.Enum("delivery", "collection", name="fulfillment_type")


def upgrade() -> None:
    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("sku", sa.String(64), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("stock", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_products_name", "products", ["name"])
    op.create_index("ix_products_sku", "products", ["sku"])
    op.create_index("ix_products_is_active", "products", ["is_active"])

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_number", sa.String(64), nullable=True),
        sa.Column("status", order_status, nullable=False, server_default="placed"),
        sa.Column("fulfillment_type", fulfillment_type, nullable=False, server_default="delivery"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("packed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("out_for_delivery_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("collected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("fulfilled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_orders_id", "orders", ["id"])
    op.create_index("ix_orders_order_number", "orders", ["order_number"])
    op.create_index("ix_orders_status", "orders", ["status"])

    op.create_table(
        "order_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id", ondelete="SET NULL"), nullable=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("sku", sa.String(64), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_order_items_quantity_pos"),
    )
    op.create_index("ix_order_items_order_id", "order_items", ["order_id"])

    op.create_table(
        "stock_movements",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id", ondelete="RESTRICT"), nullable=True),
        sa.Column("delta", sa.Integer(), nullable=False),
        sa.Column("reason", movement_reason, nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("actor", sa.String(100), nullable=True),
        sa.Column("stock_before", sa.Integer(), nullable=False),
        sa.Column("stock_after", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("order_id", "product_id", "reason", name="uq_stock_movements_order_product_reason"),
        sa.CheckConstraint("delta <> 0", name="ck_stock_movements_delta_nonzero"),
        sa.CheckConstraint(
            "order_id IS NOT NULL OR reason NOT IN ('order_fulfillment', 'order_reversal')",
            name="ck_stock_movements_order_reason_has_order",
        ),
    )
    op.create_index("ix_stock_movements_product_time", "stock_movements", ["product_id", "created_at"])
    op.create_index("ix_stock_movements_order", "stock_movements", ["order_id"])

    op.create_table(
        "activity_log",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.String(100), nullable=False),
        sa.Column("details", sa.JSON().with_variant(postgresql.JSONB(), "postgresql"), nullable=True),
        sa.Column("actor", sa.String(100), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_activity_log_action", "activity_log", ["action"])
    op.create_index("ix_activity_log_entity_type", "activity_log", ["entity_type"])
    op.create_index("ix_activity_log_entity_id", "activity_log", ["entity_id"])
    op.create_index("ix_activity_log_created_at", "activity_log", ["created_at"])

    # The ledger is append-only: refuse UPDATE/DELETE at the database level too
    if op.get_bind().dialect.name == "postgresql":
        op.execute(
            """
            CREATE OR REPLACE FUNCTION stock_movements_immutable() RETURNS trigger AS $$
            BEGIN
                RAISE EXCEPTION 'stock_movements is append-only';
            END;
            $$ LANGUAGE plpgsql;
            """
        )
        op.execute(
            """
            CREATE TRIGGER trg_stock_movements_immutable
            BEFORE UPDATE OR DELETE ON stock_movements
            FOR EACH ROW EXECUTE FUNCTION stock_movements_immutable();
            """
        )


def downgrade() -> None:
    if op.get_bind().dialect.name == "postgresql":
        op.execute("DROP TRIGGER IF EXISTS trg_stock_movements_immutable ON stock_movements")
        op.execute("DROP FUNCTION IF EXISTS stock_movements_immutable()")

    op.drop_table("activity_log")
    op.drop_table("stock_movements")
    op.drop_table("order_items")
    op.drop_table("orders")
    op.drop_table("products")

    bind = op.get_bind()
    movement_reason.drop(bind, checkfirst=True)
    order_status.drop(bind, checkfirst=True)
    fulfillment_type.drop(bind, checkfirst=True)
