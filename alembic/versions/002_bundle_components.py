"""Bundle products: component table

Revision ID: 002
Revises: 001
Create Date: 2026-10-17 11:00:00.000000
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "bundle_components",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("bundle_id", sa.Integer(), sa.ForeignKey("products.id", ondelete="CASCADE"), nullable=False),
        sa.Column("component_id", sa.Integer(), sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.UniqueConstraint("bundle_id", "component_id", name="uq_bundle_components_bundle_component"),
        sa.CheckConstraint("quantity > 0", name="ck_bundle_components_quantity_pos"),
        sa.CheckConstraint("bundle_id <> component_id", name="ck_bundle_components_not_self"),
    )
    op.create_index("ix_bundle_components_bundle_id", "bundle_components", ["bundle_id"])


def downgrade() -> None:
    op.drop_index("ix_bundle_components_bundle_id", table_name="bundle_components")
    op.drop_table("bundle_components")
