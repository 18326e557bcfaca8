# stockledger/models/stock_movement.py
from sqlalchemy import (
    Column, Integer, String, Text, DateTime, ForeignKey, Enum,
    UniqueConstraint, CheckConstraint, Index,
)
from sqlalchemy.orm import relationship

from stockledger.core.enums import MovementReason
from stockledger.database import Base
from stockledger.models.product import utc_now


class StockMovement(Base):
    """
    One immutable entry of the stock ledger.

    Rows are only ever inserted. A correction is a new, compensating row.
    ``stock_before``/``stock_after`` record what the product projection was
    when the movement was applied, so an over-deduction that got clamped at
    zero stays visible (``stock_after != stock_before + delta``).
    """
    __tablename__ = "stock_movements"

    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="RESTRICT"), nullable=True)

    delta = Column(Integer, nullable=False)
    reason = Column(
        Enum(
            MovementReason,
            name="movement_reason",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        nullable=False,
    )
    note = Column(Text, nullable=True)
    actor = Column(String(100), nullable=True)

    stock_before = Column(Integer, nullable=False)
    stock_after = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    product = relationship("Product", back_populates="movements", lazy="raise")

    __table_args__ = (
        UniqueConstraint("order_id", "product_id", "reason", name="uq_stock_movements_order_product_reason"),
        CheckConstraint("delta <> 0", name="ck_stock_movements_delta_nonzero"),
        CheckConstraint(
            "order_id IS NOT NULL OR reason NOT IN ('order_fulfillment', 'order_reversal')",
            name="ck_stock_movements_order_reason_has_order",
        ),
        Index("ix_stock_movements_product_time", "product_id", "created_at"),
        Index("ix_stock_movements_order", "order_id"),
    )

    @property
    def clamped(self) -> bool:
        """True when the projection could not absorb the full delta."""
        return self.stock_after != self.stock_before + self.delta

    def __repr__(self):
        return (f"<StockMovement(id={self.id}, product_id={self.product_id}, delta={self.delta}, "
                f"reason='{self.reason.value if self.reason else None}', order_id={self.order_id})>")
