# stockledger/models/order.py
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum, CheckConstraint
from sqlalchemy.orm import relationship

from stockledger.core.enums import OrderStatus, FulfillmentType
from stockledger.database import Base
from stockledger.models.product import utc_now


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class Order(Base):
    """
    Read model of a checkout order.

    Orders are created by the storefront checkout. The back office only moves
    ``status`` along, through ``OrderStatusService``.
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(64), nullable=True, index=True)  # Customer-facing reference
    status = Column(
        Enum(OrderStatus, name="order_status", values_callable=_enum_values),
        default=OrderStatus.PLACED,
        nullable=False,
        index=True,
    )
    fulfillment_type = Column(
        Enum(FulfillmentType, name="fulfillment_type", values_callable=_enum_values),
        default=FulfillmentType.DELIVERY,
        nullable=False,
    )

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    # Status timestamps
    paid_at = Column(DateTime(timezone=True), nullable=True)
    packed_at = Column(DateTime(timezone=True), nullable=True)
    out_for_delivery_at = Column(DateTime(timezone=True), nullable=True)
    collected_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    fulfilled_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)

    items = relationship("OrderItem", back_populates="order", lazy="selectin", order_by="OrderItem.id")

    def __repr__(self):
        return f"<Order(id={self.id}, number='{self.order_number}', status='{self.status.value if self.status else None}')>"


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="SET NULL"), nullable=True)  # Often missing on legacy orders
    name = Column(String(255), nullable=False)
    sku = Column(String(64), nullable=True)
    quantity = Column(Integer, nullable=False)

    order = relationship("Order", back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_items_quantity_pos"),
    )
