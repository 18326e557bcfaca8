"""
Shared enums and constants used across the application.
"""

from enum import Enum


class MovementReason(str, Enum):
    """Why a ledger movement was written"""
    MANUAL_ADJUSTMENT = "manual_adjustment"
    RESTOCK = "restock"
    ORDER_FULFILLMENT = "order_fulfillment"
    ORDER_REVERSAL = "order_reversal"

    @property
    def is_order_reason(self) -> bool:
        return self in (MovementReason.ORDER_FULFILLMENT, MovementReason.ORDER_REVERSAL)


class MovementFilter(str, Enum):
    """Filters offered by the recent movements view"""
    ALL = "all"
    MANUAL = "manual"
    ORDER = "order"

    @property
    def reasons(self):
        if self is MovementFilter.MANUAL:
            return (MovementReason.MANUAL_ADJUSTMENT, MovementReason.RESTOCK)
        if self is MovementFilter.ORDER:
            return (MovementReason.ORDER_FULFILLMENT, MovementReason.ORDER_REVERSAL)
        return tuple(MovementReason)


class OrderStatus(str, Enum):
    PLACED = "placed"
    PAID = "paid"
    PACKED = "packed"
    OUT_FOR_DELIVERY = "out_for_delivery"
    COLLECTED = "collected"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class FulfillmentType(str, Enum):
    DELIVERY = "delivery"
    COLLECTION = "collection"


class MatchMethod(str, Enum):
    """How an order line was tied to a catalog product"""
    ID = "id"
    SKU = "sku"
    NAME = "name"


class ItemStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


# Statuses in which an order's stock has been (or is being) taken from the shelf
PAID_OR_LATER = frozenset({
    OrderStatus.PAID,
    OrderStatus.PACKED,
    OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.COLLECTED,
    OrderStatus.DELIVERED,
})
