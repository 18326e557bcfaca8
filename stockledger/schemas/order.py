"""
Schemas for order status changes and reconciliation results.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from stockledger.core.enums import OrderStatus, FulfillmentType, MatchMethod, ItemStatus
from stockledger.schemas.base import BaseSchema


class OrderStatusUpdate(BaseModel):
    id: int
    status: OrderStatus


class OrderRead(BaseSchema):
    id: int
    order_number: Optional[str] = None
    status: OrderStatus
    fulfillment_type: FulfillmentType
    created_at: datetime
    updated_at: datetime
    paid_at: Optional[datetime] = None
    packed_at: Optional[datetime] = None
    out_for_delivery_at: Optional[datetime] = None
    collected_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    fulfilled_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None


class ItemResult(BaseSchema):
    item_id: Optional[int] = None
    name: Optional[str] = None
    quantity: int
    matched: bool = False
    match_method: Optional[MatchMethod] = None
    product_id: Optional[int] = None
    status: ItemStatus = ItemStatus.FAILED
    error: Optional[str] = None
    already_applied: bool = False
    movement_id: Optional[int] = None
    # Bundle lines deduct their components, one movement each
    bundle: bool = False
    movement_ids: List[int] = Field(default_factory=list)


class ReconciliationResult(BaseSchema):
    order_id: int
    successful: int = 0
    failed: int = 0
    results: List[ItemResult] = Field(default_factory=list)

    @property
    def newly_applied(self) -> int:
        """Items whose movement was written by this run rather than an earlier one."""
        return sum(
            1 for r in self.results
            if r.status == ItemStatus.SUCCESS and not r.already_applied
        )


class OrderStatusResponse(BaseSchema):
    ok: bool = True
    order: OrderRead
    previous_status: OrderStatus
    stock_deducted: bool = Field(default=False, alias="stockDeducted")
    stock_restored: bool = Field(default=False, alias="stockRestored")
    reconciliation: Optional[ReconciliationResult] = None
