"""
Schemas for the stock ledger endpoints.

Adjustment requests are a tagged union on ``reason``: manual corrections and
restocks never carry an order, order movements always do. Payloads are
validated here, before anything reaches the ledger.
"""

from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationInfo, field_validator

from stockledger.core.enums import MovementReason, MovementFilter
from stockledger.schemas.base import BaseSchema


class _AdjustmentBase(BaseModel):
    product_id: int
    delta: int
    note: Optional[str] = Field(default=None, max_length=1000)
    actor: str = Field(default="admin", max_length=100)

    @field_validator('delta')
    @classmethod
    def validate_delta(cls, v):
        if v == 0:
            raise ValueError('delta must be non-zero')
        return v


class ManualAdjustmentRequest(_AdjustmentBase):
    reason: Literal['manual_adjustment']


class RestockAdjustmentRequest(_AdjustmentBase):
    reason: Literal['restock']

    @field_validator('delta')
    @classmethod
    def validate_restock_delta(cls, v):
        if v < 0:
            raise ValueError('restock delta must be positive')
        return v


class OrderAdjustmentRequest(_AdjustmentBase):
    reason: Literal['order_fulfillment', 'order_reversal']
    order_id: int

    @field_validator('reason')
    @classmethod
    def validate_delta_sign(cls, v, info: ValidationInfo):
        delta = info.data.get('delta')
        if delta is None:
            return v
        if v == 'order_fulfillment' and delta > 0:
            raise ValueError('order_fulfillment delta must be negative')
        if v == 'order_reversal' and delta < 0:
            raise ValueError('order_reversal delta must be positive')
        return v


AdjustStockRequest = Annotated[
    Union[ManualAdjustmentRequest, RestockAdjustmentRequest, OrderAdjustmentRequest],
    Field(discriminator='reason'),
]

adjust_stock_request_adapter = TypeAdapter(AdjustStockRequest)


class RestockLine(BaseModel):
    product_id: int
    quantity: int = Field(gt=0)


class RestockRequest(BaseModel):
    items: List[RestockLine] = Field(min_length=1)
    note: Optional[str] = Field(default=None, max_length=1000)
    actor: str = Field(default="admin", max_length=100)


class ProductStockRead(BaseSchema):
    id: int
    name: str
    sku: Optional[str] = None
    stock: int
    is_active: bool


class StockMovementRead(BaseSchema):
    id: int
    product_id: int
    order_id: Optional[int] = None
    delta: int
    reason: MovementReason
    note: Optional[str] = None
    actor: Optional[str] = None
    stock_before: int
    stock_after: int
    clamped: bool
    created_at: datetime


class AdjustStockResponse(BaseSchema):
    ok: bool = True
    product: ProductStockRead
    movement: StockMovementRead
    already_applied: bool = False


class RestockResponse(BaseSchema):
    ok: bool = True
    results: List[AdjustStockResponse]


class StockMovementList(BaseSchema):
    ok: bool = True
    data: List[StockMovementRead]
    count: int
    filter: MovementFilter


class StockDiscrepancyRead(BaseSchema):
    product_id: int
    projected_stock: int
    ledger_sum: int
    expected_stock: int
    clamp_recorded: bool
    explained: bool


class StockAuditResponse(BaseSchema):
    ok: bool = True
    checked: int
    discrepancies: List[StockDiscrepancyRead]
