"""Stock ledger routes - manual adjustments, restocks and ledger reads."""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from stockledger.core.config import Settings, get_settings
from stockledger.core.enums import MovementFilter, MovementReason
from stockledger.dependencies import get_db
from stockledger.models.product import Product
from stockledger.schemas.stock import (
    AdjustStockRequest,
    AdjustStockResponse,
    ProductStockRead,
    RestockRequest,
    RestockResponse,
    StockAuditResponse,
    StockDiscrepancyRead,
    StockMovementList,
    StockMovementRead,
    adjust_stock_request_adapter,
)
from stockledger.services.ledger_store import LedgerStore
from stockledger.services.stock_adjustment_service import AdjustmentOutcome, StockAdjustmentService
from stockledger.services.stock_projection import StockProjection

logger = logging.getLogger(__name__)
router = APIRouter()


def _adjustment_response(outcome: AdjustmentOutcome) -> AdjustStockResponse:
    return AdjustStockResponse(
        product=ProductStockRead.from_orm_model(outcome.product),
        movement=StockMovementRead.from_orm_model(outcome.movement),
        already_applied=outcome.already_applied,
    )


@router.post("/adjust-stock", response_model=AdjustStockResponse)
async def adjust_stock(
    body: Dict[str, Any] = Body(...),
    db: AsyncSession = Depends(get_db),
):
    """Apply one signed stock change and record it in the ledger."""
    try:
        payload: AdjustStockRequest = adjust_stock_request_adapter.validate_python(body)
    except PydanticValidationError as e:
        raise RequestValidationError(e.errors())

    service = StockAdjustmentService(db)
    outcome = await service.adjust(
        product_id=payload.product_id,
        delta=payload.delta,
        reason=MovementReason(payload.reason),
        order_id=getattr(payload, "order_id", None),
        note=payload.note,
        actor=payload.actor,
    )
    return _adjustment_response(outcome)


@router.post("/restock", response_model=RestockResponse)
async def restock(
    payload: RestockRequest,
    db: AsyncSession = Depends(get_db),
):
    """Receive a batch of stock, one restock movement per line."""
    service = StockAdjustmentService(db)
    outcomes = await service.restock(
        ((line.product_id, line.quantity) for line in payload.items),
        note=payload.note,
        actor=payload.actor,
    )
    return RestockResponse(results=[_adjustment_response(o) for o in outcomes])


@router.get("/stock-movements", response_model=StockMovementList)
async def stock_movements(
    limit: Optional[int] = Query(None, ge=1),
    product_id: Optional[int] = Query(None),
    order_id: Optional[int] = Query(None),
    movement_filter: MovementFilter = Query(MovementFilter.ALL, alias="filter", description="all, manual or order"),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Recent ledger movements, newest first."""
    limit = min(limit or settings.STOCK_MOVEMENTS_DEFAULT_LIMIT, settings.STOCK_MOVEMENTS_MAX_LIMIT)
    movements = await LedgerStore(db).list_recent(
        limit,
        product_id=product_id,
        order_id=order_id,
        kind=movement_filter,
    )
    data = [StockMovementRead.from_orm_model(m) for m in movements]
    return StockMovementList(data=data, count=len(data), filter=movement_filter)


@router.get("/stock-audit", response_model=StockAuditResponse)
async def stock_audit(
    product_id: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """Products whose projected stock no longer matches their ledger."""
    projection = StockProjection(db)
    product_ids = [product_id] if product_id is not None else None
    discrepancies = await projection.audit(product_ids)
    checked = 1 if product_id is not None else await _count_products(db)
    return StockAuditResponse(
        checked=checked,
        discrepancies=[
            StockDiscrepancyRead(
                product_id=d.product_id,
                projected_stock=d.projected_stock,
                ledger_sum=d.ledger_sum,
                expected_stock=d.expected_stock,
                clamp_recorded=d.clamp_recorded,
                explained=d.explained,
            )
            for d in discrepancies
        ],
    )


async def _count_products(db: AsyncSession) -> int:
    return int(await db.scalar(select(func.count(Product.id))) or 0)
