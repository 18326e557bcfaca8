"""Order routes - status changes and the stock effects they trigger."""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from stockledger.dependencies import get_db, get_notifier
from stockledger.schemas.order import (
    OrderRead,
    OrderStatusResponse,
    OrderStatusUpdate,
    ReconciliationResult,
)
from stockledger.services.notification_service import OrderNotificationService
from stockledger.services.order_reconciler import OrderReconciler
from stockledger.services.order_status_service import OrderStatusService

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/order-status", response_model=OrderStatusResponse)
async def update_order_status(
    payload: OrderStatusUpdate,
    db: AsyncSession = Depends(get_db),
    notifier: OrderNotificationService = Depends(get_notifier),
):
    """
    Move an order to a new status.

    Marking an order paid deducts its stock; cancelling or refunding a paid
    order puts it back. The response always says whether stock moved and
    which lines failed, so an operator can fix them by hand.
    """
    service = OrderStatusService(db, notifier=notifier)
    result = await service.transition(payload.id, payload.status, actor="admin")
    return OrderStatusResponse(
        order=OrderRead.from_orm_model(result.order),
        previous_status=result.previous_status,
        stock_deducted=result.stock_deducted,
        stock_restored=result.stock_restored,
        reconciliation=result.reconciliation,
    )


@router.post("/orders/{order_id}/reconcile", response_model=ReconciliationResult)
async def reconcile_order(
    order_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Re-run stock deduction for a paid order. Lines already deducted are skipped; unpaid orders are refused."""
    return await OrderReconciler(db).reconcile_order(order_id)
