"""
Order Status State Machine

    placed -> paid -> packed -> collected               (collection orders)
                             -> out_for_delivery -> delivered   (delivery orders)

``cancelled`` is reachable from every state before collected/delivered and
``refunded`` from every paid state before that. Terminal states have no way
out.

Stock side effects:
- entering ``paid`` runs the reconciler (deduct once per order line)
- entering ``cancelled``/``refunded`` runs the compensating pass, which puts
  back every fulfillment movement the ledger holds for the order

There is no "stock already deducted" flag on the order; the ledger answers
that question. Re-submitting the current status is allowed (admins use it to
re-send notifications) and re-runs the idempotent side effect, which is also
how a deduction interrupted half-way gets finished.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Set, Union

from sqlalchemy.ext.asyncio import AsyncSession

from stockledger.core.enums import OrderStatus, FulfillmentType
from stockledger.core.exceptions import (
    InvalidTransitionError,
    OrderNotFoundError,
    ValidationError,
)
from stockledger.models.order import Order
from stockledger.schemas.order import ReconciliationResult
from stockledger.services.activity_logger import ActivityLogger
from stockledger.services.notification_service import OrderNotificationService
from stockledger.services.order_reconciler import OrderReconciler

logger = logging.getLogger(__name__)


TERMINAL_STATUSES = {
    OrderStatus.COLLECTED,
    OrderStatus.DELIVERED,
    OrderStatus.CANCELLED,
    OrderStatus.REFUNDED,
}

# Columns stamped when an order enters a status
STATUS_TIMESTAMPS = {
    OrderStatus.PAID: ("paid_at",),
    OrderStatus.PACKED: ("packed_at",),
    OrderStatus.OUT_FOR_DELIVERY: ("out_for_delivery_at",),
    OrderStatus.COLLECTED: ("collected_at", "fulfilled_at"),
    OrderStatus.DELIVERED: ("delivered_at", "fulfilled_at"),
    OrderStatus.CANCELLED: ("cancelled_at",),
    OrderStatus.REFUNDED: ("refunded_at",),
}


def allowed_transitions(current: OrderStatus, fulfillment_type: FulfillmentType) -> Set[OrderStatus]:
    """Statuses an order may move to next (excluding re-submitting ``current``)."""
    if current == OrderStatus.PLACED:
        return {OrderStatus.PAID, OrderStatus.CANCELLED}
    if current == OrderStatus.PAID:
        return {OrderStatus.PACKED, OrderStatus.CANCELLED, OrderStatus.REFUNDED}
    if current == OrderStatus.PACKED:
        if fulfillment_type == FulfillmentType.COLLECTION:
            next_step = OrderStatus.COLLECTED
        else:
            next_step = OrderStatus.OUT_FOR_DELIVERY
        return {next_step, OrderStatus.CANCELLED, OrderStatus.REFUNDED}
    if current == OrderStatus.OUT_FOR_DELIVERY:
        return {OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.REFUNDED}
    return set()


def can_transition(current: OrderStatus, requested: OrderStatus, fulfillment_type: FulfillmentType) -> bool:
    return requested == current or requested in allowed_transitions(current, fulfillment_type)


@dataclass
class StatusChangeResult:
    order: Order
    previous_status: OrderStatus
    stock_deducted: bool = False
    stock_restored: bool = False
    reconciliation: Optional[ReconciliationResult] = None


class OrderStatusService:
    def __init__(
        self,
        db: AsyncSession,
        notifier: Optional[OrderNotificationService] = None,
        reconciler: Optional[OrderReconciler] = None,
    ):
        self.db = db
        self.notifier = notifier
        self.reconciler = reconciler or OrderReconciler(db)
        self.activity = ActivityLogger(db)

    async def transition(
        self,
        order_id: int,
        status: Union[OrderStatus, str],
        actor: Optional[str] = None,
    ) -> StatusChangeResult:
        """
        Move an order to ``status`` and run the stock side effect, if any.

        The status write is committed before stock is touched; stock outcomes
        are reported on the result, never raised.

        Raises:
            ValidationError: unknown status value
            OrderNotFoundError: no such order
            InvalidTransitionError: the move is not allowed from the current status
        """
        try:
            status = OrderStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown order status: {status}")

        order = await self.db.get(Order, order_id, with_for_update=True, populate_existing=True)
        if order is None:
            await self.db.rollback()
            raise OrderNotFoundError(f"Order with ID {order_id} not found")

        previous = order.status
        resubmitted = previous == status
        if not can_transition(previous, status, order.fulfillment_type):
            await self.db.rollback()
            raise InvalidTransitionError(previous, status)

        now = datetime.now(timezone.utc)
        for column in STATUS_TIMESTAMPS.get(status, ()):
            # A re-submission keeps the original timestamps
            if not resubmitted or getattr(order, column) is None:
                setattr(order, column, now)
        order.status = status
        order.updated_at = now
        await self.db.commit()

        if resubmitted:
            logger.info("Order %s re-submitted as %s", order_id, status.value)
        else:
            logger.info("Order %s: %s -> %s", order_id, previous.value, status.value)

        result = StatusChangeResult(order=order, previous_status=previous)

        if status == OrderStatus.PAID:
            result.reconciliation = await self.reconciler.reconcile_order(order_id)
            result.stock_deducted = result.reconciliation.newly_applied > 0
        elif status in (OrderStatus.CANCELLED, OrderStatus.REFUNDED):
            # Whatever the previous status, the ledger says what was taken
            result.reconciliation = await self.reconciler.reverse_order(order_id)
            result.stock_restored = result.reconciliation.newly_applied > 0

        # Reload: a failed adjustment rolls the session back and expires the order
        result.order = await self.db.get(Order, order_id, populate_existing=True)

        details = {
            "stock_deducted": result.stock_deducted,
            "stock_restored": result.stock_restored,
        }
        if result.reconciliation is not None:
            details["successful"] = result.reconciliation.successful
            details["failed"] = result.reconciliation.failed
            details["failed_items"] = [
                {"item_id": r.item_id, "name": r.name, "error": r.error}
                for r in result.reconciliation.results
                if r.error
            ]
        await self.activity.log_status_change(order_id, previous.value, status.value, details, actor=actor)
        await self.db.commit()

        if self.notifier is not None:
            self.notifier.dispatch({
                "order_id": order_id,
                "order_number": result.order.order_number,
                "status": status.value,
                "previous_status": previous.value,
                "stock_deducted": result.stock_deducted,
            })

        return result
