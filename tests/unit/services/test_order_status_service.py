# tests/unit/services/test_order_status_service.py
import asyncio

import pytest
from sqlalchemy import select

from stockledger.core.enums import FulfillmentType, MovementReason, OrderStatus
from stockledger.core.exceptions import InvalidTransitionError, OrderNotFoundError, ValidationError
from stockledger.models.activity_log import ActivityLog
from stockledger.models.order import Order
from stockledger.services.ledger_store import LedgerStore
from stockledger.services.stock_adjustment_service import StockAdjustmentService
from stockledger.services.order_status_service import (
    OrderStatusService,
    allowed_transitions,
    can_transition,
)


# --- transition table ---

@pytest.mark.parametrize("current, requested, fulfillment, allowed", [
    (OrderStatus.PLACED, OrderStatus.PAID, FulfillmentType.DELIVERY, True),
    (OrderStatus.PLACED, OrderStatus.CANCELLED, FulfillmentType.DELIVERY, True),
    (OrderStatus.PLACED, OrderStatus.PACKED, FulfillmentType.DELIVERY, False),
    (OrderStatus.PLACED, OrderStatus.REFUNDED, FulfillmentType.DELIVERY, False),
    (OrderStatus.PAID, OrderStatus.PACKED, FulfillmentType.DELIVERY, True),
    (OrderStatus.PAID, OrderStatus.REFUNDED, FulfillmentType.DELIVERY, True),
    (OrderStatus.PACKED, OrderStatus.OUT_FOR_DELIVERY, FulfillmentType.DELIVERY, True),
    (OrderStatus.PACKED, OrderStatus.COLLECTED, FulfillmentType.DELIVERY, False),
    (OrderStatus.PACKED, OrderStatus.COLLECTED, FulfillmentType.COLLECTION, True),
    (OrderStatus.PACKED, OrderStatus.OUT_FOR_DELIVERY, FulfillmentType.COLLECTION, False),
    (OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED, FulfillmentType.DELIVERY, True),
    (OrderStatus.DELIVERED, OrderStatus.REFUNDED, FulfillmentType.DELIVERY, False),
    (OrderStatus.CANCELLED, OrderStatus.PAID, FulfillmentType.DELIVERY, False),
    (OrderStatus.PAID, OrderStatus.PAID, FulfillmentType.DELIVERY, True),
])
def test_can_transition(current, requested, fulfillment, allowed):
    assert can_transition(current, requested, fulfillment) is allowed


@pytest.mark.parametrize("terminal", [
    OrderStatus.COLLECTED, OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.REFUNDED,
])
def test_terminal_statuses_have_no_way_out(terminal):
    assert allowed_transitions(terminal, FulfillmentType.DELIVERY) == set()


# --- transition with stock side effects ---

@pytest.mark.asyncio
async def test_paid_deducts_stock_once(session_factory, make_product, make_order, get_stock, notifier):
    product_id = await make_product(name="Stratocaster", stock=10)
    order_id = await make_order(items=[{"name": "Stratocaster", "product_id": product_id, "quantity": 2}])

    async with session_factory() as session:
        result = await OrderStatusService(session, notifier=notifier).transition(order_id, OrderStatus.PAID)

    assert result.previous_status == OrderStatus.PLACED
    assert result.order.status == OrderStatus.PAID
    assert result.order.paid_at is not None
    assert result.stock_deducted is True
    assert result.reconciliation.successful == 1
    assert await get_stock(product_id) == 8

    # Re-submitting "paid" must not deduct again
    async with session_factory() as session:
        again = await OrderStatusService(session, notifier=notifier).transition(order_id, "paid")

    assert again.stock_deducted is False
    assert again.reconciliation.results[0].already_applied is True
    assert await get_stock(product_id) == 8

    async with session_factory() as session:
        fulfillments = await LedgerStore(session).list_by_order(order_id, MovementReason.ORDER_FULFILLMENT)
    assert len(fulfillments) == 1


@pytest.mark.asyncio
async def test_cancel_after_paid_restores_stock(session_factory, make_product, make_order, get_stock, notifier):
    product_id = await make_product(name="Stratocaster", stock=10)
    order_id = await make_order(items=[{"name": "Stratocaster", "quantity": 2}])

    async with session_factory() as session:
        await OrderStatusService(session, notifier=notifier).transition(order_id, OrderStatus.PAID)
    async with session_factory() as session:
        result = await OrderStatusService(session, notifier=notifier).transition(order_id, OrderStatus.CANCELLED)

    assert result.stock_restored is True
    assert result.order.cancelled_at is not None
    assert await get_stock(product_id) == 10


@pytest.mark.asyncio
async def test_refund_after_delivery_path(session_factory, make_product, make_order, get_stock, notifier):
    product_id = await make_product(name="Amp", stock=3)
    order_id = await make_order(items=[{"name": "Amp", "quantity": 1}])

    for status in (OrderStatus.PAID, OrderStatus.PACKED, OrderStatus.OUT_FOR_DELIVERY):
        async with session_factory() as session:
            await OrderStatusService(session, notifier=notifier).transition(order_id, status)
    assert await get_stock(product_id) == 2

    async with session_factory() as session:
        result = await OrderStatusService(session, notifier=notifier).transition(order_id, OrderStatus.REFUNDED)

    assert result.stock_restored is True
    assert result.order.refunded_at is not None
    assert await get_stock(product_id) == 3


@pytest.mark.asyncio
async def test_cancel_before_payment_leaves_stock_alone(
    session_factory, make_product, make_order, get_stock, notifier
):
    product_id = await make_product(name="Stratocaster", stock=10)
    order_id = await make_order(items=[{"name": "Stratocaster", "quantity": 2}])

    async with session_factory() as session:
        result = await OrderStatusService(session, notifier=notifier).transition(order_id, OrderStatus.CANCELLED)

    assert result.stock_restored is False
    assert result.reconciliation.results == []
    assert await get_stock(product_id) == 10


@pytest.mark.asyncio
async def test_cancel_restores_stock_taken_before_payment(
    session_factory, make_product, make_order, get_stock, notifier
):
    product_id = await make_product(name="Stratocaster", stock=10)
    order_id = await make_order(items=[{"name": "Stratocaster", "quantity": 3}])

    # Stock taken by hand while the order is still only placed
    async with session_factory() as session:
        await StockAdjustmentService(session).adjust(
            product_id, -3, MovementReason.ORDER_FULFILLMENT, order_id=order_id
        )
    assert await get_stock(product_id) == 7

    async with session_factory() as session:
        result = await OrderStatusService(session, notifier=notifier).transition(order_id, OrderStatus.CANCELLED)

    assert result.previous_status == OrderStatus.PLACED
    assert result.stock_restored is True
    assert await get_stock(product_id) == 10


@pytest.mark.asyncio
async def test_concurrent_paid_transitions_deduct_once(
    session_factory, make_product, make_order, get_stock, notifier
):
    product_id = await make_product(name="Stratocaster", stock=10)
    order_id = await make_order(items=[{"name": "Stratocaster", "quantity": 3}])

    async def mark_paid():
        async with session_factory() as session:
            return await OrderStatusService(session, notifier=notifier).transition(order_id, OrderStatus.PAID)

    results = await asyncio.gather(mark_paid(), mark_paid())

    assert sorted(r.stock_deducted for r in results) == [False, True]
    assert await get_stock(product_id) == 7

    async with session_factory() as session:
        fulfillments = await LedgerStore(session).list_by_order(order_id, MovementReason.ORDER_FULFILLMENT)
    assert len(fulfillments) == 1
    assert fulfillments[0].delta == -3


@pytest.mark.asyncio
async def test_collection_order_fulfilled_timestamps(session_factory, make_order, notifier):
    order_id = await make_order(fulfillment_type=FulfillmentType.COLLECTION)

    for status in (OrderStatus.PAID, OrderStatus.PACKED, OrderStatus.COLLECTED):
        async with session_factory() as session:
            result = await OrderStatusService(session, notifier=notifier).transition(order_id, status)

    assert result.order.status == OrderStatus.COLLECTED
    assert result.order.packed_at is not None
    assert result.order.collected_at is not None
    assert result.order.fulfilled_at is not None
    assert result.order.delivered_at is None


@pytest.mark.asyncio
async def test_invalid_transition_leaves_order_unchanged(session_factory, make_order, notifier):
    order_id = await make_order()

    async with session_factory() as session:
        with pytest.raises(InvalidTransitionError) as exc_info:
            await OrderStatusService(session, notifier=notifier).transition(order_id, OrderStatus.DELIVERED)

    assert exc_info.value.current_status == OrderStatus.PLACED
    assert exc_info.value.requested_status == OrderStatus.DELIVERED
    notifier.dispatch.assert_not_called()

    async with session_factory() as session:
        order = await session.get(Order, order_id)
        assert order.status == OrderStatus.PLACED


@pytest.mark.asyncio
async def test_unknown_order(db_session, notifier):
    with pytest.raises(OrderNotFoundError):
        await OrderStatusService(db_session, notifier=notifier).transition(404, OrderStatus.PAID)


@pytest.mark.asyncio
async def test_unknown_status(db_session, make_order, notifier):
    order_id = await make_order()

    with pytest.raises(ValidationError, match="Unknown order status"):
        await OrderStatusService(db_session, notifier=notifier).transition(order_id, "shipped")


# --- side channels ---

@pytest.mark.asyncio
async def test_status_change_is_notified_and_logged(session_factory, make_product, make_order, notifier):
    await make_product(name="Stratocaster", stock=1)
    order_id = await make_order(
        items=[{"name": "Stratocaster", "quantity": 1}, {"name": "Unknown Thing", "quantity": 1}],
        order_number="WEB-1001",
    )

    async with session_factory() as session:
        await OrderStatusService(session, notifier=notifier).transition(order_id, OrderStatus.PAID, actor="bob")

    notifier.dispatch.assert_called_once()
    payload = notifier.dispatch.call_args.args[0]
    assert payload["order_id"] == order_id
    assert payload["order_number"] == "WEB-1001"
    assert payload["status"] == "paid"
    assert payload["previous_status"] == "placed"
    assert payload["stock_deducted"] is True

    async with session_factory() as session:
        entries = (await session.execute(select(ActivityLog))).scalars().all()

    assert len(entries) == 1
    entry = entries[0]
    assert (entry.action, entry.entity_type, entry.entity_id, entry.actor) == (
        "status_change", "order", str(order_id), "bob"
    )
    assert entry.details["from"] == "placed"
    assert entry.details["to"] == "paid"
    assert entry.details["successful"] == 1
    assert entry.details["failed"] == 1
    assert entry.details["failed_items"][0]["name"] == "Unknown Thing"


@pytest.mark.asyncio
async def test_works_without_notifier(session_factory, make_order):
    order_id = await make_order()

    async with session_factory() as session:
        result = await OrderStatusService(session).transition(order_id, OrderStatus.PAID)

    assert result.order.status == OrderStatus.PAID
