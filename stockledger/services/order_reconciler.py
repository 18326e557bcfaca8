"""
Order Fulfillment Reconciler

Ties order lines to catalog products and turns them into stock movements.

Order lines are not reliable: ``product_id`` is missing on older orders or
points at a product that has since been deactivated. Lines are resolved in
this order:

1. ``product_id``, if it points at an active product
2. ``sku``, case-insensitive exact match among active products
3. ``name``, case-insensitive exact match (trimmed) among active products

A SKU or name that matches several active products is a failure
(``ambiguous match``). Picking one of them would silently deduct the wrong
stock, so an operator has to fix the line.

A line that resolves to a bundle deducts the bundle's components instead
(component quantity x line quantity), never the bundle itself.

Failures are per line and never abort the order. Every call is safe to repeat,
because each adjustment is idempotent per (order, product).
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import List, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from stockledger.core.enums import MovementReason, MatchMethod, ItemStatus, OrderStatus, PAID_OR_LATER
from stockledger.core.exceptions import (
    AmbiguousMatchError,
    BaseServiceError,
    OrderNotFoundError,
    ProductNotFoundError,
    ValidationError,
)
from stockledger.models.bundle_component import BundleComponent
from stockledger.models.order import Order, OrderItem
from stockledger.models.product import Product
from stockledger.schemas.order import ItemResult, ReconciliationResult
from stockledger.services.ledger_store import LedgerStore
from stockledger.services.stock_adjustment_service import StockAdjustmentService

logger = logging.getLogger(__name__)

PRODUCT_NOT_FOUND = "product not found"
AMBIGUOUS_MATCH = "ambiguous match"


@dataclass
class OrderLine:
    """Detached copy of an order item; survives session rollbacks."""
    item_id: int
    name: Optional[str]
    sku: Optional[str]
    product_id: Optional[int]
    quantity: int


def _normalise(value: Optional[str]) -> str:
    return (value or "").strip().lower()


class OrderReconciler:
    def __init__(self, db: AsyncSession, adjustments: Optional[StockAdjustmentService] = None):
        self.db = db
        self.ledger = LedgerStore(db)
        self.adjustments = adjustments or StockAdjustmentService(db)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def reconcile_order(self, order_id: int) -> ReconciliationResult:
        """
        Deduct stock for every line of a paid order.

        Returns the per-line outcome plus ``successful``/``failed`` counts.
        Resolution and adjustment failures are reported per line.

        Raises:
            OrderNotFoundError: no such order
            ValidationError: the order is not paid (or later), so its stock
                must stay on the shelf
        """
        order_number, status, lines = await self._load_lines(order_id)
        if status not in PAID_OR_LATER:
            raise ValidationError(
                f"Order {order_id} is '{status.value}'; stock is only deducted for paid orders"
            )

        result = ReconciliationResult(order_id=order_id)

        if not lines:
            logger.info("Order %s has no items; nothing to deduct", order_id)
            return result

        # Resolve first, then group: the ledger holds one fulfillment row per product
        groups: "OrderedDict[int, List[ItemResult]]" = OrderedDict()
        quantities = {}
        for line in lines:
            item_result = ItemResult(item_id=line.item_id, name=line.name, quantity=line.quantity)
            result.results.append(item_result)
            try:
                product_id, method = await self.resolve_product(line)
            except (ProductNotFoundError, AmbiguousMatchError) as e:
                item_result.error = str(e)
                logger.warning("Order %s item %s (%s): %s", order_id, line.item_id, line.name, e)
                continue

            item_result.matched = True
            item_result.product_id = product_id
            item_result.match_method = method
            item_result.status = ItemStatus.SUCCESS
            item_result.already_applied = True

            components = await self._bundle_components(product_id)
            if components:
                item_result.bundle = True
                deductions = [(component_id, per_bundle * line.quantity) for component_id, per_bundle in components]
            else:
                deductions = [(product_id, line.quantity)]

            for target_id, quantity in deductions:
                groups.setdefault(target_id, []).append(item_result)
                quantities[target_id] = quantities.get(target_id, 0) + quantity

        for product_id, item_results in groups.items():
            note = f"Order {order_number or order_id}: " + ", ".join(
                f"{r.quantity} x {r.name} via {r.match_method.value}{' (bundle)' if r.bundle else ''}"
                for r in item_results
            )
            await self._apply(
                item_results,
                product_id=product_id,
                delta=-quantities[product_id],
                reason=MovementReason.ORDER_FULFILLMENT,
                order_id=order_id,
                note=note,
            )

        self._tally(result)
        logger.info(
            "Stock deduction for order %s complete: %d/%d successful",
            order_id,
            result.successful,
            len(result.results),
        )
        return result

    async def reverse_order(self, order_id: int) -> ReconciliationResult:
        """
        Compensating pass: put back everything the order's fulfillment took.

        One ``order_reversal`` movement per ``order_fulfillment`` movement,
        equal and opposite. Already-reversed products are no-ops.
        """
        if await self.db.get(Order, order_id) is None:
            raise OrderNotFoundError(f"Order with ID {order_id} not found")

        fulfilled = [
            (m.id, m.product_id, m.delta)
            for m in await self.ledger.list_by_order(order_id, MovementReason.ORDER_FULFILLMENT)
        ]
        result = ReconciliationResult(order_id=order_id)

        for movement_id, product_id, delta in reversed(fulfilled):
            item_result = ItemResult(
                quantity=abs(delta),
                matched=True,
                product_id=product_id,
                status=ItemStatus.SUCCESS,
                already_applied=True,
            )
            result.results.append(item_result)
            await self._apply(
                [item_result],
                product_id=product_id,
                delta=-delta,
                reason=MovementReason.ORDER_REVERSAL,
                order_id=order_id,
                note=f"Reversal of movement {movement_id}",
            )

        self._tally(result)
        if fulfilled:
            logger.info(
                "Stock reversal for order %s complete: %d/%d successful",
                order_id,
                result.successful,
                len(result.results),
            )
        return result

    async def resolve_product(self, line: OrderLine) -> Tuple[int, MatchMethod]:
        """
        Find the active product an order line refers to.

        Raises:
            ProductNotFoundError: nothing matches
            AmbiguousMatchError: the SKU or name matches several active products
        """
        if line.product_id is not None:
            product = await self.db.get(Product, line.product_id)
            if product is not None and product.is_active:
                return product.id, MatchMethod.ID

        if _normalise(line.sku):
            candidates = await self._active_ids_matching(Product.sku, line.sku)
            if len(candidates) == 1:
                return candidates[0], MatchMethod.SKU
            if len(candidates) > 1:
                raise AmbiguousMatchError(
                    f"{AMBIGUOUS_MATCH}: sku '{line.sku}' matches products {candidates}",
                    candidates,
                )

        if _normalise(line.name):
            candidates = await self._active_ids_matching(Product.name, line.name)
            if len(candidates) == 1:
                return candidates[0], MatchMethod.NAME
            if len(candidates) > 1:
                raise AmbiguousMatchError(
                    f"{AMBIGUOUS_MATCH}: name '{line.name}' matches products {candidates}",
                    candidates,
                )

        raise ProductNotFoundError(f"{PRODUCT_NOT_FOUND}: {line.name or line.sku or line.product_id}")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    async def _load_lines(self, order_id: int) -> Tuple[Optional[str], OrderStatus, List[OrderLine]]:
        order = await self.db.get(Order, order_id)
        if order is None:
            raise OrderNotFoundError(f"Order with ID {order_id} not found")

        result = await self.db.execute(
            select(OrderItem).where(OrderItem.order_id == order_id).order_by(OrderItem.id)
        )
        lines = [
            OrderLine(
                item_id=item.id,
                name=item.name,
                sku=item.sku,
                product_id=item.product_id,
                quantity=item.quantity,
            )
            for item in result.scalars().all()
        ]
        return order.order_number, order.status, lines

    async def _bundle_components(self, product_id: int) -> List[Tuple[int, int]]:
        """``(component_id, quantity per bundle)`` pairs; empty for a plain product."""
        result = await self.db.execute(
            select(BundleComponent.component_id, BundleComponent.quantity)
            .where(BundleComponent.bundle_id == product_id)
            .order_by(BundleComponent.id)
        )
        return [(int(component_id), int(quantity)) for component_id, quantity in result.all()]

    async def _active_ids_matching(self, column, value: str) -> List[int]:
        result = await self.db.execute(
            select(Product.id)
            .where(Product.is_active.is_(True))
            .where(func.lower(func.trim(column)) == _normalise(value))
            .order_by(Product.id)
        )
        return [int(pid) for pid in result.scalars().all()]

    async def _apply(self, item_results: List[ItemResult], **adjustment) -> None:
        """
        Run one adjustment on behalf of ``item_results``.

        A bundle line takes part in one adjustment per component: it stays
        successful only if all of them succeed, and counts as already applied
        only if none of them wrote anything new.
        """
        try:
            outcome = await self.adjustments.adjust(**adjustment)
        except BaseServiceError as e:
            error = str(e)
            logger.warning(
                "Order %s: %s of product %s failed: %s",
                adjustment["order_id"],
                adjustment["reason"].value,
                adjustment["product_id"],
                error,
            )
        except Exception as e:
            error = f"adjustment failed: {e}"
            logger.error(
                "Order %s: unexpected error adjusting product %s",
                adjustment["order_id"],
                adjustment["product_id"],
                exc_info=True,
            )
        else:
            for item_result in item_results:
                item_result.already_applied = item_result.already_applied and outcome.already_applied
                item_result.movement_ids.append(outcome.movement.id)
                if item_result.movement_id is None:
                    item_result.movement_id = outcome.movement.id
            return

        for item_result in item_results:
            item_result.status = ItemStatus.FAILED
            item_result.already_applied = False
            item_result.error = error

    @staticmethod
    def _tally(result: ReconciliationResult) -> None:
        result.successful = sum(1 for r in result.results if r.status == ItemStatus.SUCCESS)
        result.failed = len(result.results) - result.successful
