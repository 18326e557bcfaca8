"""
Stock Adjustment Service

Applies one signed quantity change to one product: one ledger row plus one
projection write, committed together. This is the only path by which stock
changes, whether from an admin correction, a restock or an order.

Order movements are idempotent per (order_id, product_id, reason). A repeat
call returns the movement that is already there. Two racing calls are settled
by the ledger's unique constraint, and the loser reports the winner's movement
as ``already_applied``.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple, Union

from sqlalchemy.ext.asyncio import AsyncSession

from stockledger.core.enums import MovementReason
from stockledger.core.exceptions import (
    ConcurrencyConflictError,
    InvalidAdjustmentError,
    ValidationError,
)
from stockledger.models.product import Product
from stockledger.models.stock_movement import StockMovement
from stockledger.services.ledger_store import LedgerStore
from stockledger.services.stock_projection import StockProjection

logger = logging.getLogger(__name__)


@dataclass
class AdjustmentOutcome:
    product: Product
    movement: StockMovement
    already_applied: bool = False


class StockAdjustmentService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.ledger = LedgerStore(db)
        self.projection = StockProjection(db)

    async def adjust(
        self,
        product_id: int,
        delta: int,
        reason: Union[MovementReason, str],
        order_id: Optional[int] = None,
        note: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> AdjustmentOutcome:
        """
        Apply ``delta`` to a product and record it in the ledger.

        Commits on success and rolls back on any failure, so a ledger row never
        exists without its projection update (or the other way round).

        Raises:
            InvalidAdjustmentError: delta is zero
            ValidationError: unknown reason, or an order reason without order_id
            ProductNotFoundError: product_id does not exist
        """
        if not delta:
            raise InvalidAdjustmentError("Stock adjustment quantity must be non-zero")
        try:
            reason = MovementReason(reason)
        except ValueError:
            raise ValidationError(f"Unknown stock movement reason: {reason}")
        if reason.is_order_reason and order_id is None:
            raise ValidationError(f"order_id is required for {reason.value} adjustments")

        if reason.is_order_reason:
            existing = await self.ledger.find_for_order(order_id, product_id, reason)
            if existing is not None:
                logger.info(
                    "Order %s already has a %s movement for product %s (movement %s); skipping",
                    order_id,
                    reason.value,
                    product_id,
                    existing.id,
                )
                return await self._already_applied(existing)

        try:
            change = await self.projection.apply_delta(product_id, delta)
            movement = StockMovement(
                product_id=product_id,
                order_id=order_id,
                delta=delta,
                reason=reason,
                note=note,
                actor=actor,
                stock_before=change.before,
                stock_after=change.after,
            )
            await self.ledger.append(movement)
            await self.db.commit()
        except ConcurrencyConflictError:
            await self.db.rollback()
            existing = await self.ledger.find_for_order(order_id, product_id, reason)
            if existing is None:
                # The conflicting row vanished, which the ledger never allows
                raise
            logger.info(
                "Lost race on order %s / product %s (%s); movement %s already recorded",
                order_id,
                product_id,
                reason.value,
                existing.id,
            )
            return await self._already_applied(existing)
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "Stock adjusted: product %s %+d (%s) %s -> %s%s",
            product_id,
            delta,
            reason.value,
            change.before,
            change.after,
            f" for order {order_id}" if order_id is not None else "",
        )
        return AdjustmentOutcome(product=change.product, movement=movement)

    async def restock(
        self,
        items: Iterable[Tuple[int, int]],
        note: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> List[AdjustmentOutcome]:
        """
        Receive a batch of stock. ``items`` are ``(product_id, quantity)`` pairs.

        Each line is its own adjustment; a failing line raises after the lines
        before it have been committed.
        """
        outcomes = []
        for product_id, quantity in items:
            if quantity <= 0:
                raise InvalidAdjustmentError(f"Restock quantity for product {product_id} must be positive")
            outcomes.append(
                await self.adjust(product_id, quantity, MovementReason.RESTOCK, note=note, actor=actor)
            )
        return outcomes

    async def _already_applied(self, movement: StockMovement) -> AdjustmentOutcome:
        product = await self.db.get(Product, movement.product_id, populate_existing=True)
        # End the read transaction without expiring what we just loaded
        await self.db.commit()
        return AdjustmentOutcome(product=product, movement=movement, already_applied=True)
