"""
Ledger Store

Append-only access to the ``stock_movements`` table. This is the single source
of truth for quantity history: there is deliberately no update or delete here.

The store never commits and never touches ``products.stock``. Callers
(``StockAdjustmentService``) own the transaction so that the ledger row and
the projection write land together or not at all.
"""

import logging
from typing import Dict, Iterable, List, Optional, Set

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from stockledger.core.enums import MovementReason, MovementFilter
from stockledger.core.exceptions import ValidationError, ConcurrencyConflictError, DatabaseError
from stockledger.models.product import Product
from stockledger.models.stock_movement import StockMovement

logger = logging.getLogger(__name__)

IDEMPOTENCY_CONSTRAINT = "uq_stock_movements_order_product_reason"


class LedgerStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    async def append(self, movement: StockMovement) -> StockMovement:
        """
        Insert one immutable movement and flush it.

        Raises:
            ValidationError: zero delta, missing/unknown reason, order reason
                without an order, or unknown product
            ConcurrencyConflictError: a movement for the same
                (order_id, product_id, reason) already exists
            DatabaseError: any other constraint violation
        """
        await self._validate(movement)

        self.db.add(movement)
        try:
            await self.db.flush()
        except IntegrityError as e:
            if movement.order_id is not None and _is_idempotency_violation(e):
                logger.info(
                    "Duplicate %s movement for order %s / product %s rejected by constraint",
                    movement.reason.value,
                    movement.order_id,
                    movement.product_id,
                )
                raise ConcurrencyConflictError(movement.order_id, movement.product_id, movement.reason) from e
            raise DatabaseError(f"Could not record stock movement: {getattr(e, 'orig', e)}") from e

        logger.debug(
            "Ledger append: product=%s delta=%s reason=%s order=%s",
            movement.product_id,
            movement.delta,
            movement.reason.value,
            movement.order_id,
        )
        return movement

    async def _validate(self, movement: StockMovement) -> None:
        if not movement.delta:
            raise ValidationError("Stock movement delta must be non-zero")

        if movement.reason is None:
            raise ValidationError("Stock movement reason is required")
        try:
            movement.reason = MovementReason(movement.reason)
        except ValueError:
            raise ValidationError(f"Unknown stock movement reason: {movement.reason}")

        if movement.reason.is_order_reason and movement.order_id is None:
            raise ValidationError(f"order_id is required for {movement.reason.value} movements")

        if movement.product_id is None or await self.db.get(Product, movement.product_id) is None:
            raise ValidationError(f"Unknown product_id: {movement.product_id}")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def find_for_order(
        self,
        order_id: int,
        product_id: int,
        reason: MovementReason,
    ) -> Optional[StockMovement]:
        """The idempotency probe: the movement already written for this order line, if any."""
        result = await self.db.execute(
            select(StockMovement).where(
                StockMovement.order_id == order_id,
                StockMovement.product_id == product_id,
                StockMovement.reason == reason,
            )
        )
        return result.scalar_one_or_none()

    async def list_by_product(self, product_id: int, limit: Optional[int] = None) -> List[StockMovement]:
        stmt = (
            select(StockMovement)
            .where(StockMovement.product_id == product_id)
            .order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        )
        if limit:
            stmt = stmt.limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_by_order(self, order_id: int, reason: Optional[MovementReason] = None) -> List[StockMovement]:
        stmt = select(StockMovement).where(StockMovement.order_id == order_id)
        if reason is not None:
            stmt = stmt.where(StockMovement.reason == reason)
        stmt = stmt.order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_recent(
        self,
        limit: int,
        product_id: Optional[int] = None,
        order_id: Optional[int] = None,
        kind: MovementFilter = MovementFilter.ALL,
    ) -> List[StockMovement]:
        """Newest-first movements for the admin "recent movements" view."""
        stmt = select(StockMovement)
        if product_id is not None:
            stmt = stmt.where(StockMovement.product_id == product_id)
        if order_id is not None:
            stmt = stmt.where(StockMovement.order_id == order_id)
        if kind != MovementFilter.ALL:
            stmt = stmt.where(StockMovement.reason.in_(kind.reasons))

        stmt = stmt.order_by(StockMovement.created_at.desc(), StockMovement.id.desc()).limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_for_replay(self, product_id: int) -> List[StockMovement]:
        """Oldest-first, the order the projection folds them in."""
        result = await self.db.execute(
            select(StockMovement)
            .where(StockMovement.product_id == product_id)
            .order_by(StockMovement.created_at.asc(), StockMovement.id.asc())
        )
        return list(result.scalars().all())

    async def sum_by_product(self, product_ids: Optional[Iterable[int]] = None) -> Dict[int, int]:
        stmt = select(
            StockMovement.product_id,
            func.coalesce(func.sum(StockMovement.delta), 0),
        ).group_by(StockMovement.product_id)
        if product_ids is not None:
            stmt = stmt.where(StockMovement.product_id.in_(list(product_ids)))

        rows = (await self.db.execute(stmt)).all()
        return {int(pid): int(total) for pid, total in rows}

    async def clamped_product_ids(self, product_ids: Optional[Iterable[int]] = None) -> Set[int]:
        """Products with at least one movement the projection had to clamp."""
        stmt = select(StockMovement.product_id).where(
            StockMovement.stock_after != StockMovement.stock_before + StockMovement.delta
        ).distinct()
        if product_ids is not None:
            stmt = stmt.where(StockMovement.product_id.in_(list(product_ids)))

        rows = (await self.db.execute(stmt)).scalars().all()
        return {int(pid) for pid in rows}


def _is_idempotency_violation(error: IntegrityError) -> bool:
    message = str(getattr(error, "orig", error)).lower()
    return (
        IDEMPOTENCY_CONSTRAINT in message
        # SQLite reports the columns instead of the constraint name
        or ("unique" in message and "stock_movements.order_id" in message)
    )
