"""
Product Stock Projection

``products.stock`` is a fold over ``stock_movements``. Every write to it goes
through this module, under a row lock on the product, inside the caller's
transaction.

The fold clamps at zero: an over-deduction leaves the projection at 0 while the
ledger keeps the full requested delta. The two then diverge on purpose, and the
movement's ``stock_before``/``stock_after`` show where it happened.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from stockledger.core.exceptions import ProductNotFoundError
from stockledger.models.product import Product
from stockledger.services.ledger_store import LedgerStore

logger = logging.getLogger(__name__)


def fold(stock: int, delta: int) -> int:
    """One step of the projection: apply ``delta`` and floor at zero."""
    return max(0, stock + delta)


@dataclass
class ProjectionChange:
    product: Product
    delta: int
    before: int
    after: int

    @property
    def clamped(self) -> bool:
        return self.after != self.before + self.delta


@dataclass
class StockDiscrepancy:
    product_id: int
    projected_stock: int
    ledger_sum: int
    clamp_recorded: bool

    @property
    def expected_stock(self) -> int:
        return max(0, self.ledger_sum)

    @property
    def explained(self) -> bool:
        """A divergence is acceptable only when a clamp was recorded for the product."""
        return self.clamp_recorded


class StockProjection:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.ledger = LedgerStore(db)

    async def lock_product(self, product_id: int) -> Product:
        """
        SELECT ... FOR UPDATE on the product row.

        Concurrent adjustments of the same product queue here until the
        holder commits; other products are unaffected.
        """
        result = await self.db.execute(
            select(Product)
            .where(Product.id == product_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        product = result.scalar_one_or_none()
        if product is None:
            raise ProductNotFoundError(f"Product with ID {product_id} not found")
        return product

    async def apply_delta(self, product_id: int, delta: int) -> ProjectionChange:
        """Lock the product, fold ``delta`` into its stock and flush. Does not commit."""
        product = await self.lock_product(product_id)

        before = product.stock or 0
        after = fold(before, delta)
        product.stock = after
        await self.db.flush()

        change = ProjectionChange(product=product, delta=delta, before=before, after=after)
        if change.clamped:
            logger.warning(
                "Over-deduction on product %s: stock %s, delta %s, clamped to %s",
                product_id,
                before,
                delta,
                after,
            )
        return change

    async def audit(self, product_ids: Optional[Iterable[int]] = None) -> List[StockDiscrepancy]:
        """
        Compare every product's projection with its ledger.

        Returns only the products where ``stock != max(0, sum(delta))``.
        """
        stmt = select(Product.id, Product.stock).order_by(Product.id)
        if product_ids is not None:
            product_ids = list(product_ids)
            stmt = stmt.where(Product.id.in_(product_ids))
        products = (await self.db.execute(stmt)).all()

        sums = await self.ledger.sum_by_product(product_ids)
        clamped = await self.ledger.clamped_product_ids(product_ids)

        discrepancies = []
        for product_id, stock in products:
            ledger_sum = sums.get(product_id, 0)
            if (stock or 0) != max(0, ledger_sum):
                discrepancies.append(
                    StockDiscrepancy(
                        product_id=product_id,
                        projected_stock=stock or 0,
                        ledger_sum=ledger_sum,
                        clamp_recorded=product_id in clamped,
                    )
                )

        if discrepancies:
            logger.warning(
                "Stock audit found %d discrepancies (%d unexplained)",
                len(discrepancies),
                sum(1 for d in discrepancies if not d.explained),
            )
        return discrepancies

    async def rebuild(self, product_id: int) -> int:
        """
        Recompute ``products.stock`` by replaying the ledger oldest-first.

        Uses the same clamp rule as live adjustments, so an untouched product
        rebuilds to the value it already has. Does not commit.
        """
        product = await self.lock_product(product_id)

        stock = 0
        for movement in await self.ledger.list_for_replay(product_id):
            stock = fold(stock, movement.delta)

        if stock != product.stock:
            logger.info("Rebuilt product %s stock: %s -> %s", product_id, product.stock, stock)
        product.stock = stock
        await self.db.flush()
        return stock
