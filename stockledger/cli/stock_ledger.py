# stockledger/cli/stock_ledger.py
import asyncio
import json

import click
from sqlalchemy import select

from stockledger.core.enums import MovementReason
from stockledger.core.exceptions import BaseServiceError
from stockledger.core.logging_config import configure_logging
from stockledger.database import async_session
from stockledger.models.product import Product
from stockledger.services.activity_logger import ActivityLogger
from stockledger.services.order_reconciler import OrderReconciler
from stockledger.services.stock_adjustment_service import StockAdjustmentService
from stockledger.services.stock_projection import StockProjection


@click.group()
@click.option('--log-level', default=None, help='Override LOG_LEVEL')
def cli(log_level):
    """Stock ledger maintenance commands."""
    configure_logging(log_level)


@cli.command()
@click.option('--product-id', type=int, default=None, help='Only check this product')
def audit(product_id):
    """Compare products.stock with the ledger and list discrepancies."""

    async def _audit():
        async with async_session() as session:
            projection = StockProjection(session)
            return await projection.audit([product_id] if product_id else None)

    discrepancies = asyncio.run(_audit())
    if not discrepancies:
        click.echo("Projection matches ledger for all checked products")
        return

    for d in discrepancies:
        flag = "clamp recorded" if d.explained else "UNEXPLAINED"
        click.echo(
            f"product {d.product_id}: stock={d.projected_stock} "
            f"ledger_sum={d.ledger_sum} expected={d.expected_stock} ({flag})"
        )
    if any(not d.explained for d in discrepancies):
        raise SystemExit(1)


@cli.command()
@click.option('--product-id', type=int, default=None, help='Rebuild one product (default: all)')
@click.option('--dry-run', is_flag=True, help='Show what would change without writing')
def rebuild(product_id, dry_run):
    """Rebuild products.stock by replaying the ledger."""

    async def _rebuild():
        async with async_session() as session:
            if product_id:
                product_ids = [product_id]
            else:
                product_ids = list((await session.execute(select(Product.id).order_by(Product.id))).scalars())

            projection = StockProjection(session)
            activity = ActivityLogger(session)
            changes = []
            for pid in product_ids:
                previous = (await projection.lock_product(pid)).stock
                rebuilt = await projection.rebuild(pid)
                if rebuilt != previous:
                    changes.append((pid, previous, rebuilt))
                    if not dry_run:
                        await activity.log_rebuild(pid, previous, rebuilt)
                if dry_run:
                    await session.rollback()
                else:
                    await session.commit()
            return len(product_ids), changes

    checked, changes = asyncio.run(_rebuild())
    for pid, previous, rebuilt in changes:
        click.echo(f"product {pid}: {previous} -> {rebuilt}")
    verb = "would change" if dry_run else "changed"
    click.echo(f"{checked} products checked, {len(changes)} {verb}")


@cli.command()
@click.option('--product-id', type=int, required=True)
@click.option('--delta', type=int, required=True, help='Signed quantity, e.g. -2 or 10')
@click.option('--reason', type=click.Choice(['manual_adjustment', 'restock']), default='manual_adjustment')
@click.option('--note', default=None)
def adjust(product_id, delta, reason, note):
    """Apply a manual stock adjustment or restock."""

    async def _adjust():
        async with async_session() as session:
            service = StockAdjustmentService(session)
            outcome = await service.adjust(product_id, delta, MovementReason(reason), note=note, actor="cli")
            return outcome.product.stock, outcome.movement.id

    try:
        stock, movement_id = asyncio.run(_adjust())
    except BaseServiceError as e:
        raise click.ClickException(str(e))
    click.echo(f"Product {product_id} stock is now {stock} (movement {movement_id})")


@cli.command()
@click.argument('order_id', type=int)
def reconcile(order_id):
    """Deduct stock for a paid order's lines (safe to repeat)."""
    async def _reconcile():
        async with async_session() as session:
            return await OrderReconciler(session).reconcile_order(order_id)

    try:
        result = asyncio.run(_reconcile())
    except BaseServiceError as e:
        raise click.ClickException(str(e))
    click.echo(json.dumps(result.model_dump(mode="json"), indent=2))
    if result.failed:
        raise SystemExit(1)


if __name__ == "__main__":
    cli()
