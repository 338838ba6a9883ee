"""
Per-product stock bookkeeping.

Stock only changes through single conditional UPDATE statements so the
check-and-write is atomic in the database; there is no read-modify-write in
application code. Functions run inside the caller's transaction and never
commit.
"""

import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.exceptions import ProductNotFoundError
from storefront.models.product import Product

logger = logging.getLogger(__name__)


async def get_product(db: AsyncSession, product_id: int) -> Product:
    result = await db.execute(
        select(Product).where(Product.id == product_id, Product.is_deleted.is_(False))
    )
    product = result.scalars().first()
    if product is None:
        raise ProductNotFoundError()
    return product


async def decrease_stock_if_available(db: AsyncSession, product_id: int, quantity: int) -> int:
    """
    Take `quantity` units off the product's stock iff enough remain.

    Returns the affected row count: 1 on success, 0 when the product is
    missing, soft-deleted or short of stock. Callers treat 0 as
    "insufficient stock" and must not retry.
    """
    result = await db.execute(
        update(Product)
        .where(
            Product.id == product_id,
            Product.is_deleted.is_(False),
            Product.stock >= quantity,
        )
        .values(stock=Product.stock - quantity)
        .execution_options(synchronize_session=False)
    )
    logger.debug(
        "Conditional stock decrement",
        extra={"product_id": product_id, "quantity": quantity, "rowcount": result.rowcount},
    )
    return result.rowcount


async def increase_stock(db: AsyncSession, product_id: int, quantity: int) -> int:
    """Compensating increment, used when an order fails or is refunded."""
    result = await db.execute(
        update(Product)
        .where(Product.id == product_id, Product.is_deleted.is_(False))
        .values(stock=Product.stock + quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        logger.warning(
            "Stock restore skipped: product missing or deleted",
            extra={"product_id": product_id, "quantity": quantity},
        )
    return result.rowcount
