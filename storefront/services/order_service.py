import logging
import uuid

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from storefront.exceptions import (
    DuplicateOrderError,
    InsufficientStockError,
    InvalidInputError,
    OrderNotFoundError,
    OrderNumberCollisionError,
    ProductNotFoundError,
)
from storefront.metrics import ORDER_PLACEMENTS
from storefront.models.order import ACTIVE_ORDER_STATUSES, Order, OrderStatus
from storefront.schemas.order import OrderListResponse, OrderResponse
from storefront.services.stock_ledger import decrease_stock_if_available, get_product

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _build_response(order: Order) -> OrderResponse:
    return OrderResponse(
        id=order.id,
        order_no=order.order_no,
        product_id=order.product_id,
        product_name=order.product.name if order.product else "Unknown",
        quantity=order.quantity,
        total_price=order.total_price,
        status=order.status,
        paid_at=order.paid_at,
        created_at=order.created_at,
        updated_at=order.updated_at,
    )


async def _has_active_order(db: AsyncSession, user_id: int, product_id: int) -> bool:
    result = await db.execute(
        select(Order.id)
        .where(
            Order.user_id == user_id,
            Order.product_id == product_id,
            Order.status.in_(ACTIVE_ORDER_STATUSES),
        )
        .limit(1)
    )
    return result.first() is not None


async def _fetch_order(db: AsyncSession, order_id: int) -> Order | None:
    result = await db.execute(
        select(Order).where(Order.id == order_id).options(selectinload(Order.product))
    )
    return result.scalars().first()


def generate_order_no() -> str:
    return str(uuid.uuid4())


async def transition_status(
    db: AsyncSession,
    order_id: int,
    from_statuses: tuple[OrderStatus, ...],
    to_status: OrderStatus,
    **values,
) -> int:
    """
    Move an order to `to_status` only if it is currently in one of
    `from_statuses`. Single conditional UPDATE; returns the affected row count.
    """
    result = await db.execute(
        update(Order)
        .where(Order.id == order_id, Order.status.in_(from_statuses))
        .values(status=to_status, **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def create_order(db: AsyncSession, user_id: int, product_id: int, quantity: int) -> Order:
    """
    Reserve stock and register a PENDING order in one transaction.

    Either the stock decrement and the order row are both committed, or
    neither is.
    """
    if quantity <= 0:
        raise InvalidInputError("Quantity must be greater than zero")

    log_ctx = {"user_id": user_id, "product_id": product_id, "quantity": quantity}

    try:
        # 1. Product must be visible
        product = await get_product(db, product_id)

        # 2. One active order per (user, product)
        if await _has_active_order(db, user_id, product_id):
            raise DuplicateOrderError()

        # 3. Atomic conditional decrement
        if await decrease_stock_if_available(db, product_id, quantity) == 0:
            raise InsufficientStockError()

        # 4. Persist order; total price is frozen here
        order = Order(
            order_no=generate_order_no(),
            user_id=user_id,
            product_id=product_id,
            quantity=quantity,
            total_price=product.price * quantity,
            status=OrderStatus.PENDING,
        )
        db.add(order)
        await db.flush()
        await db.commit()

    except ProductNotFoundError:
        await db.rollback()
        ORDER_PLACEMENTS.labels("not_found").inc()
        raise
    except DuplicateOrderError:
        await db.rollback()
        ORDER_PLACEMENTS.labels("duplicate").inc()
        logger.info("Rejected duplicate order", extra=log_ctx)
        raise
    except InsufficientStockError:
        await db.rollback()
        ORDER_PLACEMENTS.labels("out_of_stock").inc()
        logger.info("Rejected order: insufficient stock", extra=log_ctx)
        raise
    except IntegrityError as exc:
        # Whole transaction, stock decrement included, is undone here.
        await db.rollback()
        if await _has_active_order(db, user_id, product_id):
            ORDER_PLACEMENTS.labels("duplicate").inc()
            logger.info("Concurrent duplicate order lost the race", extra=log_ctx)
            raise DuplicateOrderError() from exc
        logger.error("Order number collision", extra={**log_ctx, "error": str(exc)})
        raise OrderNumberCollisionError() from exc

    ORDER_PLACEMENTS.labels("created").inc()
    logger.info(
        "Order created",
        extra={**log_ctx, "order_id": order.id, "order_no": order.order_no,
               "total_price": order.total_price},
    )
    return order


async def get_order_by_order_no(db: AsyncSession, order_no: str) -> Order:
    result = await db.execute(
        select(Order).where(Order.order_no == order_no).options(selectinload(Order.product))
    )
    order = result.scalars().first()
    if order is None:
        raise OrderNotFoundError()
    return order


async def get_order_detail(db: AsyncSession, order_id: int, user_id: int) -> OrderResponse:
    """Owner-only; someone else's order reads as not found."""
    order = await _fetch_order(db, order_id)
    if order is None or order.user_id != user_id:
        raise OrderNotFoundError()
    return _build_response(order)


async def list_orders(
    db: AsyncSession,
    user_id: int,
    status: OrderStatus | None = None,
    page: int = 0,
    size: int = 10,
) -> OrderListResponse:
    conditions = [Order.user_id == user_id]
    if status is not None:
        conditions.append(Order.status == status)

    total = await db.scalar(select(func.count()).select_from(Order).where(*conditions))
    result = await db.execute(
        select(Order)
        .where(*conditions)
        .options(selectinload(Order.product))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .offset(page * size)
        .limit(size)
    )
    return OrderListResponse(
        items=[_build_response(order) for order in result.scalars().all()],
        total=total or 0,
        page=page,
        size=size,
    )
