import logging

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.database import get_db
from storefront.dependencies import get_current_user_id, request_id
from storefront.models.order import OrderStatus
from storefront.schemas.order import (
    OrderCreate,
    OrderCreateResponse,
    OrderListResponse,
    OrderResponse,
)
from storefront.services import order_service

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("", response_model=OrderCreateResponse, status_code=status.HTTP_201_CREATED)
async def place_order(
    body: OrderCreate,
    request: Request,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> OrderCreateResponse:
    logger.info(
        "Received place_order request",
        extra={"request_id": request_id(request), "user_id": user_id, "product_id": body.product_id},
    )
    order = await order_service.create_order(db, user_id, body.product_id, body.quantity)
    return OrderCreateResponse(order_id=order.id, order_no=order.order_no)


@router.get("", response_model=OrderListResponse)
async def list_my_orders(
    status_filter: OrderStatus | None = Query(default=None, alias="status"),
    page: int = Query(default=0, ge=0),
    size: int = Query(default=10, ge=1, le=100),
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> OrderListResponse:
    return await order_service.list_orders(db, user_id, status_filter, page, size)


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: int,
    request: Request,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> OrderResponse:
    logger.info(
        "Received get_order request",
        extra={"request_id": request_id(request), "order_id": order_id},
    )
    return await order_service.get_order_detail(db, order_id, user_id)
