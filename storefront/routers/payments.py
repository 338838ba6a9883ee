import logging

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.database import get_db
from storefront.dependencies import (
    get_current_user_id,
    get_gateway,
    request_id,
    require_callback_signature,
)
from storefront.schemas.payment import (
    CallbackAck,
    CheckoutRequest,
    CheckoutResponse,
    PaymentCallback,
    PaymentDetailResponse,
    RefundRequest,
    RefundResponse,
)
from storefront.services import payment_service
from storefront.services.gateway import TossPayClient

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("", response_model=CheckoutResponse, status_code=status.HTTP_201_CREATED)
async def create_checkout(
    body: CheckoutRequest,
    request: Request,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    gateway: TossPayClient = Depends(get_gateway),
) -> CheckoutResponse:
    logger.info(
        "Received checkout request",
        extra={"request_id": request_id(request), "order_no": body.order_no},
    )
    return await payment_service.request_checkout(db, gateway, body.order_no, user_id)


@router.post(
    "/callback",
    response_model=CallbackAck,
    dependencies=[Depends(require_callback_signature)],
)
async def payment_callback(
    body: PaymentCallback,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> CallbackAck:
    outcome = await payment_service.process_payment_approval(db, body)
    logger.info(
        "Payment callback handled",
        extra={
            "request_id": request_id(request),
            "order_no": body.order_no,
            "outcome": outcome.value,
        },
    )
    return CallbackAck()


@router.get("/{order_id}", response_model=PaymentDetailResponse)
async def get_payment_detail(
    order_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> PaymentDetailResponse:
    return await payment_service.get_payment_detail(db, order_id, user_id)


@router.post("/{order_id}/refund", response_model=RefundResponse)
async def request_refund(
    order_id: int,
    body: RefundRequest,
    request: Request,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    gateway: TossPayClient = Depends(get_gateway),
) -> RefundResponse:
    logger.info(
        "Received refund request",
        extra={"request_id": request_id(request), "order_id": order_id, "user_id": user_id},
    )
    return await payment_service.refund_order(db, gateway, order_id, user_id, body.refund_reason)
