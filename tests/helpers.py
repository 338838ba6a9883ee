"""Shared helpers for storefront tests."""

import json
from datetime import datetime

import httpx
from sqlalchemy import func, select, update

from storefront.models.order import Order
from storefront.models.payment import Payment
from storefront.models.product import Product
from storefront.schemas.payment import PAY_COMPLETE, PaymentCallback
from storefront.services.gateway import PAYMENTS_ENDPOINT, REFUNDS_ENDPOINT


class GatewayStub:
    """Programmable stand-in for the payment gateway, served through httpx.MockTransport."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.payment_response = (
            200,
            {"code": 0, "checkoutPage": "https://pay.test/checkout/abc", "payToken": "tok-123"},
        )
        self.refund_response = (200, {"code": 0, "refundNo": "refund-1"})
        self.error: Exception | None = None

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if request.url.path == PAYMENTS_ENDPOINT:
            status, body = self.payment_response
        elif request.url.path == REFUNDS_ENDPOINT:
            status, body = self.refund_response
        else:
            status, body = 404, {"code": -1, "msg": "unknown endpoint"}
        return httpx.Response(status, json=body)

    def last_body(self) -> dict:
        return json.loads(self.requests[-1].content)


def callback_payload(order_no: str, amount: int, pay_token: str | None = "tok-123",
                     status: str = PAY_COMPLETE, **extra) -> PaymentCallback:
    data = {
        "status": status,
        "orderNo": order_no,
        "payToken": pay_token,
        "payMethod": "CARD",
        "amount": amount,
        "discountedAmount": 0,
        "paidAmount": amount,
        "paidTs": "2026-10-01 12:00:00",
        "transactionId": "txn-0001",
        "cardCompanyCode": 3,
        "cardAuthorizationNo": "30012345",
        "spreadOut": 0,
        "noInterest": False,
        "cardMethodType": "CREDIT",
        "cardUserType": "PERSONAL",
        "cardNumber": "4330288712341234",
        "cardBinNumber": "433028",
        "cardNum4Print": "1234",
        "salesCheckLinkUrl": "https://pay.test/receipt/1",
        **extra,
    }
    return PaymentCallback.model_validate(data)


async def stock_of(session_factory, product_id: int) -> int:
    async with session_factory() as session:
        return await session.scalar(select(Product.stock).where(Product.id == product_id))


async def load_order(session_factory, order_id: int) -> Order:
    async with session_factory() as session:
        return await session.get(Order, order_id)


async def payment_count(session_factory, order_id: int) -> int:
    async with session_factory() as session:
        return await session.scalar(
            select(func.count()).select_from(Payment).where(Payment.order_id == order_id)
        )


async def load_payment(session_factory, order_id: int) -> Payment | None:
    async with session_factory() as session:
        result = await session.execute(select(Payment).where(Payment.order_id == order_id))
        return result.scalars().first()


async def issue_pay_token(session_factory, order_id: int, pay_token: str = "tok-123") -> None:
    """Record a checkout pay token without going through the gateway."""
    async with session_factory() as session:
        await session.execute(update(Order).where(Order.id == order_id).values(pay_token=pay_token))
        await session.commit()


async def place_paid_order(session_factory, product_id: int, user_id: int, paid_at: datetime,
                           quantity: int = 1) -> Order:
    """Create an order and settle it through the callback processor at `paid_at`."""
    from storefront.services import order_service, payment_service

    async with session_factory() as session:
        order = await order_service.create_order(session, user_id, product_id, quantity)
    await issue_pay_token(session_factory, order.id)
    async with session_factory() as session:
        await payment_service.process_payment_approval(
            session, callback_payload(order.order_no, order.total_price), now=paid_at
        )
    return await load_order(session_factory, order.id)
