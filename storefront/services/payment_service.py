"""
Payment flow on top of the order register:

  - checkout: open a gateway payment session for a PENDING order
  - callback: settle a PENDING order as DONE or FAILED exactly once
  - refund: DONE -> REFUND_REQUESTED -> REFUNDED within the refund window

Every order status change is a conditional UPDATE keyed on the expected prior
status, so concurrent deliveries and duplicate requests cannot both win.
"""

import hmac
import logging
import uuid
from datetime import datetime, timedelta
from enum import Enum
from hashlib import sha256

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from storefront.config import settings
from storefront.database import utcnow
from storefront.exceptions import (
    AmountMismatchError,
    CallbackRejectedError,
    ExternalServiceError,
    InvalidOrderStateError,
    NotOrderOwnerError,
    OrderNotFoundError,
    PaymentNotFoundError,
    RefundAlreadyRequestedError,
    RefundInProgressError,
    RefundWindowExpiredError,
)
from storefront.metrics import CALLBACK_OUTCOMES, REFUND_OUTCOMES
from storefront.models.order import Order, OrderStatus
from storefront.models.payment import Payment, PaymentStatus
from storefront.schemas.payment import (
    PAY_COMPLETE,
    CheckoutResponse,
    GatewayPaymentRequest,
    GatewayRefundRequest,
    PaymentCallback,
    PaymentDetailResponse,
    RefundResponse,
)
from storefront.services.gateway import TossPayClient
from storefront.services.order_service import get_order_by_order_no, transition_status
from storefront.services.stock_ledger import increase_stock

logger = logging.getLogger(__name__)


class CallbackOutcome(str, Enum):
    APPROVED = "approved"
    DUPLICATE = "duplicate"
    ALREADY_SETTLED = "already_settled"
    DECLINED = "declined"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def refund_window() -> timedelta:
    return timedelta(days=settings.refund_window_days)


def within_refund_window(paid_at: datetime | None, now: datetime) -> bool:
    # Inclusive: a request exactly refund_window_days after payment is accepted.
    return paid_at is not None and now - paid_at <= refund_window()


def mask_card_number(card_number: str | None) -> str | None:
    if not card_number:
        return card_number
    return "*" * max(len(card_number) - 4, 0) + card_number[-4:]


def verify_callback_signature(secret: str, body: bytes, signature: str | None) -> bool:
    if not signature:
        return False
    expected = hmac.new(secret.encode(), body, sha256).hexdigest()
    return hmac.compare_digest(expected, signature.lower())


def _payment_from_callback(payload: PaymentCallback, order_id: int, paid_at: datetime) -> Payment:
    return Payment(
        order_id=order_id,
        order_no=payload.order_no,
        pay_token=payload.pay_token,
        transaction_id=payload.transaction_id,
        pay_method=payload.pay_method,
        amount=payload.amount,
        discounted_amount=payload.discounted_amount,
        paid_amount=payload.paid_amount,
        paid_ts=payload.paid_ts,
        status=PaymentStatus.DONE,
        paid_at=paid_at,
        card_company_code=payload.card_company_code,
        card_authorization_no=payload.card_authorization_no,
        spread_out=payload.spread_out,
        no_interest=payload.no_interest,
        card_method_type=payload.card_method_type,
        card_user_type=payload.card_user_type,
        card_number=payload.card_number,
        card_bin_number=payload.card_bin_number,
        card_num4_print=payload.card_num4_print,
        sales_check_link_url=payload.sales_check_link_url,
        account_bank_code=payload.account_bank_code,
        account_bank_name=payload.account_bank_name,
        account_number=payload.account_number,
    )


async def _fail_order(db: AsyncSession, order_id: int, product_id: int, quantity: int) -> bool:
    """PENDING -> FAILED and give the reserved stock back. Commits."""
    if await transition_status(db, order_id, (OrderStatus.PENDING,), OrderStatus.FAILED) == 0:
        await db.rollback()
        return False
    await increase_stock(db, product_id, quantity)
    await db.commit()
    return True


async def _fetch_payment(db: AsyncSession, order_id: int) -> Payment | None:
    result = await db.execute(
        select(Payment)
        .where(Payment.order_id == order_id)
        .options(selectinload(Payment.order))
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------


async def request_checkout(
    db: AsyncSession,
    gateway: TossPayClient,
    order_no: str,
    user_id: int,
) -> CheckoutResponse:
    order = await get_order_by_order_no(db, order_no)
    if order.user_id != user_id:
        raise NotOrderOwnerError()
    if order.status != OrderStatus.PENDING:
        raise InvalidOrderStateError("Only pending orders can be checked out")

    order_id = order.id
    gateway_request = GatewayPaymentRequest(
        order_no=order.order_no,
        amount=order.total_price,
        product_desc=order.product.name,
        ret_url=settings.checkout_return_url,
        ret_cancel_url=settings.checkout_cancel_url,
        result_callback=settings.callback_url,
    )
    # No transaction stays open across the gateway round trip.
    await db.commit()

    try:
        response = await gateway.request_payment(gateway_request)
    except ExternalServiceError:
        logger.warning(
            "Order created but checkout unavailable; order stays PENDING",
            extra={"order_no": order_no, "order_id": order_id},
        )
        raise

    await db.execute(
        update(Order)
        .where(Order.id == order_id, Order.status == OrderStatus.PENDING)
        .values(pay_token=response.pay_token)
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    logger.info("Checkout session opened", extra={"order_no": order_no, "order_id": order_id})
    return CheckoutResponse(
        order_no=order_no,
        checkout_page=response.checkout_page or "",
        pay_token=response.pay_token or "",
    )


# ---------------------------------------------------------------------------
# Callback
# ---------------------------------------------------------------------------


async def process_payment_approval(
    db: AsyncSession,
    payload: PaymentCallback,
    now: datetime | None = None,
) -> CallbackOutcome:
    """
    Apply a gateway payment-completion callback.

    Idempotent: redelivery of an already applied callback returns DUPLICATE
    without side effects. Raises OrderNotFoundError for unknown order numbers,
    CallbackRejectedError when the order never went through checkout or the
    pay token does not match the one issued there, and AmountMismatchError (after failing the order and restoring
    stock) when the amount differs from the order total.
    """
    now = now or utcnow()
    log_ctx = {"order_no": payload.order_no, "transaction_id": payload.transaction_id}

    order = await get_order_by_order_no(db, payload.order_no)
    order_id, product_id, quantity = order.id, order.product_id, order.quantity

    if order.status == OrderStatus.DONE:
        logger.info("Duplicate payment callback ignored", extra=log_ctx)
        CALLBACK_OUTCOMES.labels("duplicate").inc()
        return CallbackOutcome.DUPLICATE

    if order.status != OrderStatus.PENDING:
        logger.warning(
            "Callback for already settled order ignored",
            extra={**log_ctx, "status": order.status.value},
        )
        CALLBACK_OUTCOMES.labels("already_settled").inc()
        return CallbackOutcome.ALREADY_SETTLED

    # No checkout, no token: the gateway cannot have issued this callback.
    if not order.pay_token or payload.pay_token != order.pay_token:
        logger.warning("Callback pay token does not match checkout", extra=log_ctx)
        CALLBACK_OUTCOMES.labels("rejected").inc()
        raise CallbackRejectedError()

    if payload.status != PAY_COMPLETE:
        await _fail_order(db, order_id, product_id, quantity)
        logger.info(
            "Payment not completed; order failed",
            extra={**log_ctx, "callback_status": payload.status},
        )
        CALLBACK_OUTCOMES.labels("declined").inc()
        return CallbackOutcome.DECLINED

    if payload.amount != order.total_price:
        expected = order.total_price
        await _fail_order(db, order_id, product_id, quantity)
        logger.error(
            "Callback amount mismatch; order failed",
            extra={**log_ctx, "expected": expected, "received": payload.amount},
        )
        CALLBACK_OUTCOMES.labels("amount_mismatch").inc()
        raise AmountMismatchError(
            f"Paid amount {payload.amount} does not match order total {expected}"
        )

    try:
        updated = await transition_status(
            db, order_id, (OrderStatus.PENDING,), OrderStatus.DONE, paid_at=now
        )
        if updated == 0:
            # A concurrent delivery settled the order first.
            await db.rollback()
            logger.info("Callback lost race to a concurrent delivery", extra=log_ctx)
            CALLBACK_OUTCOMES.labels("duplicate").inc()
            return CallbackOutcome.DUPLICATE

        db.add(_payment_from_callback(payload, order_id, now))
        await db.flush()
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.info("Payment already recorded for order", extra=log_ctx)
        CALLBACK_OUTCOMES.labels("duplicate").inc()
        return CallbackOutcome.DUPLICATE

    logger.info("Payment approved", extra={**log_ctx, "amount": payload.amount})
    CALLBACK_OUTCOMES.labels("approved").inc()
    return CallbackOutcome.APPROVED


# ---------------------------------------------------------------------------
# Refund
# ---------------------------------------------------------------------------


async def request_refund(
    db: AsyncSession,
    order_id: int,
    user_id: int,
    reason: str,
    now: datetime,
) -> int:
    """
    DONE -> REFUND_REQUESTED for the owner within the refund window.

    One conditional UPDATE; returns 1 when the transition happened, 0
    otherwise. A zero result does not say why; see diagnose_refund_rejection.
    """
    cutoff = now - refund_window()
    result = await db.execute(
        update(Order)
        .where(
            Order.id == order_id,
            Order.user_id == user_id,
            Order.status == OrderStatus.DONE,
            Order.paid_at >= cutoff,
        )
        .values(status=OrderStatus.REFUND_REQUESTED)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.rollback()
        return 0

    await db.execute(
        update(Payment)
        .where(Payment.order_id == order_id)
        .values(
            status=PaymentStatus.REFUND_REQUESTED,
            refund_reason=reason,
            refund_requested_by=user_id,
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    logger.info("Refund requested", extra={"order_id": order_id, "user_id": user_id})
    return result.rowcount


async def diagnose_refund_rejection(
    db: AsyncSession,
    order_id: int,
    user_id: int,
    now: datetime,
) -> None:
    """Re-read the order after a rejected refund and raise the matching error."""
    result = await db.execute(
        select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
    )
    order = result.scalars().first()
    if order is None:
        raise OrderNotFoundError()
    if order.user_id != user_id:
        raise NotOrderOwnerError()
    if order.status in (OrderStatus.REFUND_REQUESTED, OrderStatus.REFUNDED):
        raise RefundAlreadyRequestedError()
    if order.status != OrderStatus.DONE:
        raise InvalidOrderStateError("Only paid orders can be refunded")
    if not within_refund_window(order.paid_at, now):
        raise RefundWindowExpiredError()
    # The order changed between the conditional update and this read.
    raise InvalidOrderStateError("Order changed while the refund was being requested")


# Payment states a gateway refund may be attempted from.
_REFUND_CLAIMABLE = (PaymentStatus.REFUND_REQUESTED, PaymentStatus.REFUND_FAILED)


async def _claim_refund(db: AsyncSession, payment_id: int, refund_no: str) -> int:
    result = await db.execute(
        update(Payment)
        .where(Payment.id == payment_id, Payment.status.in_(_REFUND_CLAIMABLE))
        .values(status=PaymentStatus.REFUND_PROCESSING, refund_no=refund_no)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


async def _is_failed_refund(db: AsyncSession, order_id: int, user_id: int) -> bool:
    result = await db.execute(
        select(Payment.id)
        .join(Order, Payment.order_id == Order.id)
        .where(
            Order.id == order_id,
            Order.user_id == user_id,
            Order.status == OrderStatus.REFUND_REQUESTED,
            Payment.status == PaymentStatus.REFUND_FAILED,
        )
    )
    return result.first() is not None


async def complete_refund(
    db: AsyncSession,
    gateway: TossPayClient,
    order_id: int,
    now: datetime | None = None,
) -> RefundResponse:
    """
    Refund a REFUND_REQUESTED order through the gateway and release its stock.

    The payment is claimed (REFUND_REQUESTED or REFUND_FAILED ->
    REFUND_PROCESSING) by a conditional UPDATE committed before the gateway
    call, so concurrent calls send at most one refund; the others get
    RefundInProgressError. A gateway failure puts the payment in
    REFUND_FAILED, from which it can be claimed again.
    """
    now = now or utcnow()
    payment = await _fetch_payment(db, order_id)
    if payment is None:
        raise PaymentNotFoundError()

    order = payment.order
    if order.status != OrderStatus.REFUND_REQUESTED:
        raise InvalidOrderStateError("Refund has not been requested for this order")

    payment_id = payment.id
    product_id, quantity = order.product_id, order.quantity
    refund_request = GatewayRefundRequest(
        pay_token=payment.pay_token or order.pay_token,
        refund_no=str(uuid.uuid4()),
        amount=payment.amount,
        reason=payment.refund_reason or "",
    )
    log_ctx = {"order_id": order_id, "payment_id": payment_id, "refund_no": refund_request.refund_no}

    if await _claim_refund(db, payment_id, refund_request.refund_no) == 0:
        await db.rollback()
        REFUND_OUTCOMES.labels("in_progress").inc()
        logger.info("Refund already claimed by another request", extra=log_ctx)
        raise RefundInProgressError()
    await db.commit()

    try:
        await gateway.request_refund(refund_request)
    except ExternalServiceError:
        await db.execute(
            update(Payment)
            .where(Payment.id == payment_id, Payment.status == PaymentStatus.REFUND_PROCESSING)
            .values(status=PaymentStatus.REFUND_FAILED)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        REFUND_OUTCOMES.labels("gateway_error").inc()
        logger.error("Gateway refund failed; order stays REFUND_REQUESTED", extra=log_ctx)
        raise

    if await transition_status(
        db, order_id, (OrderStatus.REFUND_REQUESTED,), OrderStatus.REFUNDED
    ) == 0:
        # Payment stays REFUND_PROCESSING so nothing can refund it a second time.
        await db.rollback()
        REFUND_OUTCOMES.labels("inconsistent").inc()
        logger.error("Gateway refunded but order left REFUND_REQUESTED", extra=log_ctx)
        raise InvalidOrderStateError("Order changed while the refund was being processed")

    await increase_stock(db, product_id, quantity)
    await db.execute(
        update(Payment)
        .where(Payment.id == payment_id)
        .values(status=PaymentStatus.REFUNDED, refunded_at=now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    REFUND_OUTCOMES.labels("refunded").inc()
    logger.info("Refund completed", extra=log_ctx)

    payment = await _fetch_payment(db, order_id)
    order_status = await db.scalar(select(Order.status).where(Order.id == order_id))
    return RefundResponse(
        payment_id=payment.id,
        order_id=order_id,
        refund_amount=payment.amount,
        refund_reason=payment.refund_reason,
        refund_status=payment.status,
        order_status=order_status,
        refunded_at=payment.refunded_at,
    )


async def refund_order(
    db: AsyncSession,
    gateway: TossPayClient,
    order_id: int,
    user_id: int,
    reason: str,
    now: datetime | None = None,
) -> RefundResponse:
    """
    Request a refund and complete it through the gateway.

    Repeating the request after a gateway failure retries the refund; the
    original reason is kept.
    """
    now = now or utcnow()
    if await request_refund(db, order_id, user_id, reason, now) == 1:
        REFUND_OUTCOMES.labels("requested").inc()
    elif await _is_failed_refund(db, order_id, user_id):
        REFUND_OUTCOMES.labels("retried").inc()
        logger.info("Retrying failed gateway refund", extra={"order_id": order_id, "user_id": user_id})
    else:
        REFUND_OUTCOMES.labels("rejected").inc()
        await diagnose_refund_rejection(db, order_id, user_id, now)
    return await complete_refund(db, gateway, order_id, now)


# ---------------------------------------------------------------------------
# Read
# ---------------------------------------------------------------------------


async def get_payment_detail(
    db: AsyncSession,
    order_id: int,
    user_id: int,
    now: datetime | None = None,
) -> PaymentDetailResponse:
    now = now or utcnow()
    payment = await _fetch_payment(db, order_id)
    if payment is None or payment.order.user_id != user_id:
        raise PaymentNotFoundError()

    unavailable_reason = None
    if payment.status != PaymentStatus.DONE:
        unavailable_reason = "Only completed payments can be refunded"
    elif not within_refund_window(payment.order.paid_at, now):
        unavailable_reason = (
            f"The refund window ({settings.refund_window_days} days) has passed"
        )

    return PaymentDetailResponse(
        payment_id=payment.id,
        order_id=payment.order_id,
        order_no=payment.order_no,
        pay_method=payment.pay_method,
        amount=payment.amount,
        paid_amount=payment.paid_amount,
        status=payment.status,
        paid_at=payment.paid_at,
        card_number=mask_card_number(payment.card_number),
        account_bank_name=payment.account_bank_name,
        refundable=unavailable_reason is None,
        refund_unavailable_reason=unavailable_reason,
        refund_reason=payment.refund_reason,
        refunded_at=payment.refunded_at,
    )
