from datetime import datetime

from pydantic import Field

from storefront.models.order import OrderStatus
from storefront.models.payment import PaymentStatus
from storefront.schemas.base import CamelModel

# ---------------------------------------------------------------------------
# Client-facing
# ---------------------------------------------------------------------------


class CheckoutRequest(CamelModel):
    order_no: str = Field(min_length=1)


class CheckoutResponse(CamelModel):
    order_no: str
    checkout_page: str
    pay_token: str


class RefundRequest(CamelModel):
    refund_reason: str = Field(min_length=1, max_length=200)


class RefundResponse(CamelModel):
    payment_id: int
    order_id: int
    refund_amount: int
    refund_reason: str | None
    refund_status: PaymentStatus
    order_status: OrderStatus
    refunded_at: datetime | None


class PaymentDetailResponse(CamelModel):
    payment_id: int
    order_id: int
    order_no: str
    pay_method: str | None
    amount: int
    paid_amount: int | None
    status: PaymentStatus
    paid_at: datetime
    card_number: str | None  # masked
    account_bank_name: str | None
    refundable: bool
    refund_unavailable_reason: str | None
    refund_reason: str | None
    refunded_at: datetime | None


# ---------------------------------------------------------------------------
# Gateway callback (inbound)
# ---------------------------------------------------------------------------

PAY_COMPLETE = "PAY_COMPLETE"


class PaymentCallback(CamelModel):
    """Payment-completion notification posted by the gateway."""

    status: str
    pay_token: str | None = None
    order_no: str = Field(min_length=1)
    pay_method: str | None = None
    amount: int
    discounted_amount: int | None = None
    paid_amount: int | None = None
    paid_ts: str | None = None
    transaction_id: str | None = None

    # Card (CARD)
    card_company_code: int | None = None
    card_authorization_no: str | None = None
    spread_out: int | None = None
    no_interest: bool | None = None
    card_method_type: str | None = None
    card_user_type: str | None = None
    card_number: str | None = None
    card_bin_number: str | None = None
    card_num4_print: str | None = None
    sales_check_link_url: str | None = None

    # Account (TOSS_MONEY)
    account_bank_code: str | None = None
    account_bank_name: str | None = None
    account_number: str | None = None

    model_config = {"extra": "ignore"}


class CallbackAck(CamelModel):
    result: str = "OK"


# ---------------------------------------------------------------------------
# Gateway API (outbound)
# ---------------------------------------------------------------------------


class GatewayPaymentRequest(CamelModel):
    order_no: str
    amount: int
    amount_tax_free: int = 0
    product_desc: str
    ret_url: str
    ret_cancel_url: str
    auto_execute: bool = True
    result_callback: str
    callback_version: str = "V2"


class GatewayPaymentResponse(CamelModel):
    code: int
    checkout_page: str | None = None
    pay_token: str | None = None
    msg: str | None = None
    error_code: str | None = None

    model_config = {"extra": "ignore"}


class GatewayRefundRequest(CamelModel):
    pay_token: str | None
    refund_no: str
    amount: int
    amount_tax_free: int = 0
    reason: str


class GatewayRefundResponse(CamelModel):
    code: int
    refund_no: str | None = None
    msg: str | None = None
    error_code: str | None = None

    model_config = {"extra": "ignore"}
