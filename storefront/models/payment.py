from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.database import Base, TimestampMixin


class PaymentStatus(str, Enum):
    DONE = "DONE"
    REFUND_REQUESTED = "REFUND_REQUESTED"
    REFUND_PROCESSING = "REFUND_PROCESSING"  # claimed; gateway refund in flight
    REFUNDED = "REFUNDED"
    REFUND_FAILED = "REFUND_FAILED"


class Payment(TimestampMixin, Base):
    """Gateway transaction record, captured verbatim from the approval callback."""

    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"), unique=True, nullable=False)
    order_no: Mapped[str] = mapped_column(String(64), nullable=False)
    pay_token: Mapped[str | None] = mapped_column(String(100), nullable=True)
    transaction_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    pay_method: Mapped[str | None] = mapped_column(String(30), nullable=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    discounted_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    paid_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    paid_ts: Mapped[str | None] = mapped_column(String(40), nullable=True)
    status: Mapped[PaymentStatus] = mapped_column(
        SAEnum(PaymentStatus, name="paymentstatus"), default=PaymentStatus.DONE, nullable=False
    )
    paid_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    # Card payments
    card_company_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    card_authorization_no: Mapped[str | None] = mapped_column(String(40), nullable=True)
    spread_out: Mapped[int | None] = mapped_column(Integer, nullable=True)
    no_interest: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    card_method_type: Mapped[str | None] = mapped_column(String(30), nullable=True)
    card_user_type: Mapped[str | None] = mapped_column(String(30), nullable=True)
    card_number: Mapped[str | None] = mapped_column(String(40), nullable=True)
    card_bin_number: Mapped[str | None] = mapped_column(String(20), nullable=True)
    card_num4_print: Mapped[str | None] = mapped_column(String(10), nullable=True)
    sales_check_link_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Account payments (TOSS_MONEY)
    account_bank_code: Mapped[str | None] = mapped_column(String(10), nullable=True)
    account_bank_name: Mapped[str | None] = mapped_column(String(50), nullable=True)
    account_number: Mapped[str | None] = mapped_column(String(40), nullable=True)

    # Refund bookkeeping
    refund_reason: Mapped[str | None] = mapped_column(String(200), nullable=True)
    refund_requested_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    refund_no: Mapped[str | None] = mapped_column(String(64), nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    order: Mapped["Order"] = relationship("Order", back_populates="payment")
