from datetime import datetime

from pydantic import Field

from storefront.models.order import OrderStatus
from storefront.schemas.base import CamelModel


class OrderCreate(CamelModel):
    product_id: int = Field(gt=0)
    quantity: int = Field(gt=0)


class OrderCreateResponse(CamelModel):
    order_id: int
    order_no: str


class OrderResponse(CamelModel):
    id: int
    order_no: str
    product_id: int
    product_name: str
    quantity: int
    total_price: int
    status: OrderStatus
    paid_at: datetime | None
    created_at: datetime
    updated_at: datetime


class OrderListResponse(CamelModel):
    items: list[OrderResponse]
    total: int
    page: int
    size: int
