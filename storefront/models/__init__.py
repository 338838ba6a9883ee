# Import all models here so SQLAlchemy registers them with Base.metadata
from storefront.models.order import ACTIVE_ORDER_STATUSES, Order, OrderStatus
from storefront.models.payment import Payment, PaymentStatus
from storefront.models.product import Product

__all__ = [
    "ACTIVE_ORDER_STATUSES",
    "Order",
    "OrderStatus",
    "Payment",
    "PaymentStatus",
    "Product",
]
