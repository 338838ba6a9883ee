import logging

from fastapi import Header, HTTPException, Request, status

from storefront.config import settings
from storefront.services.gateway import TossPayClient
from storefront.services.payment_service import verify_callback_signature

logger = logging.getLogger(__name__)


def get_current_user_id(x_user_id: str | None = Header(default=None)) -> int:
    """Caller identity, as asserted by the upstream authentication layer."""
    if x_user_id is None or not x_user_id.isdigit() or int(x_user_id) <= 0:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return int(x_user_id)


def get_gateway(request: Request) -> TossPayClient:
    return request.app.state.gateway


def request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


async def require_callback_signature(request: Request) -> None:
    """
    HMAC-SHA256 over the raw body in X-Callback-Signature.

    Fails closed: with no callback secret configured every callback is
    rejected, since nothing else proves the gateway sent it.
    """
    if not settings.callback_secret:
        logger.error(
            "Payment callback rejected: CALLBACK_SECRET is not configured",
            extra={"request_id": request_id(request)},
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Callback verification unavailable"
        )
    body = await request.body()
    if not verify_callback_signature(
        settings.callback_secret, body, request.headers.get("X-Callback-Signature")
    ):
        logger.warning("Payment callback signature mismatch", extra={"request_id": request_id(request)})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid callback signature"
        )
