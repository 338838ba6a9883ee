"""
Client for the Toss Pay style payment gateway.

Synchronous request/response round trips over httpx; no retries. Transport
failures, non-2xx answers and unreadable bodies raise GatewayTransportError,
a well-formed answer with a non-zero result code raises GatewayRejectedError.
"""

import logging
import time

import httpx
from pydantic import ValidationError

from storefront.config import settings
from storefront.exceptions import GatewayRejectedError, GatewayTransportError
from storefront.metrics import GATEWAY_LATENCY
from storefront.schemas.payment import (
    GatewayPaymentRequest,
    GatewayPaymentResponse,
    GatewayRefundRequest,
    GatewayRefundResponse,
)

logger = logging.getLogger(__name__)

PAYMENTS_ENDPOINT = "/api/v2/payments"
REFUNDS_ENDPOINT = "/api/v2/refunds"


class TossPayClient:
    def __init__(
        self,
        base_url: str,
        secret_key: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.client = httpx.AsyncClient(
            base_url=base_url,
            auth=httpx.BasicAuth(secret_key, ""),
            headers={"Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self.client.aclose()

    async def _post(self, operation: str, path: str, body: dict, model):
        start = time.perf_counter()
        try:
            res = await self.client.post(path, json=body)
            res.raise_for_status()
            response = model.model_validate(res.json())
        except httpx.HTTPStatusError as exc:
            GATEWAY_LATENCY.labels(operation, "error").observe(time.perf_counter() - start)
            logger.error(
                "Gateway HTTP error",
                extra={"operation": operation, "status_code": exc.response.status_code},
            )
            raise GatewayTransportError(
                f"Gateway answered HTTP {exc.response.status_code}"
            ) from exc
        except (httpx.HTTPError, ValueError, ValidationError) as exc:
            GATEWAY_LATENCY.labels(operation, "error").observe(time.perf_counter() - start)
            logger.error(
                "Gateway request failed",
                extra={"operation": operation, "error": str(exc)},
            )
            raise GatewayTransportError() from exc

        outcome = "ok" if response.code == 0 else "rejected"
        GATEWAY_LATENCY.labels(operation, outcome).observe(time.perf_counter() - start)
        if response.code != 0:
            logger.error(
                "Gateway rejected request",
                extra={
                    "operation": operation,
                    "code": response.code,
                    "msg": response.msg,
                    "error_code": response.error_code,
                },
            )
            raise GatewayRejectedError(
                response.msg, gateway_code=response.code, gateway_error_code=response.error_code
            )
        return response

    async def request_payment(self, request: GatewayPaymentRequest) -> GatewayPaymentResponse:
        """Open a checkout session. Returns the checkout page and pay token."""
        logger.info(
            "Requesting gateway checkout",
            extra={"order_no": request.order_no, "amount": request.amount},
        )
        return await self._post(
            "payment", PAYMENTS_ENDPOINT, request.model_dump(by_alias=True), GatewayPaymentResponse
        )

    async def request_refund(self, request: GatewayRefundRequest) -> GatewayRefundResponse:
        """Full refund of a settled payment."""
        logger.info(
            "Requesting gateway refund",
            extra={"refund_no": request.refund_no, "amount": request.amount},
        )
        return await self._post(
            "refund", REFUNDS_ENDPOINT, request.model_dump(by_alias=True), GatewayRefundResponse
        )


def build_gateway_client(transport: httpx.AsyncBaseTransport | None = None) -> TossPayClient:
    return TossPayClient(
        base_url=settings.toss_base_url,
        secret_key=settings.toss_secret_key,
        timeout=settings.gateway_timeout,
        transport=transport,
    )
