import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from prometheus_client import make_asgi_app

import storefront.models  # noqa: F401  registers tables on Base.metadata
from storefront.config import settings
from storefront.database import Base, engine
from storefront.exceptions import StorefrontError
from storefront.middleware.metrics import MetricsMiddleware
from storefront.middleware.request_id import RequestIDMiddleware
from storefront.routers import orders, payments, products
from storefront.services.gateway import build_gateway_client
from storefront.utils.logging import setup_logging
from storefront.utils.tracing import setup_tracing

setup_logging(settings.log_level, service_name="storefront")
logger = logging.getLogger(__name__)

tracing_enabled = setup_tracing("storefront", settings.otlp_endpoint)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.create_tables_on_startup:
        logger.info("Starting up: creating database tables")
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    if tracing_enabled:
        SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)

    if not settings.callback_secret:
        logger.warning("CALLBACK_SECRET is not set; payment callbacks will be rejected")

    app.state.gateway = build_gateway_client()
    logger.info("Startup complete")

    yield

    await app.state.gateway.aclose()
    await engine.dispose()
    logger.info("Shutting down")


app = FastAPI(
    title="Hot-Deal Storefront",
    description="Stock-safe event product orders and Toss Pay payments",
    version="1.0.0",
    lifespan=lifespan,
)

if tracing_enabled:
    FastAPIInstrumentor.instrument_app(app)
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestIDMiddleware)
app.include_router(products.router, prefix="/products", tags=["products"])
app.include_router(orders.router, prefix="/orders", tags=["orders"])
app.include_router(payments.router, prefix="/payments", tags=["payments"])

# Expose Prometheus metrics at /metrics
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        "Request failed",
        extra={
            "request_id": getattr(request.state, "request_id", "unknown"),
            "path": request.url.path,
            "code": exc.code,
            "status_code": exc.status_code,
            "error": exc.message,
        },
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


@app.get("/health", tags=["health"])
async def health():
    return {"status": "ok"}
