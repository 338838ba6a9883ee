from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "postgresql+asyncpg://postgres:postgres@db:5432/storefront"
    log_level: str = "INFO"
    create_tables_on_startup: bool = True

    # Toss Pay gateway
    toss_base_url: str = "https://pay.toss.im"
    toss_secret_key: str = ""
    gateway_timeout: float = 10.0
    checkout_return_url: str = "http://localhost:3000/payments/success"
    checkout_cancel_url: str = "http://localhost:3000/payments/cancel"
    callback_url: str = "http://localhost:8000/payments/callback"
    callback_secret: str = ""  # required; callbacks are rejected while empty

    # Refund policy
    refund_window_days: int = 7

    # Observability
    otlp_endpoint: str = "http://jaeger:4318/v1/traces"

    model_config = {"env_file": ".env"}


settings = Settings()
