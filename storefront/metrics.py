from prometheus_client import Counter, Histogram

ORDER_PLACEMENTS = Counter(
    "storefront_order_placements_total",
    "Order placement attempts by outcome",
    ["outcome"],  # created | duplicate | out_of_stock | not_found
)

CALLBACK_OUTCOMES = Counter(
    "storefront_payment_callbacks_total",
    "Payment callbacks processed by outcome",
    ["outcome"],  # approved | duplicate | already_settled | declined | amount_mismatch | rejected
)

REFUND_OUTCOMES = Counter(
    "storefront_refunds_total",
    "Refund requests by outcome",
    ["outcome"],  # requested | retried | rejected | in_progress | refunded | gateway_error | inconsistent
)

GATEWAY_LATENCY = Histogram(
    "storefront_gateway_request_duration_seconds",
    "Payment gateway round-trip time",
    ["operation", "outcome"],  # operation: payment | refund; outcome: ok | rejected | error
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0],
)
