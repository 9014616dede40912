from .collector import (
    MetricsCollector,
    collector,
    TOKENS_CREATED_TOTAL,
    TOKENS_REMOVED_TOTAL,
    TOKEN_LOOKUP_FAILURES_TOTAL,
    TOKEN_CREATE_LATENCY_MS,
    TOKEN_STORE_UP,
)

__all__ = [
    "MetricsCollector",
    "collector",
    "TOKENS_CREATED_TOTAL",
    "TOKENS_REMOVED_TOTAL",
    "TOKEN_LOOKUP_FAILURES_TOTAL",
    "TOKEN_CREATE_LATENCY_MS",
    "TOKEN_STORE_UP",
]
