"""Cross-cutting service utilities: logging, health probes and rate limiting."""

from .health import ServiceHealth, HealthStatus
from .logging_config import (
    setup_logging,
    get_logger,
    RequestLoggingMiddleware,
    set_request_context,
    generate_request_id,
    LoggerAdapter,
)
from .rate_limit import RateLimitMiddleware, RateLimitRule, build_counter_store

__all__ = [
    # Health checks
    "ServiceHealth",
    "HealthStatus",
    # Logging
    "setup_logging",
    "get_logger",
    "RequestLoggingMiddleware",
    "set_request_context",
    "generate_request_id",
    "LoggerAdapter",
    # Rate limiting
    "RateLimitMiddleware",
    "RateLimitRule",
    "build_counter_store",
]
