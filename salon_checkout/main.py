"""
Checkout service
Cash and card checkout for the salon storefront, with payment verification
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from salon_checkout.core import (
    ServiceHealth, setup_logging, RequestLoggingMiddleware, get_logger,
    RateLimitMiddleware, RateLimitRule, build_counter_store,
)
from salon_checkout.core_settings import get_settings
from salon_checkout.api.routes import orders_router, payments_router
from salon_checkout.infrastructure.db import engine

SERVICE_NAME = "salon-checkout"
SERVICE_DESCRIPTION = "Order and payment consistency service"

settings = get_settings()

setup_logging(service_name=SERVICE_NAME, level=settings.LOG_LEVEL)

logger = get_logger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Schema is owned by alembic (`alembic upgrade head`), not created here
    logger.info(f"Starting {SERVICE_NAME} version {settings.SERVICE_VERSION}")
    if not settings.STRIPE_SECRET_KEY:
        logger.warning("STRIPE_SECRET_KEY not set; card checkout will fail")
    yield
    logger.info(f"Shutting down {SERVICE_NAME}")

app = FastAPI(
    title=SERVICE_NAME,
    description=SERVICE_DESCRIPTION,
    version=settings.SERVICE_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

if settings.RATE_LIMIT_ENABLED:
    app.add_middleware(
        RateLimitMiddleware,
        store=build_counter_store(settings.REDIS_URL),
        default_limit=settings.RATE_LIMIT_PER_MINUTE,
        rules=[
            RateLimitRule("/orders", settings.CHECKOUT_RATE_LIMIT_PER_MINUTE),
            RateLimitRule("/payments", settings.CHECKOUT_RATE_LIMIT_PER_MINUTE),
        ],
    )

# Added last so it wraps everything, including rate-limited responses
app.add_middleware(RequestLoggingMiddleware)

health_service = ServiceHealth(SERVICE_NAME, engine, settings.SERVICE_VERSION, settings.REDIS_URL)
app.include_router(health_service.create_health_router())

app.include_router(orders_router)
app.include_router(payments_router)

@app.get("/")
async def root():
    return {
        "service": SERVICE_NAME,
        "version": settings.SERVICE_VERSION,
        "status": "running",
        "docs": "/api/docs"
    }
