import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from storefront.database import create_db_and_tables
from storefront.config import settings
from storefront.errors import StorefrontError
from storefront.routes import (
    admin_orders,
    checkout,
    health,
    live,
    payments,
    user_orders,
)

from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Run DB creation ONLY in local, migrations handle everything else
    if settings.ENV == "local":
        create_db_and_tables()
    yield

app = FastAPI(title="Storefront Orders API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": str(exc), "error": exc.code, "retryable": exc.retryable},
    )


app.include_router(health.router, prefix="/health", tags=["Health"])
app.include_router(checkout.router, prefix="/checkout", tags=["Checkout"])
app.include_router(user_orders.router, prefix="/orders", tags=["Orders"])
app.include_router(admin_orders.router, prefix="/admin/orders", tags=["Admin Orders"])
app.include_router(payments.router, prefix="/payments", tags=["Payments"])
app.include_router(live.router, prefix="/live", tags=["Live Orders"])


@app.get("/")
def root():
    return {
        "checkout_endpoints": [
            "/checkout/summary", "/checkout/orders"
        ],
        "order_endpoints": [
            "/orders", "/orders/{order_id}", "/orders/{order_id}/timeline"
        ],
        "admin_order_endpoints": [
            "/admin/orders", "/admin/orders/{order_id}",
            "/admin/orders/{order_id}/status", "/admin/orders/{order_id}/advance",
            "/admin/orders/{order_id}/timeline"
        ],
        "payment_endpoints": [
            "/payments/intents", "/payments/confirm", "/payments/webhook"
        ],
        "live_endpoints": [
            "/live/orders", "/live/admin/orders"
        ]
    }
