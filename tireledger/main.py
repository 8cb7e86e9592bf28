"""
Tire Ledger
FastAPI application entry point

- Inventory ledger and locations (admin)
- Order checkout, cancellation and status changes
- Shipping package planning, carrier rates and pricing quotes
- Rate limiting with SlowAPI on checkout
- Error sanitization middleware
"""
import logging
from datetime import datetime, timezone
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text

from tireledger.api.routes import inventory, orders, shipping
from tireledger.core.config import settings
from tireledger.core.database import AsyncSessionLocal, init_models
from tireledger.core.error_handler import register_error_handlers
from tireledger.core.rate_limit import limiter, rate_limit_exceeded_handler
from tireledger.modules.shipping.carriers import get_carrier

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Create tables in development and own the carrier client's lifecycle.
    Production schemas are managed by migrations.
    """
    if settings.ENVIRONMENT == "development":
        await init_models()
        logger.info("Development database tables ensured")

    if getattr(app.state, "carrier", None) is None:
        app.state.carrier = get_carrier()
    logger.info(f"Rate provider: {app.state.carrier.carrier_name}")

    yield

    # Close HTTP clients to prevent connection leaks
    await app.state.carrier.close()
    logger.info("Carrier client closed")


app = FastAPI(
    lifespan=lifespan,
    title=settings.APP_NAME,
    description="Inventory ledger, pricing, packaging and order fulfillment for the tire storefront.",
    version="1.0.0",
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

# Domain errors, validation errors and sanitization of anything unhandled
register_error_handlers(app)

# CORS - adjust origins for production
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(orders.router, prefix="/orders", tags=["Orders"])
app.include_router(inventory.router, prefix="/inventory", tags=["Inventory"])
app.include_router(shipping.router, tags=["Shipping"])


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check with an actual DB ping. Returns 503 if the database is unreachable."""
    health_status = {
        "status": "healthy",
        "database": "unknown",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    try:
        async with AsyncSessionLocal() as db:
            await db.execute(text("SELECT 1"))
        health_status["database"] = "connected"
    except Exception as e:
        health_status["database"] = f"error: {type(e).__name__}: {str(e)[:100]}"
        health_status["status"] = "unhealthy"
        return JSONResponse(status_code=503, content=health_status)

    return health_status
