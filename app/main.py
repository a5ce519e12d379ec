"""
COD Fulfillment Ledger - Main FastAPI Application
"""
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import redis_client
from app.core.config import settings
from app.core.logging import setup_logging, get_logger
from app.core.middleware import setup_middleware, setup_exception_handlers
from app.api.routes import router as api_router
from app.db.database import engine, Base, get_db

setup_logging(
    level="DEBUG" if settings.DEBUG else "INFO",
    json_format=not settings.DEBUG,
)

logger = get_logger(__name__)


def _parse_allowed_origins(raw: str) -> list[str]:
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


_OPENAPI_TAGS = [
    {"name": "orders", "description": "Order lifecycle: creation, driver binding, status changes, returns."},
    {"name": "remittances", "description": "Payout requests, approval, sending and manual receipts."},
    {"name": "wallets", "description": "Derived commission balances per payee."},
    {"name": "inventory", "description": "Purchased and delivered stock per product and country."},
    {"name": "users", "description": "Agents, drivers, investors and back-office staff."},
    {"name": "products", "description": "Product catalogue."},
    {"name": "investments", "description": "Investor stakes in products."},
    {"name": "settings", "description": "Display and settlement currency tables."},
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting application", extra_data={
        "app_name": settings.APP_NAME,
        "settlement_currency": settings.SETTLEMENT_CURRENCY,
        "pivot_currency": settings.PIVOT_CURRENCY,
    })
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized")

    yield

    logger.info("Shutting down application")
    await redis_client.close_redis()
    await engine.dispose()
    logger.info("Database connections disposed")


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description=(
        "Back office for a cash-on-delivery shop: order fulfillment across "
        "countries and a multi-currency commission ledger."
    ),
    openapi_tags=_OPENAPI_TAGS,
    lifespan=lifespan,
)

setup_middleware(app)
setup_exception_handlers(app)

allowed_origins = _parse_allowed_origins(settings.ALLOWED_ORIGINS)

if not allowed_origins and settings.DEBUG:
    allowed_origins = ["http://localhost:3000", "http://127.0.0.1:3000"]

if allowed_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_methods=["GET", "POST", "PUT", "OPTIONS"],
        allow_headers=["Content-Type", "X-Correlation-ID"],
        expose_headers=["X-Correlation-ID", "Content-Disposition"],
    )

app.include_router(api_router, prefix="/api")


@app.get("/health", summary="Liveness probe", tags=["health"])
async def health_check() -> dict[str, str]:
    """The process is up and answering. Dependencies are not checked."""
    return {"status": "healthy"}


@app.get("/api/health", include_in_schema=False)
async def api_health_check() -> dict[str, str]:
    return {"status": "healthy"}


@app.get("/health/ready", summary="Readiness probe", tags=["health"])
async def readiness_check(db: AsyncSession = Depends(get_db)) -> JSONResponse:
    """
    Database and Redis reachability.

    Redis only carries UI notifications, so a Redis outage reports
    ``degraded`` while the database decides between 200 and 503.
    """
    checks: dict[str, str] = {}

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except SQLAlchemyError as e:
        logger.error("Readiness: database unreachable", extra_data={"error": str(e)})
        checks["database"] = "unavailable"

    try:
        await (await redis_client.get_redis()).ping()
        checks["redis"] = "ok"
    except (RedisError, OSError) as e:
        logger.warning("Readiness: redis unreachable", extra_data={"error": str(e)})
        checks["redis"] = "unavailable"

    if checks["database"] != "ok":
        status, code = "unavailable", 503
    elif checks["redis"] != "ok":
        status, code = "degraded", 200
    else:
        status, code = "ready", 200
    return JSONResponse(status_code=code, content={"status": status, "checks": checks})
