"""
Main FastAPI application
Entry point for the Crypto Prize Pool API
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from contextlib import asynccontextmanager
import logging

from prizepool.core.config import settings
from prizepool.core.security import limiter, get_security_headers
from prizepool.core.database import async_session_factory, close_db, engine, init_db
from prizepool.core.redis import init_redis, get_redis_client, close_redis
from prizepool.services.pool_watcher import PoolWatcher
from prizepool.services.price_oracle import PriceFeedError, get_price_oracle

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.DEBUG else logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# ============================================================================
# GLOBAL STATE (pool watcher only, Redis lives in prizepool.core.redis)
# ============================================================================

pool_watcher = None

# ============================================================================
# LIFESPAN CONTEXT MANAGER
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    global pool_watcher

    logger.info("Starting Crypto Prize Pool API")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug mode: {settings.DEBUG}")

    await init_db()
    logger.info("Database tables ready")

    # Redis is optional: price caching and pool update fan-out degrade without it
    if settings.REDIS_URL:
        try:
            await init_redis(settings.REDIS_URL)
            logger.info("Redis connected")
        except Exception as e:
            logger.error(f"Redis connection failed: {e}")

    if settings.POOL_WATCHER_ENABLED:
        pool_watcher = PoolWatcher(
            async_session_factory,
            get_price_oracle,
            interval_seconds=settings.POOL_WATCHER_INTERVAL_SECONDS,
        )
        await pool_watcher.start()

    logger.info("Application startup complete")

    yield  # Application runs here

    # ==================== SHUTDOWN ====================
    logger.info("Shutting down Crypto Prize Pool API")

    if pool_watcher:
        await pool_watcher.stop()
        pool_watcher = None

    await close_redis()
    logger.info("Redis connection closed")

    await close_db()
    logger.info("Database connections closed")

    logger.info("Shutdown complete")

# ============================================================================
# CREATE FASTAPI APP
# ============================================================================

app = FastAPI(
    title="Crypto Prize Pool API",
    description="Fantasy crypto contests: pick 11 tokens, climb the leaderboard, win the pool",
    version="1.0.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    lifespan=lifespan
)

# Add rate limiter
app.state.limiter = limiter

# ============================================================================
# MIDDLEWARE
# ============================================================================

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "X-User-UID", "X-Admin-Key"],
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    for key, value in get_security_headers().items():
        response.headers[key] = value
    return response


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=429,
        content={"detail": "Rate limit exceeded. Please try again later."}
    )

@app.exception_handler(PriceFeedError)
async def price_feed_handler(request: Request, exc: PriceFeedError):
    logger.warning(f"{request.method} {request.url.path}: price feed unavailable: {exc}")
    return JSONResponse(
        status_code=503,
        content={"detail": "Price service unavailable. Please try again shortly."}
    )

@app.exception_handler(OperationalError)
async def database_unavailable_handler(request: Request, exc: OperationalError):
    # Nothing was committed, the next observer of the pool retries the transition
    logger.error(f"{request.method} {request.url.path}: database unavailable: {exc}")
    return JSONResponse(
        status_code=503,
        content={"detail": "Database unavailable. Please try again shortly."}
    )

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc}", exc_info=True)

    if settings.DEBUG:
        return JSONResponse(
            status_code=500,
            content={
                "detail": "Internal server error",
                "error": str(exc),
                "type": type(exc).__name__
            }
        )

    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )

# ============================================================================
# ROOT ENDPOINTS
# ============================================================================

@app.get("/")
async def root():
    return {
        "message": "Crypto Prize Pool API",
        "version": "1.0.0",
        "status": "operational",
        "redis_status": "connected" if get_redis_client() else "disconnected",
        "pool_watcher": "running" if pool_watcher and pool_watcher.running else "stopped"
    }

@app.get("/health")
async def health_check():
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        database_up = True
    except OperationalError as e:
        logger.error(f"Health check could not reach the database: {e}")
        database_up = False

    return {
        "status": "healthy" if database_up else "degraded",
        "services": {
            "database": "up" if database_up else "down",
            "redis": "up" if get_redis_client() else "down",
            "pool_watcher": "up" if pool_watcher and pool_watcher.running else "down"
        }
    }

# ============================================================================
# API ROUTES
# ============================================================================

from prizepool.api import admin, market, pools, teams

app.include_router(pools.router, prefix="/pools", tags=["Prize Pools"])
app.include_router(teams.router, prefix="/teams", tags=["Teams"])
app.include_router(market.router, prefix="/market", tags=["Market Data"])
app.include_router(admin.router)

# ============================================================================
# MAIN ENTRY POINT
# ============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "prizepool.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG
    )
