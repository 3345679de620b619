"""
Main FastAPI application
Entry point for the Wheel Strategy Tracker API
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from contextlib import asynccontextmanager
import logging

from wheel_tracker.core.config import settings
from wheel_tracker.core.security import limiter, get_security_headers
from wheel_tracker.core.database import init_db, close_db, ping_db

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.DEBUG else logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# ============================================================================
# LIFESPAN CONTEXT MANAGER
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Wheel Tracker API")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug mode: {settings.DEBUG}")

    await init_db()
    logger.info("Database tables ready")

    logger.info("Application startup complete")

    yield  # Application runs here

    # ==================== SHUTDOWN ====================
    logger.info("Shutting down Wheel Tracker API")

    await close_db()
    logger.info("Database connections closed")

    logger.info("Shutdown complete")

# ============================================================================
# CREATE FASTAPI APP
# ============================================================================

app = FastAPI(
    title="Wheel Strategy Tracker API",
    description="Track options wheel strategy portfolios, trades and realized premium",
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
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
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

def _describe_validation_error(error: dict) -> str:
    loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
    field = ".".join(loc)
    return f"{field}: {error.get('msg')}" if field else str(error.get("msg"))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")}
        for e in exc.errors()
    ]
    detail = _describe_validation_error(exc.errors()[0]) if errors else "Invalid request"
    return JSONResponse(
        status_code=400,
        content={"detail": detail, "errors": errors}
    )

@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=429,
        content={
            "detail": "Rate limit exceeded. Please try again later.",
            "retry_after": getattr(exc, "retry_after", None)
        }
    )

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)

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
        "message": "Wheel Strategy Tracker API",
        "version": "1.0.0",
        "status": "operational",
    }

@app.get("/health")
async def health_check():
    database_up = await ping_db()
    return JSONResponse(
        status_code=200 if database_up else 503,
        content={
            "status": "healthy" if database_up else "degraded",
            "services": {"database": "up" if database_up else "down"}
        }
    )

# ============================================================================
# API ROUTES
# ============================================================================

from wheel_tracker.api import auth, users, portfolios, trades, stocks, account, reports, admin  # noqa: E402

app.include_router(auth.router, prefix="/api/auth", tags=["Authentication"])
app.include_router(users.router, prefix="/api/user", tags=["Users"])
app.include_router(portfolios.router, prefix="/api/portfolios", tags=["Portfolios"])
app.include_router(trades.router, prefix="/api/trades", tags=["Trades"])
app.include_router(stocks.router, prefix="/api/stocks", tags=["Stocks"])
app.include_router(account.router, prefix="/api/account", tags=["Account"])
app.include_router(reports.router, prefix="/api/reports", tags=["Reports"])
app.include_router(admin.router, prefix="/api")

# ============================================================================
# MAIN ENTRY POINT
# ============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "wheel_tracker.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG
    )
