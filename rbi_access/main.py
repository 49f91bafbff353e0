"""Main FastAPI application for the RBI access subsystem"""

import time
import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import Response as StarletteResponse

from rbi_access.auth import verify_api_key
from rbi_access.config import settings
from rbi_access.database import Base, engine
from rbi_access.log_config import configure_logging
from rbi_access.middleware import LoggingMiddleware
from rbi_access.routers import access, diagnostics, health
from rbi_access.schemas.common import ErrorDetail, ErrorResponse
from rbi_access.services import enforcement  # noqa: F401  installs the session hooks

configure_logging()

logger = structlog.get_logger()

# Rate limiting
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[f"{settings.rate_limit_per_minute}/minute"]
)

# Prometheus metrics
REQUEST_COUNT = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status_code']
)
REQUEST_DURATION = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration',
    ['method', 'endpoint']
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    logger.info("Starting RBI access service", version=settings.app_version, rls_enabled=settings.rls_enabled)

    # Create database tables; row-level security is installed by the migrations
    Base.metadata.create_all(bind=engine)

    logger.info("RBI access service started successfully")

    yield

    logger.info("Shutting down RBI access service")


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Geographic authorization and attribution consistency for barangay records",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    openapi_url="/openapi.json" if settings.debug else None,
    lifespan=lifespan
)

# Add rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Add middleware
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(LoggingMiddleware)

# Include routers
app.include_router(access.router, prefix="/access", tags=["access"])
app.include_router(diagnostics.router, prefix="/diagnostics", tags=["diagnostics"])
app.include_router(health.router, prefix="", tags=["health"])


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    """Middleware to collect Prometheus metrics"""
    start_time = time.time()

    response = await call_next(request)

    duration = time.time() - start_time
    route = request.scope.get("route")
    endpoint = route.path if route is not None else request.url.path
    REQUEST_DURATION.labels(
        method=request.method,
        endpoint=endpoint
    ).observe(duration)

    REQUEST_COUNT.labels(
        method=request.method,
        endpoint=endpoint,
        status_code=response.status_code
    ).inc()

    return response


@app.get("/metrics")
async def metrics(api_key: str = Depends(verify_api_key)):
    """Prometheus metrics endpoint"""
    return StarletteResponse(
        generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Global HTTP exception handler"""
    run_id = getattr(request.state, 'run_id', str(uuid.uuid4()))

    logger.error(
        "HTTP exception",
        run_id=run_id,
        status_code=exc.status_code,
        detail=exc.detail,
        path=request.url.path,
        method=request.method
    )

    if isinstance(exc.detail, dict):
        error = ErrorDetail(**exc.detail)
    else:
        error = ErrorDetail(code=f"HTTP_{exc.status_code}", message=str(exc.detail))

    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=error, trace_id=run_id).model_dump(exclude_none=True)
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    run_id = getattr(request.state, 'run_id', str(uuid.uuid4()))

    logger.error(
        "Unhandled exception",
        run_id=run_id,
        exception=str(exc),
        path=request.url.path,
        method=request.method,
        exc_info=True
    )

    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(code="INTERNAL_ERROR", message="Internal server error"),
            trace_id=run_id,
        ).model_dump(exclude_none=True)
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "rbi_access.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level=settings.log_level.lower()
    )
