"""MungerMind API - investment dashboard backend."""
import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded as InboundRateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from app.config import get_settings
from app.core.errors import (
    DailyQuotaExceeded,
    GatewayError,
    MalformedResponse,
    ProviderNotConfigured,
    RateLimitExceeded,
)
from app.database import init_db
from app.api.v1.router import router as api_v1_router
from app.services.llm import LLMError

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Inbound rate limiter (per client address)
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[f"{settings.rate_limit_per_minute}/minute"],
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    # Startup
    if settings.is_development:
        await init_db()  # Only auto-create tables in dev
    yield
    # Shutdown - cleanup if needed


app = FastAPI(
    title=settings.app_name,
    description="Market data, research and journaling API for the MungerMind dashboard",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,  # Disable docs in production
    redoc_url="/redoc" if settings.debug else None,
    openapi_url="/openapi.json" if settings.debug else None,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(InboundRateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

# CORS - strict in production
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list if settings.is_production else ["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH"],
    allow_headers=["*"],
    max_age=600,  # Cache preflight for 10 minutes
)


# =============================================================================
# UPSTREAM ERRORS
# =============================================================================

@app.exception_handler(RateLimitExceeded)
async def upstream_rate_limited(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=429,
        content={"error": "rate_limited", "detail": str(exc), "retry_after": exc.retry_after},
        headers={"Retry-After": str(int(exc.retry_after))},
    )


@app.exception_handler(DailyQuotaExceeded)
async def upstream_quota_exhausted(request: Request, exc: DailyQuotaExceeded):
    return JSONResponse(
        status_code=429,
        content={"error": "daily_quota_exceeded", "detail": str(exc)},
    )


@app.exception_handler(MalformedResponse)
async def upstream_malformed(request: Request, exc: MalformedResponse):
    logger.error("Malformed provider response on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=502,
        content={"error": "malformed_response", "detail": str(exc)},
    )


@app.exception_handler(ProviderNotConfigured)
async def upstream_not_configured(request: Request, exc: ProviderNotConfigured):
    logger.error("Provider not configured: %s", exc)
    return JSONResponse(
        status_code=503,
        content={"error": "not_configured", "detail": str(exc)},
    )


@app.exception_handler(GatewayError)
async def upstream_gateway_error(request: Request, exc: GatewayError):
    return JSONResponse(
        status_code=502,
        content={"error": "gateway_error", "detail": str(exc)},
    )


@app.exception_handler(LLMError)
async def upstream_llm_error(request: Request, exc: LLMError):
    logger.error("LLM failure on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=502,
        content={"error": "llm_error", "detail": str(exc)},
    )


@app.exception_handler(httpx.HTTPError)
async def upstream_transport_error(request: Request, exc: httpx.HTTPError):
    logger.error("Upstream transport failure on %s: %r", request.url.path, exc)
    return JSONResponse(
        status_code=502,
        content={"error": "upstream_unavailable", "detail": "Upstream provider request failed"},
    )


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    """Add security headers to all responses."""
    response = await call_next(request)

    if settings.is_production:
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-XSS-Protection"] = "1; mode=block"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        response.headers["Content-Security-Policy"] = "default-src 'self'"

    return response


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log requests in development."""
    if settings.is_development:
        logger.debug("[%s] %s", request.method, request.url.path)
    return await call_next(request)


# Include API routes
app.include_router(api_v1_router, prefix=settings.api_v1_prefix)


@app.get("/")
async def root():
    """Root endpoint - health check."""
    return {
        "name": settings.app_name,
        "version": "0.1.0",
        "status": "healthy",
        "environment": settings.environment.value,
    }


@app.get("/health")
async def health():
    """Detailed health check for monitoring."""
    return {
        "status": "healthy",
        "service": "mungermind-api",
        "version": "0.1.0",
    }
