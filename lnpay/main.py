"""
FastAPI application entry point.
Configures routes, middleware, error mapping and lifecycle events.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from lnpay import __version__
from lnpay.config import settings
from lnpay.database import init_db, close_db
from lnpay.errors import LnPayError
from lnpay.logging_config import configure_logging
from lnpay.redis import RedisClient, redis_available

from lnpay.api.deps import get_invoice_service
from lnpay.api.invoices import router as invoices_router
from lnpay.api.webhooks.btcpay import router as btcpay_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifecycle manager."""
    # Startup
    configure_logging()
    logger.info(f"Starting up {settings.app_name} (gateway: {settings.gateway_mode})")

    await init_db()

    # Initialize Redis
    try:
        RedisClient.get_client()
    except Exception as e:
        logger.warning(f"Failed to initialize Redis: {e}")

    yield

    # Shutdown
    if get_invoice_service.cache_info().currsize:
        await get_invoice_service().gateway.close()
    await RedisClient.close()
    await close_db()
    logger.info("Shutting down...")


app = FastAPI(
    title="lnpay",
    description="Lightning invoice lifecycle and BTCPay webhook reconciliation",
    version=__version__,
    lifespan=lifespan,
    debug=settings.debug,
)


@app.exception_handler(LnPayError)
async def lnpay_exception_handler(request: Request, exc: LnPayError):
    if exc.status_code >= 500:
        logger.error(f"{exc.__class__.__name__} on {request.url.path}: {exc.message}")
        message = "Payment gateway unavailable" if exc.status_code == 502 else "Internal Server Error"
        return JSONResponse(status_code=exc.status_code, content={"error": message})

    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{field}: {first.get('msg', 'invalid value')}" if field else "Invalid request"
    return JSONResponse(status_code=400, content={"error": message})


# Global Exception Handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Global exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal Server Error"},
    )


# CORS middleware
origins = [settings.frontend_url] + settings.cors_origins
if settings.is_development:
    origins.append("*")

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "app": settings.app_name,
        "env": settings.app_env,
        "gateway": settings.gateway_mode,
        "redis": "ok" if await redis_available() else "unavailable",
    }


@app.get("/api/status")
async def api_status():
    return {
        "operational": True,
        "version": __version__,
        "features": {
            "lightning_invoices": True,
            "webhooks": True,
            "fulfillment": settings.fulfillment_backend,
        },
        "gateway_mode": settings.gateway_mode,
    }


# Register API routes
app.include_router(
    invoices_router,
    prefix="/api",
    tags=["lightning"],
)

# Register webhook routes
app.include_router(
    btcpay_router,
    prefix="/webhooks",
    tags=["webhooks"],
)
