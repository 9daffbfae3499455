"""
FastAPI application entry point.

Signal ingestion API for SignalRelay.
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from signalrelay.core.config import settings
from signalrelay.core.logging import setup_logging
from signalrelay.core.database import close_db
from signalrelay.core.errors import RateLimitError, SignalRelayError
from signalrelay.core.metrics import metrics
from signalrelay.core.redis import close_redis, get_async_redis
from signalrelay.services.dispatch_queue import create_dispatch_queue

# Setup logging
setup_logging()

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Trading signal ingestion and multi-channel alert dispatch",
    debug=settings.DEBUG,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SignalRelayError)
async def signal_relay_error_handler(request: Request, exc: SignalRelayError) -> JSONResponse:
    """Render pipeline errors with their status code and structured body."""
    headers = None
    if isinstance(exc, RateLimitError):
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@app.on_event("startup")
async def startup() -> None:
    """Run on application startup."""
    if settings.METRICS_REDIS_ENABLED:
        metrics.set_redis(await get_async_redis())
    app.state.dispatch_queue = create_dispatch_queue()
    await app.state.dispatch_queue.start()


@app.on_event("shutdown")
async def shutdown() -> None:
    """Run on application shutdown."""
    dispatch_queue = getattr(app.state, "dispatch_queue", None)
    if dispatch_queue is not None:
        await dispatch_queue.stop()
    await close_db()
    await close_redis()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
    }


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "message": f"Welcome to {settings.APP_NAME} API",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }


from signalrelay.api.ingest import router as ingest_router
from signalrelay.api.channels import router as channels_router
from signalrelay.api.metrics import router as metrics_router

app.include_router(ingest_router, prefix="/api/v1", tags=["ingest"])
app.include_router(metrics_router, prefix="/api/v1/metrics", tags=["metrics"])
app.include_router(channels_router, prefix="/api/v1/channels", tags=["channels"])
