"""
Imagery Task Pipeline - Main Application

FastAPI application with:
- API versioning (/api/v1/)
- Structured logging with structlog
- Prometheus metrics
- Global exception handling
- Optional in-process processing worker
"""

import asyncio
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy import text
import redis.asyncio as redis

from src.core.config import settings
from src.core.database import create_db_and_tables, engine
from src.core.logging import setup_logging, get_logger
from src.core.exceptions import register_exception_handlers
from src.core.metrics import set_app_info, http_requests_total, http_request_duration_seconds
from src.api.v1 import api_v1_router
from src.api.dependencies import build_image_service


# =============================================================================
# Initialize Logging
# =============================================================================
setup_logging(
    log_level=settings.LOG_LEVEL,
    json_format=settings.LOG_FORMAT_JSON
)
logger = get_logger(__name__)


# =============================================================================
# Lifespan Handler
# =============================================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler - startup and shutdown."""
    startup_start = time.time()

    logger.info(
        "application_starting",
        app_name=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT
    )

    await create_db_and_tables()
    logger.info("database_initialized")

    app.state.redis = redis.from_url(settings.REDIS_URL)
    logger.info("redis_connected", url=settings.REDIS_URL)

    app.state.image_service = build_image_service(app.state.redis)
    await app.state.image_service.channel.setup()

    set_app_info(
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT
    )

    worker_task = None
    worker_stop = asyncio.Event()
    if settings.RUN_WORKER_IN_PROCESS:
        from src.core.worker import build_worker

        worker = await build_worker(app.state.redis)
        worker_task = asyncio.create_task(worker.run(worker_stop))
        logger.info("in_process_worker_started", consumer=worker.channel.consumer_name)

    logger.info("application_ready", startup_time_seconds=time.time() - startup_start)

    yield

    # Shutdown
    logger.info("application_shutting_down")
    if worker_task is not None:
        worker_stop.set()
        try:
            await asyncio.wait_for(worker_task, timeout=settings.FETCH_BLOCK_MS / 1000 + 5)
        except asyncio.TimeoutError:
            logger.warning("in_process_worker_cancelled")
    await app.state.redis.aclose()
    await engine.dispose()
    logger.info("application_shutdown_complete")


# =============================================================================
# Create FastAPI Application
# =============================================================================
app = FastAPI(
    title=settings.APP_NAME,
    description="""
    Image upload and asynchronous processing pipeline.

    - **Upload**: the original is stored, a task is recorded and a processing
      command is queued as one saga with compensation on partial failure
    - **Processing**: workers apply resize, thumbnail and watermark, each
      written to `processed/<operation>/<file>`
    - **Observability**: structured logging, Prometheus metrics

    All endpoints are versioned under `/api/v1/`
    """,
    version=settings.APP_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)


# =============================================================================
# Middleware
# =============================================================================

cors_origins = settings.CORS_ORIGINS.split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_request_timing(request: Request, call_next):
    """Track request timing for metrics."""
    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    # Label by route template so task ids don't explode cardinality
    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)

    http_request_duration_seconds.labels(
        method=request.method,
        endpoint=endpoint
    ).observe(duration)

    http_requests_total.labels(
        method=request.method,
        endpoint=endpoint,
        status=response.status_code
    ).inc()

    response.headers["X-Process-Time"] = str(duration)

    return response


register_exception_handlers(app)

app.include_router(api_v1_router)


# =============================================================================
# Static Files
# =============================================================================

# Serves original/<id><ext> and processed/<operation>/<file> blobs
app.mount(
    "/static/storage",
    StaticFiles(directory=settings.LOCAL_STORAGE_PATH),
    name="storage"
)


# =============================================================================
# Root Endpoints
# =============================================================================

@app.get("/", tags=["root"])
async def root():
    """Root endpoint with API information."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "docs": "/api/docs",
        "api_v1": "/api/v1",
        "metrics": "/api/v1/metrics"
    }


@app.get("/health", tags=["health"])
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION
    }


@app.get("/ready", tags=["health"])
async def ready(request: Request):
    """Readiness check - verifies dependencies are available."""
    checks = {
        "redis": False,
        "database": False
    }

    try:
        await request.app.state.redis.ping()
        checks["redis"] = True
    except Exception as e:
        logger.warning("readiness_redis_failed", error=str(e))

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = True
    except Exception as e:
        logger.warning("readiness_database_failed", error=str(e))

    all_ready = all(checks.values())

    return JSONResponse(
        status_code=200 if all_ready else 503,
        content={
            "ready": all_ready,
            "checks": checks
        }
    )


# =============================================================================
# Development Server
# =============================================================================
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "src.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
