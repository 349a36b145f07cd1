"""
FastAPI Application Entry Point
Main application with all routes and middleware
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from permsearch.api.v1 import router as v1_router
from permsearch.core.config import settings
from permsearch.core.exceptions import AppException
from permsearch.core.logging import get_logger, setup_logging
from permsearch.models.common import HealthResponse
from permsearch.monitoring.metrics import errors_total, get_metrics

# Setup logging
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """Application lifespan management"""
    logger.info(f"Starting {settings.APP_NAME}...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")

    from permsearch.core.cache import get_cache_backend
    from permsearch.db.session import close_db, init_db
    from permsearch.services.embedding import close_embedding_service
    from permsearch.services.llm import close_llm_service
    from permsearch.services.retrieval import get_retriever

    await init_db()
    retriever = get_retriever()
    await retriever.fuser.initialize()
    logger.info("All services initialized successfully")

    yield

    logger.info("Shutting down...")
    try:
        await retriever.fuser.shutdown()
        await close_embedding_service()
        await close_llm_service()
        await get_cache_backend().close()
        await close_db()
        logger.info("Shutdown complete")
    except Exception as e:
        logger.error(f"Error during shutdown: {e}")


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    description="Permission-aware hybrid search and cited answers",
    version=settings.APP_VERSION,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    openapi_url="/openapi.json" if settings.DEBUG else None,
    lifespan=lifespan,
)


# CORS Middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# GZip Middleware
app.add_middleware(GZipMiddleware, minimum_size=1000)


def _error(status_code: int, code: str, message: str, timestamp: Optional[str] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "code": code,
                "message": message,
                "timestamp": timestamp or datetime.now(timezone.utc).isoformat(),
            }
        },
    )


# Exception Handlers
@app.exception_handler(AppException)
async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handle application-specific exceptions; server-side details stay in the logs"""
    if exc.is_server_error:
        logger.error(
            f"{exc.code} on {request.method} {request.url.path}: {exc.message} {exc.details}"
        )
        errors_total.labels(error_type=exc.code, endpoint=request.url.path).inc()
        return _error(exc.status_code, exc.code, exc.public_message, exc.timestamp)
    return _error(exc.status_code, exc.code, exc.message, exc.timestamp)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle HTTP exceptions"""
    return _error(exc.status_code, "http_error", str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle validation errors"""
    logger.debug(f"Invalid request to {request.url.path}: {exc.errors()}")
    return _error(status.HTTP_400_BAD_REQUEST, "validation_error", "Invalid request parameters")


# Include routers
app.include_router(v1_router, prefix="/api/v1")


# Health check endpoint
@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """Health check endpoint"""
    health = HealthResponse(
        status="healthy",
        version=settings.APP_VERSION,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )

    try:
        from permsearch.db.session import get_session_maker

        async with get_session_maker()() as session:
            await session.execute(text("SELECT 1"))
        health.services["database"] = "healthy"
    except Exception as e:
        logger.warning(f"Database health check failed: {e}")
        health.status = "degraded"
        health.services["database"] = "unhealthy"

    try:
        from permsearch.services.retrieval import get_retriever

        healthy = await get_retriever().fuser.health_check()
        health.services["search"] = "healthy" if healthy else "unhealthy"
        if not healthy:
            health.status = "degraded"
    except Exception as e:
        logger.warning(f"Search health check failed: {e}")
        health.status = "degraded"
        health.services["search"] = "unhealthy"

    return health


@app.get("/metrics", tags=["Health"])
async def metrics():
    """Prometheus metrics"""
    if not settings.ENABLE_METRICS:
        return _error(status.HTTP_404_NOT_FOUND, "http_error", "Not Found")
    return Response(content=get_metrics(), media_type=CONTENT_TYPE_LATEST)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "permsearch.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="info",
    )
