"""
FloodGuard: Urban Flood Risk Monitoring

Main FastAPI application entry point.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Dict, Any

from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog

from config import get_settings
from models.base import init_db, engine
from api import api_router
from flood_cycle import build_orchestrator
from schemas.common import HealthCheckResponse

# Configure logging
logging.basicConfig(format="%(message)s", level=logging.INFO)
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info("Starting FloodGuard", environment=settings.environment)

    # Initialize database
    try:
        await init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.warning(f"Database initialization skipped: {e}")
        logger.warning("API will start but database operations will fail until DB is configured")

    app.state.orchestrator = build_orchestrator()

    yield

    # Shutdown
    logger.info("Shutting down FloodGuard")
    await app.state.orchestrator.dispose()
    await engine.dispose()


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    ## FloodGuard: Urban Flood Risk Monitoring

    Fuses rain forecasts, drain and citizen incident reports and social posts
    into a per-zone flood risk, with tiered alerts and a live risk map.

    ### Features

    * **Weather Ingest** - Rain probability and amount per zone
    * **Incident Reports** - Drain and citizen reports, plus load simulation
    * **Social Signals** - Posts flagged by a language-model classifier or keyword heuristic
    * **Risk Fusion** - Weighted score per zone over a lookback window
    * **Monitoring Loop** - Manual or continuous cycles with per-stage ops logs

    ### Risk Tiers

    * **SAFE** - score below 0.4
    * **MEDIUM** - score 0.4 or above; ops alert
    * **HIGH** - score 0.7 or above; ops and public alerts
    """,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Exception handlers
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.detail,
            "status_code": exc.status_code,
            "path": str(request.url.path)
        }
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": str(exc) if settings.debug else None,
            "path": str(request.url.path)
        }
    )


# Health check endpoint
@app.get("/health", response_model=HealthCheckResponse, tags=["Health"])
async def health_check(request: Request):
    """Health check endpoint."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    return HealthCheckResponse(
        status="healthy",
        service=settings.app_name,
        version=settings.app_version,
        environment=settings.environment,
        loop_state=orchestrator.state.value if orchestrator else "unavailable",
        timestamp=datetime.utcnow(),
    )


# Root endpoint
@app.get("/", tags=["Root"])
async def root() -> Dict[str, Any]:
    """Root endpoint with API information."""
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "description": "Urban flood risk monitoring",
        "documentation": "/docs",
        "health_check": "/health",
        "api_prefix": settings.api_prefix
    }


# Include API router
app.include_router(api_router, prefix=settings.api_prefix)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        log_level="debug" if settings.debug else "info"
    )
