"""
FastAPI application entry point.
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from mine_quant.config import settings
from mine_quant.middleware.error_handler import ErrorHandlerMiddleware
from mine_quant.api.v1.routers import analyses
from mine_quant.infrastructure.external_api_client import get_api_client
from mine_quant.services.application.quantitative_service import get_session_registry

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

# Rate limiter
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[f"{settings.rate_limit_requests}/minute"],
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Log the effective configuration; on shutdown tear down open sessions and close the HTTP clients."""
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Compute service: {settings.compute_api_base_url}, "
                f"history service: {settings.history_api_base_url}")
    logger.info(f"Auto compute on load: {settings.auto_compute_on_load}")
    logger.info(f"Rate limit: {settings.rate_limit_requests} requests/minute")

    yield

    registry = get_session_registry()
    logger.info(f"Shutting down; closing {len(registry)} quantitative session(s)")
    registry.close_all()
    await get_api_client().close()


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    Quantitative Mine Block Analysis API

    This API turns mine block detections into volumetric (DEM-based)
    measurements and a canonical block table.

    ## Features

    - **Baseline loading**: Detection results from the compute service, the
      history proxy, or the stored analysis record, in that order
    - **Quantitative lifecycle**: Background compute with single-flight
      guarding, automatic one-time recompute of incomplete snapshots, and
      one-time persistence of every new snapshot
    - **Block reconciliation**: Merged and per-tile blocks joined with their
      volumetric metrics and imagery into one ordered table
    - **Grid hover**: Elevation/depth readout for any point of a block's DEM grid
    - **Robust Error Handling**: Automatic retries with exponential backoff for
      external API calls
    - **Rate Limiting**: Protects the API from abuse
    """,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# Add rate limiter to app state
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

# Add CORS middleware with configurable origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add global error handling middleware
app.add_middleware(ErrorHandlerMiddleware)

# Include routers
app.include_router(analyses.router, prefix="/api/v1")


@app.get("/", tags=["health"])
async def root():
    """
    Root endpoint for health check.

    Returns:
        Status message
    """
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.app_version,
    }


@app.get("/health", tags=["health"])
async def health_check():
    """Health status plus the number of open quantitative sessions."""
    return {
        "status": "healthy",
        "service": settings.app_name,
        "open_sessions": len(get_session_registry()),
    }
