"""
FastAPI application entry point.
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.config import settings
from app.api.dependencies import get_map_service
from app.api.rate_limit import limiter
from app.middleware.error_handler import ErrorHandlerMiddleware
from app.api.v1.routers import locations, sessions

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan context manager.

    Ingests the configured data sources once before serving, and closes
    the data source client on shutdown.
    """
    # Startup
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Log level: {settings.log_level}")
    logger.info(f"Sources: spreadsheet={settings.spreadsheet_source or '-'} "
                f"(sheet '{settings.spreadsheet_sheet_name}'), csv={settings.csv_source or '-'}")
    logger.info(f"Rate limit: {settings.rate_limit_requests} requests/minute")

    map_service = get_map_service()
    await map_service.load()
    for status in map_service.statuses:
        if not status.loaded:
            logger.warning(f"{status.kind} source unavailable: {status.message}")

    yield

    # Shutdown
    logger.info("Shutting down application...")
    await map_service.data_source.close()
    logger.info("Shutdown complete")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    Map API for citizen-science e-DNA sampling results

    This API turns e-DNA sampling spreadsheets into map-ready data: species
    detected per sampling point, read counts and environmental parameters.

    ## Features

    - **Ingestion**: Reads consolidated workbooks and single-site CSV files,
      tolerating column-name variants and skipping malformed rows
    - **Aggregation**: Merges duplicate species per date, per location and
      across selected locations; computes averages and the dominant taxon
    - **Declutter Layout**: Spreads markers of coincident sampling points on
      a zoom-dependent circle
    - **View Sessions**: Multi-select locations and step through sampling
      dates; every change returns the chart-ready breakdown
    - **Rate Limiting**: Protects the interaction endpoints from abuse

    ## Aggregation

    1. Rows are grouped by location (coordinates within ~11 m) and date
    2. Species with the same scientific and common name are summed
    3. The top 5 species are charted individually, the rest as "Others"
    4. Percentages are relative to all reads of the current view
    """,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# Add rate limiter to app state
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

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
app.include_router(locations.router, prefix="/api/v1")
app.include_router(sessions.router, prefix="/api/v1")


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
    """
    Health check endpoint.

    Returns:
        Health status
    """
    return {
        "status": "healthy",
        "service": settings.app_name,
    }
