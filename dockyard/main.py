from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from dockyard.config import settings
from dockyard.api.v1.router import api_router
from dockyard.core.exceptions import YardError
from dockyard.database import init_db, async_session_factory
from dockyard.jobs.scheduler import start_scheduler, shutdown_scheduler, get_job_status


logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    - Create missing tables
    - Start background scheduler (cache cleanup, notification retries)
    """
    # Startup
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    await init_db()

    start_scheduler()

    yield

    # Shutdown
    shutdown_scheduler()
    logger.info("Shutting down...")


API_DESCRIPTION = """
Dock appointment scheduling, trailer tracking and yard operations.

- **Appointments**: slot allocation on 30-minute dock granules, reschedule, cancel
- **Trailers**: gate arrival, check-in (dock or yard spot), check-out with dwell and detention
- **Yard moves**: relocation with atomic occupancy updates
- **Analytics**: snapshot, heuristic (advisory) optimization, utilization report

All requests carry an `X-Tenant-ID` header; `X-User-ID` is recorded on audit fields.
"""

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=API_DESCRIPTION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API router
app.include_router(api_router)


@app.exception_handler(YardError)
async def yard_error_handler(request: Request, exc: YardError):
    """Map domain errors to their HTTP status with a structured body."""
    logger.info(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.message,
            "type": type(exc).__name__,
            "details": exc.details,
            "path": str(request.url.path),
        }
    )


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint with database validation."""
    from sqlalchemy import text
    from datetime import datetime, timezone

    health_status = {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "database": "unknown"
        },
        "jobs": get_job_status(),
    }

    # Check database connectivity
    try:
        async with async_session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
            health_status["checks"]["database"] = "connected"
    except Exception as e:
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"error: {str(e)}"

    # Return 503 if unhealthy
    if health_status["status"] == "unhealthy":
        return JSONResponse(status_code=503, content=health_status)

    return health_status
