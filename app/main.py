from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.api.v1.router import api_router
from app.core.exceptions import ServiceError
from app.database import init_db, async_session_factory
from app.jobs.scheduler import start_scheduler, shutdown_scheduler


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
    - Create tables when AUTO_CREATE_TABLES is set (migrations otherwise)
    - Start background scheduler (notification queue, consistency check)
    """
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    if settings.AUTO_CREATE_TABLES:
        await init_db()

    if settings.SCHEDULER_ENABLED:
        start_scheduler()

    yield

    # Shutdown
    shutdown_scheduler()
    logger.info("Shutting down...")


OPENAPI_TAGS = [
    {"name": "Goods Receipts", "description": "Receiving against purchase orders: quality check and approval into stock"},
    {"name": "Product Returns", "description": "Customer returns: inspection, approval, refund and restock"},
    {"name": "Inventory", "description": "Per-location stock, movement journal, reservations and consistency checks"},
]

API_DESCRIPTION = """
## Repair Shop Inventory API

Receiving and return workflows for a retail and repair business, posting
every stock change to a per-location inventory ledger.

### Authentication

All `/api/v1` endpoints require a JWT bearer token. The token subject is
recorded as the acting user.

### Error Codes

| Code | Description |
|------|-------------|
| 400 | Validation failed, invalid status change, over-receipt, over-refund, insufficient stock |
| 401 | Unauthorized - Invalid/expired token |
| 404 | Not Found - Resource doesn't exist |
| 409 | Conflict - Document already processed or awaiting confirmation |
| 500 | Internal Server Error |
"""

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=API_DESCRIPTION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=OPENAPI_TAGS,
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


def _error_body(request: Request, message: str, error_type: str) -> dict:
    return {
        "error": message,
        "type": error_type,
        "path": str(request.url.path),
        "method": request.method,
    }


@app.exception_handler(ServiceError)
async def service_exception_handler(request: Request, exc: ServiceError):
    """Business errors keep their own status code and message."""
    content = _error_body(request, exc.message, type(exc).__name__)
    for attribute in ("remaining", "available"):
        value = getattr(exc, attribute, None)
        if value is not None:
            content[attribute] = str(value)
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Anything unexpected is logged with its traceback and reported as 500."""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    error_message = str(exc) if settings.DEBUG else "Internal server error"
    return JSONResponse(status_code=500, content=_error_body(request, error_message, type(exc).__name__))


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
        }
    }

    try:
        async with async_session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
            health_status["checks"]["database"] = "connected"
    except Exception as e:
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"error: {str(e)}"

    if health_status["status"] == "unhealthy":
        return JSONResponse(status_code=503, content=health_status)

    return health_status


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint."""
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "redoc": "/redoc",
    }
