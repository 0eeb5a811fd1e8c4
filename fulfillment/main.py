from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from fulfillment.config import settings
from fulfillment.api.v1.router import api_router
from fulfillment.core.exceptions import FulfillmentError
from fulfillment.database import init_db, async_session_factory
from fulfillment.logging_config import configure_logging


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    - Configure logging
    - Create tables when running against a development SQLite database
    """
    # Startup
    configure_logging(settings.LOG_LEVEL)
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    if settings.is_sqlite:
        await init_db()

    yield

    # Shutdown
    logger.info("Shutting down...")


# OpenAPI Tags with detailed descriptions
OPENAPI_TAGS = [
    {"name": "Products", "description": "Merchant product catalogue, SKU generation and bulk import"},
    {"name": "Warehouses", "description": "Warehouse management and deletion with stock migration"},
    {"name": "Stock", "description": "Per-warehouse stock allocations, safety stock and transfers"},
    {"name": "Orders", "description": "Order lifecycle, logistics assignment and bulk import"},
    {"name": "Audit Logs", "description": "Append-only record of every mutation"},
]

API_DESCRIPTION = """
## Fulfillment Back-Office API

Multi-tenant fulfillment service for merchants, logistics staff and admins.

### Caller identity

Authentication happens upstream. Every request carries the caller as
`X-User-Id`, `X-User-Role` (ADMIN, MERCHANT, MERCHANT_STAFF, LOGISTICS)
and, for merchants, `X-Business-Id`.

### Error Codes

| Code | Description |
|------|-------------|
| 400 | Validation failed |
| 401 | Missing or malformed caller identity |
| 403 | Role or tenant does not allow the operation |
| 404 | Not Found - Resource doesn't exist |
| 409 | Conflict - live dependents or reused identifiers |
| 422 | Request body invalid, or SKU/code generation exhausted |
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
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API router
app.include_router(api_router)


@app.exception_handler(FulfillmentError)
async def fulfillment_exception_handler(request: Request, exc: FulfillmentError):
    """Map domain errors to their HTTP status with the {error, kind, details} body."""
    if exc.status_code >= 500:
        logger.error(f"{exc.kind} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Unexpected errors: log the traceback, return a bare 500."""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    content = {"error": "Internal server error"}
    if settings.DEBUG:
        content["type"] = type(exc).__name__
        content["detail"] = str(exc)
    return JSONResponse(status_code=500, content=content)


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

    # Check database connectivity
    try:
        async with async_session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
            health_status["checks"]["database"] = "connected"
    except Exception as e:
        logger.warning(f"Health check database error: {e}")
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"error: {str(e)}"

    # Return 503 if unhealthy
    if health_status["status"] == "unhealthy":
        return JSONResponse(status_code=503, content=health_status)

    return health_status
