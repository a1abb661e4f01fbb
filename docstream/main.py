"""DocStream: Main FastAPI Application.

Coordinates organizational requests through role-gated, multi-stage
approval workflows, with an audit trail of every state change.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api import api_router
from .core import close_db, get_settings, init_db
from .schemas import ErrorResponse
from .services import (
    AlreadyTerminal,
    AuthorizationError,
    ConcurrentModification,
    ConfigurationError,
    IdentityNotFound,
    IncompleteApprovals,
    RequestNotFound,
    StorageUnavailable,
    ValidationError,
    WorkflowError,
)

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

# Most specific first; StageMismatch resolves through AuthorizationError
ERROR_STATUS_CODES: list[tuple[type[WorkflowError], int]] = [
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (IncompleteApprovals, status.HTTP_400_BAD_REQUEST),
    (AuthorizationError, status.HTTP_403_FORBIDDEN),
    (RequestNotFound, status.HTTP_404_NOT_FOUND),
    (IdentityNotFound, status.HTTP_404_NOT_FOUND),
    (AlreadyTerminal, status.HTTP_409_CONFLICT),
    (ConcurrentModification, status.HTTP_409_CONFLICT),
    (ConfigurationError, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (StorageUnavailable, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def status_code_for(exc: WorkflowError) -> int:
    for error_cls, code in ERROR_STATUS_CODES:
        if isinstance(exc, error_cls):
            return code
    return status.HTTP_400_BAD_REQUEST


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    logger.info(f"Starting {settings.app_name} {settings.app_version} ({settings.environment})")

    # Startup - skip init_db in production (tables are migrated)
    if settings.environment != "production":
        try:
            await init_db()
        except Exception as e:
            logger.warning(f"Could not initialize database: {e}")
    yield
    # Shutdown
    await close_db()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    ## DocStream API

    Multi-stage approval workflows for organizational requests.

    ### Key Features

    - **Stage Routing**: The routing attribute fixes the stage sequence at submission.
    - **Role-Gated Transitions**: Only the current stage's roles may approve it.
    - **Terminal States**: Declined and dispatched requests accept no further changes.
    - **Audit Trail**: Every state change is written to a hash-chained activity log.

    ### Authentication

    All endpoints require a valid JWT token in the `Authorization: Bearer <token>` header.
    """,
    openapi_url=f"{settings.api_prefix}/openapi.json",
    docs_url=f"{settings.api_prefix}/docs",
    redoc_url=f"{settings.api_prefix}/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    max_age=86400,
)


@app.exception_handler(WorkflowError)
async def workflow_exception_handler(request: Request, exc: WorkflowError):
    """Map workflow errors to HTTP status codes."""
    code = status_code_for(exc)
    if code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc}")
    else:
        logger.info(f"{exc.code} on {request.method} {request.url.path}: {exc}")

    return JSONResponse(
        status_code=code,
        content=ErrorResponse(
            error=exc.code,
            message=str(exc),
            details=[],
        ).model_dump(),
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    logger.exception(f"Unhandled exception on {request.method} {request.url.path}")

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            error="internal_error",
            message=f"An unexpected error occurred: {str(exc)[:200]}",
            details=[],
        ).model_dump(),
    )


# Health check endpoint
@app.get("/health", tags=["health"])
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": settings.app_version}


# Include API routes
app.include_router(api_router, prefix=settings.api_prefix)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "docstream.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
