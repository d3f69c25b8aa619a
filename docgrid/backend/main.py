"""
FastAPI application for the document extraction service.

Provides endpoints for:
- Project and column management
- Document registration, processing and extracted values
- Collection membership and aggregation
"""

import logging

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_settings
from .database import init_db
from .models import HealthResponse
from .routers import collections, documents, projects
from .services.exceptions import (
    AIServiceError,
    AlreadyProcessingError,
    ColumnExistsError,
    ColumnInUseError,
    InvalidCollectionMemberError,
    NotFoundError,
    PipelineError,
    TransientNetworkError,
)
from .services.processing import get_document_processor

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    logger.info("Starting Document Extraction Service...")
    # Note: In production, use Alembic migrations instead of init_db()
    init_db()
    processor = get_document_processor()
    logger.info("Services initialized successfully")
    yield
    logger.info("Shutting down Document Extraction Service...")
    await processor.shutdown()


# Create FastAPI application
app = FastAPI(
    title="Document Extraction API",
    description="Document field extraction with AI, text-extraction fallbacks and collection aggregation",
    version="1.0.0",
    lifespan=lifespan,
    debug=get_settings().debug,
)

# Configure CORS for frontend development
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",  # Vite development server
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Health Endpoints
# =============================================================================


@app.get("/", response_model=HealthResponse)
async def root() -> HealthResponse:
    """Root endpoint - health check."""
    return HealthResponse(status="healthy", message="Document Extraction API is running")


@app.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(status="healthy", message="Service is healthy")


# =============================================================================
# Include Routers
# =============================================================================

app.include_router(projects.router)
app.include_router(documents.project_router)  # /projects/{id}/documents routes
app.include_router(documents.router)  # /documents/* routes
app.include_router(collections.project_router)
app.include_router(collections.router)


# =============================================================================
# Exception Handlers
# =============================================================================

_STATUS_BY_ERROR: list[tuple[type[PipelineError], int]] = [
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (AlreadyProcessingError, status.HTTP_409_CONFLICT),
    (ColumnInUseError, status.HTTP_409_CONFLICT),
    (ColumnExistsError, status.HTTP_409_CONFLICT),
    (InvalidCollectionMemberError, status.HTTP_400_BAD_REQUEST),
    (TransientNetworkError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (AIServiceError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError):
    """Map pipeline errors to HTTP responses carrying the error code."""
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            status_code = code
            break

    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "code": exc.code.value},
    )
