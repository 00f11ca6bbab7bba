"""Main FastAPI application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.exc import InterfaceError, OperationalError

from libris.api.admin_routes import router as admin_router
from libris.api.auth_routes import router as auth_router
from libris.api.book_routes import router as books_router
from libris.api.borrowing_routes import router as borrowings_router
from libris.api.favorite_routes import router as favorites_router
from libris.api.message_routes import router as conversations_router
from libris.api.reading_routes import router as reading_router
from libris.api.task_routes import router as task_router
from libris.core.config import settings
from libris.domain.errors import LibraryError, TransientServiceError
from libris.infrastructure.database.connection import init_db

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting Libris application")
    await init_db()
    logger.info("Database initialized")
    yield
    logger.info("Shutting down Libris application")


app = FastAPI(
    title="Libris",
    description="Library lending backend: catalogue, borrowing lifecycle, fines and support chat",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LibraryError)
async def library_error_handler(request: Request, exc: LibraryError) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": exc.code},
        headers=headers,
    )


@app.exception_handler(OperationalError)
@app.exception_handler(InterfaceError)
async def database_unavailable_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Database unavailable during %s %s: %s", request.method, request.url.path, exc)
    error = TransientServiceError()
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": error.message, "error": error.code},
    )


app.include_router(auth_router)
app.include_router(books_router)
app.include_router(borrowings_router)
app.include_router(favorites_router)
app.include_router(conversations_router)
app.include_router(reading_router)
app.include_router(admin_router)
app.include_router(task_router)

if settings.storage_backend == "local":
    app.mount("/files", StaticFiles(directory=settings.storage_path, check_dir=False), name="files")


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
