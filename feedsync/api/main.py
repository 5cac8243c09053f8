"""FastAPI application for feedsync.

    uvicorn feedsync.api.main:app --port 8000
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from feedsync import __version__
from feedsync.api.dependencies import get_storage_adapter
from feedsync.api.middleware import setup_middleware
from feedsync.api.routes import health, imports
from feedsync.domain.ports import StorageError
from feedsync.infrastructure.logging_config import setup_logging
from feedsync.infrastructure.settings import settings

setup_logging(use_json=settings.json_logs, log_level=settings.log_level)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    logger.info(f"{settings.app_name} API starting up...")
    logger.info("API documentation available at /api/docs")
    logger.info(f"Database type: {settings.db_config.db_type}")
    yield
    logger.info(f"{settings.app_name} API shutting down...")
    if get_storage_adapter.cache_info().currsize:
        get_storage_adapter().close()
        get_storage_adapter.cache_clear()


app = FastAPI(
    title="feedsync API",
    description="Import clinical spreadsheets and EPS rosters into the canonical store",
    version=__version__,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Process-Time", "X-Request-ID"],
)

setup_middleware(app)

app.include_router(health.router)
app.include_router(imports.router)


@app.exception_handler(StorageError)
async def storage_unavailable(request: Request, exc: StorageError) -> JSONResponse:
    """The store could not be opened or its schema created; no import can run."""
    logger.error(f"Storage unavailable for {request.url.path}: {exc}")
    return JSONResponse(
        status_code=503,
        content={"error": "Storage unavailable", "detail": f"Operation '{exc.operation or 'unknown'}' failed"},
    )


@app.get("/")
async def root():
    return {
        "message": f"{settings.app_name} API",
        "version": __version__,
        "docs": "/api/docs",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "feedsync.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level=settings.log_level.lower(),
    )
