"""Health check endpoint."""

import logging
import time
from datetime import datetime, timezone
from typing import Literal, Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field

from feedsync import __version__
from feedsync.api.dependencies import StorageDep
from feedsync.domain.ports import StoragePort
from feedsync.infrastructure.settings import settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["health"])


class DatabaseHealth(BaseModel):
    status: Literal["connected", "disconnected"]
    type: str
    response_time_ms: Optional[float] = Field(None, description="Database response time in milliseconds")


class HealthResponse(BaseModel):
    status: Literal["healthy", "unhealthy"]
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    version: str = __version__
    database: DatabaseHealth


def check_database_health(storage: StoragePort) -> DatabaseHealth:
    """Probe the store with a one-row history read."""
    db_type = settings.db_config.db_type
    start_time = time.time()
    result = storage.list_import_history(limit=1)
    if result.is_failure():
        logger.warning(f"Database health check failed: {result.error}")
        return DatabaseHealth(status="disconnected", type=db_type)
    return DatabaseHealth(
        status="connected",
        type=db_type,
        response_time_ms=round((time.time() - start_time) * 1000, 2),
    )


@router.get("/health", response_model=HealthResponse)
def health_check(storage: StorageDep) -> HealthResponse:
    """Report whether the API can reach its store."""
    database = check_database_health(storage)
    status = "healthy" if database.status == "connected" else "unhealthy"
    return HealthResponse(status=status, database=database)
