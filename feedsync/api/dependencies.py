"""Dependency injection for the feedsync API.

Architecture:
    - One cached storage adapter per process, built by the composition root
    - A fresh ImportPipeline per request so reference caches never outlive a run
"""

import logging
from functools import lru_cache
from typing import Annotated

from fastapi import Depends

from feedsync.domain.pipeline import ImportPipeline
from feedsync.domain.ports import StorageError, StoragePort
from feedsync.infrastructure.settings import settings
from feedsync.main import create_pipeline, create_storage_adapter

logger = logging.getLogger(__name__)


@lru_cache()
def get_storage_adapter() -> StoragePort:
    """Get the storage adapter instance (cached).

    Returns:
        StoragePort: Configured storage adapter with its schema in place

    Raises:
        StorageError: If the schema cannot be initialized
        ValueError: If the database type is unsupported
    """
    storage = create_storage_adapter(settings.db_config)
    init = storage.initialize_schema()
    if init.is_failure():
        storage.close()
        raise StorageError(f"Failed to initialize schema: {init.error}", operation="initialize_schema")
    logger.debug(f"API storage adapter ready ({settings.db_config.db_type})")
    return storage


StorageDep = Annotated[StoragePort, Depends(get_storage_adapter)]


def get_pipeline(storage: StorageDep) -> ImportPipeline:
    return create_pipeline(storage, settings.import_config)


PipelineDep = Annotated[ImportPipeline, Depends(get_pipeline)]
