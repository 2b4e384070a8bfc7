"""FastAPI dependencies for RepoWiki.

Shared services live on ``app.state`` and are handed to routes via
FastAPI's Depends() injection system.
"""

import logging

from fastapi import HTTPException, Request

logger = logging.getLogger(__name__)


async def get_db_manager(request: Request):
    """Get DatabaseManager from app state."""
    return request.app.state.db_manager


async def get_warehouse_manager(request: Request):
    """Get WarehouseManager from app state."""
    return request.app.state.warehouse_manager


async def get_translation_manager(request: Request):
    """Get TranslationTaskManager from app state."""
    manager = request.app.state.translation_manager
    if manager is None:
        raise HTTPException(status_code=503, detail="Translation service not available")
    return manager


async def get_incremental_worker(request: Request):
    """Get IncrementalUpdateWorker from app state."""
    worker = request.app.state.incremental_worker
    if worker is None:
        raise HTTPException(status_code=503, detail="Incremental updates not available")
    return worker
