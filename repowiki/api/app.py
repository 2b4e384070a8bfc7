"""FastAPI application factory for RepoWiki.

Creates and configures the FastAPI app with CORS and all route modules
registered.
"""

import logging
import os

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .deps import get_db_manager

logger = logging.getLogger(__name__)


def create_app(
    db_manager,
    warehouse_manager,
    translation_manager=None,
    incremental_worker=None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        db_manager: DatabaseManager instance
        warehouse_manager: WarehouseManager instance
        translation_manager: TranslationTaskManager instance (optional)
        incremental_worker: IncrementalUpdateWorker instance (optional)

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title="RepoWiki API",
        description="Repository documentation pipeline",
        version="0.1.0",
    )

    origins = os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in origins.split(",") if o.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Store shared dependencies on app state
    app.state.db_manager = db_manager
    app.state.warehouse_manager = warehouse_manager
    app.state.translation_manager = translation_manager
    app.state.incremental_worker = incremental_worker

    # Register routers
    from .routes.warehouses import router as warehouses_router
    from .routes.translation import router as translation_router

    app.include_router(warehouses_router, prefix="/api")
    app.include_router(translation_router, prefix="/api")

    @app.get("/api/health")
    async def health_check(db=Depends(get_db_manager)):
        database = "ok" if db.ping() else "unavailable"
        return {"status": "ok", "service": "repowiki", "database": database}

    logger.info("FastAPI app created with all routes registered")
    return app
