import argparse
import logging
import sys

from .core.config import PipelineSettings
from .core.db import get_database_manager, wait_for_db


def setup_logging(log_level: str = "INFO") -> None:
    """Configure application logging."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )
    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.ERROR)
    logging.getLogger("sqlalchemy.engine.Engine").setLevel(logging.ERROR)
    logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.orm").setLevel(logging.WARNING)
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("psycopg2").setLevel(logging.WARNING)


logger = logging.getLogger(__name__)


def main():
    """Main entry point for RepoWiki."""
    parser = argparse.ArgumentParser(description="RepoWiki - Repository Documentation Pipeline")
    parser.add_argument(
        "--host",
        type=str,
        default="0.0.0.0",
        help="Interface for the API server"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8090,
        help="Port for the API server"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level"
    )
    parser.add_argument(
        "--no-workers",
        action="store_true",
        help="Serve the API only; do not start the background workers"
    )
    args = parser.parse_args()

    setup_logging(args.log_level)
    settings = PipelineSettings.from_env()
    logger.info(f"Starting RepoWiki - LLM: {settings.llm_provider}/{settings.llm_model}")

    # Database
    db_manager = get_database_manager(settings.database_url)
    if not wait_for_db(db_manager):
        logger.error("Database unavailable, exiting")
        sys.exit(1)
    db_manager.create_tables()

    # LLM
    from .core.model import configure_llm
    llm = configure_llm(settings)

    # Services
    from .core.changelog import ChangelogGenerator
    from .core.documents.builder import LLMContentGenerator, LLMDocumentBuilder
    from .core.git import GitService
    from .core.incremental import IncrementalAnalysisEngine, IncrementalUpdateWorker
    from .core.ingestion import IngestionCoordinator
    from .core.minimap import LLMMiniMapBuilder, MiniMapWorker
    from .core.translation import TranslationTaskManager
    from .core.warehouse import WarehouseManager

    timeout = settings.llm_timeout_seconds
    git_service = GitService(settings.repositories_path)
    content_generator = LLMContentGenerator(db_manager, llm=llm, llm_timeout=timeout)
    document_builder = LLMDocumentBuilder(
        db_manager, content_generator=content_generator, llm=llm, llm_timeout=timeout
    )
    changelog = ChangelogGenerator(db_manager, git_service, llm=llm, llm_timeout=timeout)
    engine = IncrementalAnalysisEngine(
        db_manager,
        git_service,
        changelog=changelog,
        content_generator=content_generator,
        llm=llm,
        llm_timeout=timeout,
    )

    translation_manager = TranslationTaskManager(
        db_manager, llm=llm, max_concurrent=settings.translation_max_concurrent, llm_timeout=timeout
    )
    translation_manager.reconcile_orphans()

    workers = [
        IngestionCoordinator(
            db_manager,
            git_service,
            document_builder,
            poll_interval=settings.ingestion_poll_interval,
            failure_backoff=settings.ingestion_failure_backoff,
        ),
        IncrementalUpdateWorker(
            db_manager,
            engine,
            enabled=settings.enable_incremental_update,
            update_interval_days=settings.update_interval_days,
            poll_interval=settings.incremental_poll_interval,
        ),
        MiniMapWorker(
            db_manager,
            LLMMiniMapBuilder(llm=llm, llm_timeout=timeout),
            poll_interval=settings.minimap_poll_interval,
        ),
    ]
    incremental_worker = workers[1]

    # Build FastAPI app
    from .api.app import create_app
    app = create_app(
        db_manager=db_manager,
        warehouse_manager=WarehouseManager(db_manager),
        translation_manager=translation_manager,
        incremental_worker=incremental_worker,
    )

    if args.no_workers:
        logger.info("Background workers disabled (--no-workers)")
    else:
        for worker in workers:
            worker.start()

    import uvicorn

    logger.info(f"Starting FastAPI server on http://{args.host}:{args.port}")
    print(f"\n  RepoWiki is running at: http://localhost:{args.port}")
    print(f"  API docs at: http://localhost:{args.port}/docs\n")

    try:
        uvicorn.run(
            app,
            host=args.host,
            port=args.port,
            log_level=args.log_level.lower(),
        )
    finally:
        for worker in workers:
            if worker.running:
                worker.stop()
        translation_manager.shutdown()
        logger.info(f"LLM usage: {llm.get_metrics()}")
        db_manager.dispose()
        logger.info("RepoWiki stopped")


if __name__ == "__main__":
    main()
