"""dbvault: backup and restore job orchestration for hosted SQL databases.

FastAPI entry point with lifespan management.
"""

from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.router import api_router
from .config import get_config
from .database import close_engine, create_tables
from .dependencies import (
    get_actor_registry,
    get_backup_scheduler,
    get_catalog_service,
    get_job_store,
    get_object_store,
    get_platform_client,
    get_webhook_dispatcher,
)
from .middleware.error_handler import register_error_handlers
from .middleware.request_id import RequestIDMiddleware
from .utils.logging import get_logger, setup_logging

VERSION = "0.4.0"

config = get_config()
setup_logging(
    debug=config.debug,
    log_dir=config.log_dir,
    log_max_bytes=config.log_max_bytes,
    log_backup_count=config.log_backup_count,
)
logger = get_logger("dbvault.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    # --- Startup ---
    logger.info("dbvault_starting", host=config.host, port=config.port)

    await create_tables(config)
    await get_job_store().fail_interrupted_jobs()

    if get_platform_client() is None:
        logger.warning("platform_not_configured")
    if get_object_store() is None:
        logger.warning("object_storage_not_configured")
    get_actor_registry()
    if config.scheduler_enabled:
        get_backup_scheduler().start()

    logger.info("dbvault_started", app=config.app_name, storage=config.storage_backend)

    yield

    # --- Shutdown ---
    logger.info("dbvault_shutting_down")

    if config.scheduler_enabled:
        get_backup_scheduler().shutdown()

    try:
        await get_actor_registry().shutdown(timeout=10.0)
    except Exception as e:
        logger.error("actor_registry_stop_failed", error=str(e))

    try:
        await get_webhook_dispatcher().drain(timeout=5.0)
    except Exception as e:
        logger.warning("webhook_drain_failed", error=str(e))

    await close_engine()
    logger.info("dbvault_stopped")


app = FastAPI(
    title="DBVAULT",
    description="Backup and restore job orchestration for hosted SQL databases",
    version=VERSION,
    lifespan=lifespan,
)

register_error_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in config.cors_origins.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "X-Request-ID", "X-User-Email"],
)

# Request ID (added LAST so it runs FIRST)
app.add_middleware(RequestIDMiddleware)

app.include_router(api_router)


@app.get("/health")
async def health():
    """Liveness plus a summary of collaborator configuration."""
    status = await get_catalog_service().status()
    return {
        "name": config.app_name,
        "version": VERSION,
        "status": "operational",
        "backups": status,
    }


def main():
    uvicorn.run(
        "dbvault.main:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
    )


if __name__ == "__main__":
    main()
