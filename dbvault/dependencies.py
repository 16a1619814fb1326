"""FastAPI dependency injection providers and lazily built service singletons."""

from typing import Optional

from fastapi import Depends, Header

from .backup.actor import BackupRestoreActor
from .backup.catalog import BackupCatalogService
from .backup.registry import ActorRegistry
from .config import DbVaultConfig, get_config
from .database import get_session, get_session_factory
from .jobs.store import JobStore
from .notifications.dispatcher import WebhookDispatcher
from .notifications.webhook import WebhookSender
from .remote.client import PlatformClient
from .schedules.runner import BackupScheduler
from .schedules.service import ScheduleService
from .search.cross_database import CrossDatabaseSearch
from .storage.base import ObjectStore
from .utils.cache import TTLCache
from .utils.logging import get_logger

_dep_logger = get_logger("dependencies")

_config_instance: DbVaultConfig | None = None
_job_store = None
_object_store = None
_object_store_ready = False
_platform_client = None
_webhook_dispatcher = None
_actor_registry = None
_catalog_service = None
_search_service = None
_schedule_service = None
_backup_scheduler = None


def get_app_config() -> DbVaultConfig:
    """Get the application config singleton."""
    global _config_instance
    if _config_instance is None:
        _config_instance = get_config()
    return _config_instance


async def get_db(config: DbVaultConfig = Depends(get_app_config)):
    """Get an async database session."""
    async for session in get_session(config):
        yield session


async def get_user_email(x_user_email: Optional[str] = Header(default=None)) -> str:
    """Caller identity as forwarded by the authenticating proxy."""
    return x_user_email or "system"


def get_job_store() -> JobStore:
    global _job_store
    if _job_store is None:
        _job_store = JobStore(get_session_factory(get_app_config()))
    return _job_store


def get_object_store() -> Optional[ObjectStore]:
    """Build the configured object store, or None when storage is disabled."""
    global _object_store, _object_store_ready
    if not _object_store_ready:
        config = get_app_config()
        if config.storage_backend == "s3" and config.s3_bucket:
            from .storage.s3 import S3ObjectStore

            _object_store = S3ObjectStore(
                bucket=config.s3_bucket,
                endpoint_url=config.s3_endpoint_url,
                region=config.s3_region,
            )
        elif config.storage_backend == "local":
            from .storage.local import LocalObjectStore

            _object_store = LocalObjectStore(config.storage_local_dir)
        else:
            _dep_logger.warning("object_storage_disabled", backend=config.storage_backend)
            _object_store = None
        _object_store_ready = True
    return _object_store


def get_platform_client() -> Optional[PlatformClient]:
    global _platform_client
    if _platform_client is None:
        config = get_app_config()
        if not config.platform_configured:
            return None
        _platform_client = PlatformClient(
            account_id=config.platform_account_id,
            api_token=config.platform_api_token,
            api_base=config.platform_api_base,
            timeout=config.platform_timeout_seconds,
        )
    return _platform_client


def get_webhook_dispatcher() -> WebhookDispatcher:
    global _webhook_dispatcher
    if _webhook_dispatcher is None:
        config = get_app_config()
        _webhook_dispatcher = WebhookDispatcher(
            db_session_factory=get_session_factory(config),
            sender=WebhookSender(timeout=config.webhook_timeout_seconds),
        )
    return _webhook_dispatcher


def _build_actor(job_id: str) -> BackupRestoreActor:
    config = get_app_config()
    return BackupRestoreActor(
        job_id=job_id,
        job_store=get_job_store(),
        storage=get_object_store(),
        platform=get_platform_client(),
        dispatcher=get_webhook_dispatcher(),
        export_poll_interval=config.export_poll_interval_seconds,
        export_max_attempts=config.export_poll_max_attempts,
        ingest_poll_interval=config.ingest_poll_interval_seconds,
        ingest_max_attempts=config.ingest_poll_max_attempts,
        strict_digest=config.strict_digest_check,
    )


def get_actor_registry() -> ActorRegistry:
    global _actor_registry
    if _actor_registry is None:
        _actor_registry = ActorRegistry(_build_actor)
    return _actor_registry


def get_catalog_service() -> BackupCatalogService:
    global _catalog_service
    if _catalog_service is None:
        _catalog_service = BackupCatalogService(
            job_store=get_job_store(),
            storage=get_object_store(),
            registry=get_actor_registry(),
            dispatcher=get_webhook_dispatcher(),
            platform=get_platform_client(),
        )
    return _catalog_service


def get_search_service() -> Optional[CrossDatabaseSearch]:
    global _search_service
    if _search_service is None:
        config = get_app_config()
        platform = get_platform_client()
        if platform is None:
            return None
        _search_service = CrossDatabaseSearch(
            platform,
            delay=config.rate_limit_delay_ms / 1000,
            rows_per_table=config.search_rows_per_table,
            schema_cache=TTLCache(default_ttl=config.search_schema_cache_ttl, max_entries=2000),
        )
    return _search_service


def get_schedule_service() -> ScheduleService:
    global _schedule_service
    if _schedule_service is None:
        _schedule_service = ScheduleService(
            get_session_factory(get_app_config()),
            catalog=get_catalog_service(),
        )
    return _schedule_service


def get_backup_scheduler() -> BackupScheduler:
    global _backup_scheduler
    if _backup_scheduler is None:
        _backup_scheduler = BackupScheduler(
            get_schedule_service(),
            interval_seconds=get_app_config().schedule_check_interval_seconds,
        )
    return _backup_scheduler
