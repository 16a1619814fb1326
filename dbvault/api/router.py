"""Master API router: includes all sub-routers."""

from fastapi import APIRouter

from .routes.backups import router as backups_router
from .routes.jobs import router as jobs_router
from .routes.schedules import router as schedules_router
from .routes.search import router as search_router
from .routes.webhooks import router as webhooks_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(jobs_router)
api_router.include_router(backups_router)
api_router.include_router(schedules_router)
api_router.include_router(webhooks_router)
api_router.include_router(search_router)
