"""Backup schedule routes: one recurring plan per database."""

from fastapi import APIRouter, Depends, Response, status

from ...dependencies import get_schedule_service, get_user_email
from ...schedules.service import ScheduleInput, ScheduleService

router = APIRouter(prefix="/schedules", tags=["schedules"])


@router.get("")
async def list_schedules(service: ScheduleService = Depends(get_schedule_service)):
    return await service.list_schedules()


@router.post("")
async def save_schedule(
    body: ScheduleInput,
    response: Response,
    user_email: str = Depends(get_user_email),
    service: ScheduleService = Depends(get_schedule_service),
):
    """Create the database's schedule (201) or replace the existing one (200)."""
    schedule, created = await service.upsert(body, user_email=user_email)
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return schedule


@router.get("/{database_id}")
async def get_schedule(database_id: str, service: ScheduleService = Depends(get_schedule_service)):
    return await service.get_schedule(database_id)


@router.delete("/{database_id}")
async def delete_schedule(database_id: str, service: ScheduleService = Depends(get_schedule_service)):
    return await service.delete(database_id)


@router.put("/{database_id}/toggle")
async def toggle_schedule(database_id: str, service: ScheduleService = Depends(get_schedule_service)):
    return await service.toggle(database_id)
