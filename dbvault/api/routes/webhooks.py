"""Webhook registration routes: CRUD plus a test delivery."""

import json
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ...dependencies import get_app_config, get_db
from ...errors import NotFoundError, ValidationError
from ...models.webhook import WebhookRegistration
from ...notifications.dispatcher import SUPPORTED_EVENT_TYPES
from ...notifications.webhook import WebhookSender

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------
def _check_events(events: Optional[list[str]]) -> Optional[list[str]]:
    if events is None:
        return None
    unknown = sorted(set(events) - SUPPORTED_EVENT_TYPES)
    if unknown:
        raise ValueError(f"Unsupported events: {', '.join(unknown)}")
    return sorted(set(events))


def _check_url(url: Optional[str]) -> Optional[str]:
    if url is not None and not url.startswith(("http://", "https://")):
        raise ValueError("url must be an http(s) URL")
    return url


class WebhookCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    url: str
    secret: Optional[str] = None
    events: list[str] = Field(min_length=1)
    enabled: bool = True

    @field_validator("events")
    @classmethod
    def validate_events(cls, v):
        return _check_events(v)

    @field_validator("url")
    @classmethod
    def validate_url(cls, v):
        return _check_url(v)


class WebhookUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    url: Optional[str] = None
    secret: Optional[str] = None
    events: Optional[list[str]] = None
    enabled: Optional[bool] = None

    @field_validator("events")
    @classmethod
    def validate_events(cls, v):
        return _check_events(v)

    @field_validator("url")
    @classmethod
    def validate_url(cls, v):
        return _check_url(v)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _webhook_to_dict(hook: WebhookRegistration) -> dict:
    try:
        events = json.loads(hook.events_json) if hook.events_json else []
    except json.JSONDecodeError:
        events = []
    return {
        "id": hook.id,
        "name": hook.name,
        "url": hook.url,
        "has_secret": bool(hook.secret),
        "events": events,
        "enabled": hook.enabled,
        "created_at": hook.created_at.isoformat() if hook.created_at else None,
        "updated_at": hook.updated_at.isoformat() if hook.updated_at else None,
    }


async def _load(db: AsyncSession, webhook_id: int) -> WebhookRegistration:
    result = await db.execute(
        select(WebhookRegistration).where(WebhookRegistration.id == webhook_id)
    )
    hook = result.scalar_one_or_none()
    if hook is None:
        raise NotFoundError("Webhook not found", webhook_id=webhook_id)
    return hook


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------
@router.get("")
async def list_webhooks(db: AsyncSession = Depends(get_db)):
    result = await db.execute(
        select(WebhookRegistration).order_by(WebhookRegistration.created_at.desc())
    )
    return [_webhook_to_dict(h) for h in result.scalars().all()]


@router.get("/events")
async def list_supported_events():
    return sorted(SUPPORTED_EVENT_TYPES)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_webhook(body: WebhookCreate, db: AsyncSession = Depends(get_db)):
    hook = WebhookRegistration(
        name=body.name,
        url=body.url,
        secret=body.secret or None,
        events_json=json.dumps(body.events),
        enabled=body.enabled,
    )
    db.add(hook)
    await db.commit()
    await db.refresh(hook)
    return _webhook_to_dict(hook)


@router.get("/{webhook_id}")
async def get_webhook(webhook_id: int, db: AsyncSession = Depends(get_db)):
    return _webhook_to_dict(await _load(db, webhook_id))


@router.patch("/{webhook_id}")
async def update_webhook(webhook_id: int, body: WebhookUpdate, db: AsyncSession = Depends(get_db)):
    hook = await _load(db, webhook_id)
    changes = body.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError("No fields to update")

    if "events" in changes:
        if not changes["events"]:
            raise ValidationError("events must not be empty")
        hook.events_json = json.dumps(changes.pop("events"))
    if "secret" in changes:
        # Empty string clears the secret
        hook.secret = changes.pop("secret") or None
    for field_name, value in changes.items():
        if value is not None:
            setattr(hook, field_name, value)
    hook.updated_at = datetime.now(timezone.utc).replace(tzinfo=None)

    await db.commit()
    await db.refresh(hook)
    return _webhook_to_dict(hook)


@router.delete("/{webhook_id}")
async def delete_webhook(webhook_id: int, db: AsyncSession = Depends(get_db)):
    hook = await _load(db, webhook_id)
    await db.delete(hook)
    await db.commit()
    return {"deleted": webhook_id}


@router.post("/{webhook_id}/test")
async def test_webhook(webhook_id: int, db: AsyncSession = Depends(get_db)):
    """Send a signed test event to the registration, regardless of its subscriptions."""
    hook = await _load(db, webhook_id)
    sender = WebhookSender(timeout=get_app_config().webhook_timeout_seconds)
    result = await sender.send(
        hook.url,
        "webhook_test",
        {"message": "Test webhook from dbvault", "webhook_id": hook.id, "name": hook.name},
        secret=hook.secret,
    )
    result.webhook_id = hook.id
    return asdict(result)
