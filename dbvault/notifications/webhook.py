"""Webhook sender: signed JSON delivery of job events."""

import hashlib
import hmac
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import httpx

from ..utils.logging import get_logger

logger = get_logger("notifications.webhook")

USER_AGENT = "dbvault-webhook/1.0"


@dataclass
class DeliveryResult:
    url: str
    success: bool
    status_code: Optional[int] = None
    error: Optional[str] = None
    webhook_id: Optional[int] = None


def sign_payload(body: bytes, secret: str) -> str:
    """Return the ``sha256=<hex>`` HMAC signature of the exact request body."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def build_body(event: str, data: dict, timestamp: Optional[datetime] = None) -> bytes:
    timestamp = timestamp or datetime.now(timezone.utc)
    envelope = {"event": event, "timestamp": timestamp.isoformat(), "data": data}
    return json.dumps(envelope, separators=(",", ":"), default=str).encode("utf-8")


class WebhookSender:
    """Posts event envelopes to webhook URLs.

    The body is serialized once so the signature covers exactly the bytes
    sent. Failures are logged and reported through ``DeliveryResult``,
    never raised.
    """

    def __init__(self, timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._timeout = timeout
        self._transport = transport

    async def send(
        self,
        url: str,
        event: str,
        data: dict,
        secret: Optional[str] = None,
    ) -> DeliveryResult:
        """Send one event to one URL.

        Args:
            url: The webhook endpoint URL.
            event: Event name, also sent as ``X-Webhook-Event``.
            data: Event payload placed under ``data``.
            secret: When set, adds ``X-Webhook-Signature``.
        """
        body = build_body(event, data)
        headers = {
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
            "X-Webhook-Event": event,
        }
        if secret:
            headers["X-Webhook-Signature"] = sign_payload(body, secret)

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(url, content=body, headers=headers)
        except Exception as exc:
            logger.error("webhook_send_error", url=url, webhook_event=event, error=str(exc))
            return DeliveryResult(url=url, success=False, error=str(exc))

        if response.is_success:
            logger.info("webhook_sent", url=url, webhook_event=event, status=response.status_code)
            return DeliveryResult(url=url, success=True, status_code=response.status_code)

        error = response.text[:200]
        logger.error(
            "webhook_http_error",
            url=url,
            webhook_event=event,
            status=response.status_code,
            body=error,
        )
        return DeliveryResult(url=url, success=False, status_code=response.status_code, error=error)
