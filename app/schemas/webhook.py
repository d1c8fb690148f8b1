from __future__ import annotations

import ipaddress
from datetime import datetime
from typing import Any
from urllib.parse import urlparse
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.integrations import HookDeliveryStatus, WebhookStatus
from app.schemas.events import EventType

_EVENT_TYPES = {member.value for member in EventType}


def _validate_webhook_url(value: str) -> str:
    parsed = urlparse(value)
    if parsed.scheme.lower() not in {"http", "https"}:
        raise ValueError("Webhook URL must use http or https")
    if not parsed.hostname:
        raise ValueError("Webhook URL must include a host")
    if parsed.hostname.lower() == "localhost":
        raise ValueError("Webhook URL host cannot be loopback, link-local, or private")

    try:
        target_ip = ipaddress.ip_address(parsed.hostname)
    except ValueError:
        # Hostnames are re-checked against their resolved addresses at delivery time
        return value

    if (
        target_ip.is_private
        or target_ip.is_loopback
        or target_ip.is_link_local
        or target_ip.is_reserved
        or target_ip.is_unspecified
    ):
        raise ValueError("Webhook URL host cannot be loopback, link-local, or private")
    return value


def _validate_events(value: list[str]) -> list[str]:
    if not value:
        raise ValueError("At least one event is required")
    unknown = sorted(set(value) - _EVENT_TYPES)
    if unknown:
        raise ValueError(f"Unknown event types: {', '.join(unknown)}")
    return value


class WebhookCreate(BaseModel):
    url: str = Field(min_length=1, max_length=2048)
    events: list[str]
    board_ids: list[UUID] | None = None
    created_by: UUID | None = None

    @field_validator("url")
    @classmethod
    def validate_url(cls, value: str) -> str:
        return _validate_webhook_url(value)

    @field_validator("events")
    @classmethod
    def validate_events(cls, value: list[str]) -> list[str]:
        return _validate_events(value)


class WebhookUpdate(BaseModel):
    url: str | None = Field(default=None, max_length=2048)
    events: list[str] | None = None
    board_ids: list[UUID] | None = None
    status: WebhookStatus | None = None

    @field_validator("url")
    @classmethod
    def validate_url(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return _validate_webhook_url(value)

    @field_validator("events")
    @classmethod
    def validate_events(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return None
        return _validate_events(value)


class WebhookRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    url: str
    events: list[str]
    board_ids: list[UUID] | None = None
    status: WebhookStatus
    failure_count: int
    last_error: str | None = None
    last_triggered_at: datetime | None = None
    created_by: UUID | None = None
    created_at: datetime
    updated_at: datetime


class WebhookSecretRead(BaseModel):
    """Returned on create and rotate; the only time the plaintext secret is shown."""

    webhook: WebhookRead
    secret: str


class HookDeliveryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    event_id: UUID
    event_type: str
    hook_type: str
    target: dict[str, Any]
    status: HookDeliveryStatus
    attempts: int
    error: str | None = None
    external_id: str | None = None
    external_url: str | None = None
    last_attempt_at: datetime | None = None
    created_at: datetime
