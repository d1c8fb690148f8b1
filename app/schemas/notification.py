from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class NotificationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: UUID
    principal_id: UUID
    type: str
    title: str
    body: str | None = None
    post_id: UUID | None = None
    comment_id: UUID | None = None
    metadata_: dict[str, Any] | None = Field(default=None, serialization_alias="metadata")
    read_at: datetime | None = None
    archived_at: datetime | None = None
    created_at: datetime


NotificationType = Literal["post_status_changed", "comment_created", "changelog_published"]


class MarkReadRequest(BaseModel):
    notification_ids: list[UUID] = Field(min_length=1, max_length=100)


class MarkReadResponse(BaseModel):
    marked: int


class UnreadCountResponse(BaseModel):
    count: int
