from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict

SubscriptionLevel = Literal["all", "status_only", "none"]
NotificationEventType = Literal["comment", "status_change"]


class SubscriptionStatus(BaseModel):
    subscribed: bool
    notify_comments: bool
    notify_status_changes: bool
    reason: str | None = None
    level: SubscriptionLevel


class Subscriber(BaseModel):
    principal_id: UUID
    user_id: UUID
    email: str
    name: str | None = None
    reason: str
    notify_comments: bool
    notify_status_changes: bool


class MemberSubscription(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    post_id: UUID
    post_title: str
    reason: str
    notify_comments: bool
    notify_status_changes: bool
    created_at: datetime


class SubscribeRequest(BaseModel):
    principal_id: UUID
    level: Literal["all", "status_only"] = "all"


class SubscriptionLevelUpdate(BaseModel):
    principal_id: UUID
    level: SubscriptionLevel


class NotificationPreferencesData(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    email_status_change: bool = True
    email_new_comment: bool = True
    email_muted: bool = False


class NotificationPreferencesUpdate(BaseModel):
    email_status_change: bool | None = None
    email_new_comment: bool | None = None
    email_muted: bool | None = None


class UnsubscribePost(BaseModel):
    title: str
    board_slug: str


class UnsubscribeResult(BaseModel):
    action: str
    principal_id: UUID
    post_id: UUID | None = None
    post: UnsubscribePost | None = None
