"""Typed event envelopes.

Every domain event carries ``id``, ``timestamp``, ``actor``, ``type`` and a
type-specific ``data`` payload. ``EventData`` is a discriminated union on
``type`` so consumers can ``match`` on the concrete class and rely on the
type checker to flag unhandled members.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class EventType(enum.Enum):
    post_created = "post.created"
    post_status_changed = "post.status_changed"
    comment_created = "comment.created"
    changelog_published = "changelog.published"


# ---------------------------------------------------------------------------
# Actors
# ---------------------------------------------------------------------------


class UserActor(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["user"] = "user"
    principal_id: uuid.UUID
    user_id: uuid.UUID
    email: str | None = None


class ServiceActor(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["service"] = "service"
    principal_id: uuid.UUID
    display_name: str | None = None


EventActor = Annotated[Union[UserActor, ServiceActor], Field(discriminator="type")]


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


class PostRef(BaseModel):
    id: uuid.UUID
    title: str
    board_id: uuid.UUID
    board_slug: str


class PostSnapshot(PostRef):
    content: str = ""
    status_slug: str | None = None
    author_name: str | None = None
    author_email: str | None = None
    vote_count: int = 0


class CommentSnapshot(BaseModel):
    id: uuid.UUID
    content: str
    author_name: str | None = None
    author_email: str | None = None
    is_private: bool = False


class ChangelogSnapshot(BaseModel):
    id: uuid.UUID
    title: str
    content_preview: str = ""
    published_at: datetime | None = None


class PostCreatedData(BaseModel):
    post: PostSnapshot


class PostStatusChangedData(BaseModel):
    post: PostRef
    previous_status: str
    new_status: str


class CommentCreatedData(BaseModel):
    comment: CommentSnapshot
    post: PostRef


class ChangelogPublishedData(BaseModel):
    changelog: ChangelogSnapshot


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------


class _Envelope(BaseModel):
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    actor: EventActor

    @property
    def event_type(self) -> EventType:
        return EventType(self.type)  # type: ignore[attr-defined]


class PostCreatedEvent(_Envelope):
    type: Literal["post.created"] = "post.created"
    data: PostCreatedData


class PostStatusChangedEvent(_Envelope):
    type: Literal["post.status_changed"] = "post.status_changed"
    data: PostStatusChangedData


class CommentCreatedEvent(_Envelope):
    type: Literal["comment.created"] = "comment.created"
    data: CommentCreatedData


class ChangelogPublishedEvent(_Envelope):
    type: Literal["changelog.published"] = "changelog.published"
    data: ChangelogPublishedData


EventData = Annotated[
    Union[
        PostCreatedEvent,
        PostStatusChangedEvent,
        CommentCreatedEvent,
        ChangelogPublishedEvent,
    ],
    Field(discriminator="type"),
]

_event_adapter: TypeAdapter = TypeAdapter(EventData)


def parse_event(payload: dict) -> EventData:
    """Rebuild a typed envelope from its JSON form (as carried by the job queue)."""
    return _event_adapter.validate_python(payload)


def serialize_event(event: EventData) -> dict:
    return event.model_dump(mode="json")
