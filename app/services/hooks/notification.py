import logging

from app.schemas.events import (
    ChangelogPublishedEvent,
    CommentCreatedEvent,
    EventData,
    EventType,
    PostStatusChangedEvent,
)
from app.services.common import coerce_uuid
from app.services.hooks.base import HookHandler, HookResult
from app.services.notification import notifications

logger = logging.getLogger(__name__)


def build_notification(event: EventData, config: dict) -> dict:
    """Columns shared by every recipient's in-app notification for ``event``."""
    match event:
        case PostStatusChangedEvent():
            return {
                "type": "post_status_changed",
                "title": f"Status changed to {event.data.new_status}",
                "body": event.data.post.title,
                "post_id": event.data.post.id,
                "comment_id": None,
                "metadata_": {
                    "post_url": config.get("post_url"),
                    "board_slug": event.data.post.board_slug,
                    "previous_status": event.data.previous_status,
                    "new_status": event.data.new_status,
                },
            }
        case CommentCreatedEvent():
            commenter = config.get("commenter_name", "Someone")
            return {
                "type": "comment_created",
                "title": f"{commenter} commented on {event.data.post.title}",
                "body": config.get("comment_preview"),
                "post_id": event.data.post.id,
                "comment_id": event.data.comment.id,
                "metadata_": {
                    "post_url": config.get("post_url"),
                    "board_slug": event.data.post.board_slug,
                    "is_team_member": bool(config.get("is_team_member")),
                },
            }
        case ChangelogPublishedEvent():
            return {
                "type": "changelog_published",
                "title": f"Shipped: {event.data.changelog.title}",
                "body": event.data.changelog.content_preview,
                "post_id": None,
                "comment_id": None,
                "metadata_": {
                    "changelog_id": str(event.data.changelog.id),
                    "changelog_url": config.get("changelog_url"),
                },
            }
        case _:
            raise TypeError(f"No in-app notification for {event.type}")


class NotificationHook(HookHandler):
    """Writes one in-app notification per target principal."""

    hook_type = "notification"
    supported_events = frozenset(
        {
            EventType.post_status_changed,
            EventType.comment_created,
            EventType.changelog_published,
        }
    )

    def __init__(self, session_factory=None):
        self._session_factory = session_factory

    def execute(self, event: EventData, target: dict, config: dict) -> HookResult:
        principal_ids = target.get("principal_ids") or []
        if not principal_ids:
            return HookResult.ok()

        shared = build_notification(event, config)
        rows = [
            {"principal_id": coerce_uuid(pid), **shared} for pid in principal_ids
        ]

        if self._session_factory is None:
            from app.db import SessionLocal

            session_factory = SessionLocal
        else:
            session_factory = self._session_factory
        db = session_factory()
        try:
            notifications.create_batch(db, rows)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
        return HookResult.ok()
