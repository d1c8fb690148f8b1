from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List

from fastapi import HTTPException
from sqlalchemy import func, insert, select, update
from sqlalchemy.orm import Session

from app.models.feedback import Principal
from app.models.notifications import InAppNotification
from app.services.common import apply_ordering, apply_pagination, coerce_uuid
from app.services.response import ListResponseMixin

logger = logging.getLogger(__name__)


def _require_principal(db: Session, principal_id):
    principal_uuid = coerce_uuid(principal_id)
    if not db.get(Principal, principal_uuid):
        raise HTTPException(status_code=404, detail="Principal not found")
    return principal_uuid


def _unread_filter(principal_uuid):
    return (
        InAppNotification.principal_id == principal_uuid,
        InAppNotification.read_at.is_(None),
        InAppNotification.archived_at.is_(None),
    )


class Notifications(ListResponseMixin):
    """A principal's in-app inbox. Every read or write is scoped to one principal."""

    @staticmethod
    def create_batch(db: Session, rows: list[dict], commit: bool = True) -> int:
        """Insert many notifications at once. Each row maps to InAppNotification columns."""
        if not rows:
            return 0
        db.execute(insert(InAppNotification), rows)
        if commit:
            db.commit()
        logger.info("Created %d in-app notifications", len(rows))
        return len(rows)

    @staticmethod
    def get(db: Session, principal_id: str, notification_id: str) -> InAppNotification:
        notification = db.get(InAppNotification, coerce_uuid(notification_id))
        # Someone else's notification is reported as missing
        if not notification or notification.principal_id != coerce_uuid(principal_id):
            raise HTTPException(status_code=404, detail="Notification not found")
        return notification

    @staticmethod
    def list(
        db: Session,
        principal_id: str,
        notification_type: str | None,
        post_id: str | None,
        unread_only: bool,
        include_archived: bool,
        order_by: str,
        order_dir: str,
        limit: int,
        offset: int,
    ) -> List[InAppNotification]:
        principal_uuid = _require_principal(db, principal_id)
        query = db.query(InAppNotification).filter(
            InAppNotification.principal_id == principal_uuid
        )
        if notification_type is not None:
            query = query.filter(InAppNotification.type == notification_type)
        if post_id is not None:
            query = query.filter(InAppNotification.post_id == coerce_uuid(post_id))
        if unread_only:
            query = query.filter(InAppNotification.read_at.is_(None))
        if not include_archived:
            query = query.filter(InAppNotification.archived_at.is_(None))
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {
                "created_at": InAppNotification.created_at,
                "read_at": InAppNotification.read_at,
            },
        )
        return apply_pagination(query, limit, offset).all()

    @staticmethod
    def mark_read(db: Session, principal_id: str, notification_ids: List[str]) -> int:
        """Mark the given notifications read. Ids owned by another principal are ignored."""
        principal_uuid = _require_principal(db, principal_id)
        if not notification_ids:
            return 0
        result = db.execute(
            update(InAppNotification)
            .where(
                InAppNotification.principal_id == principal_uuid,
                InAppNotification.id.in_([coerce_uuid(nid) for nid in notification_ids]),
                InAppNotification.read_at.is_(None),
            )
            .values(read_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        db.commit()
        logger.info("Marked %d notifications as read for principal %s", result.rowcount, principal_id)
        return result.rowcount

    @staticmethod
    def mark_all_read(db: Session, principal_id: str, post_id: str | None = None) -> int:
        """Clear the unread badge, optionally only for one post's notifications."""
        principal_uuid = _require_principal(db, principal_id)
        stmt = update(InAppNotification).where(*_unread_filter(principal_uuid))
        if post_id is not None:
            stmt = stmt.where(InAppNotification.post_id == coerce_uuid(post_id))
        result = db.execute(
            stmt.values(read_at=datetime.now(timezone.utc)).execution_options(
                synchronize_session=False
            )
        )
        db.commit()
        logger.info(
            "Marked all %d notifications as read for principal %s",
            result.rowcount,
            principal_id,
        )
        return result.rowcount

    @staticmethod
    def unread_count(db: Session, principal_id: str) -> int:
        principal_uuid = _require_principal(db, principal_id)
        return db.scalar(
            select(func.count(InAppNotification.id)).where(*_unread_filter(principal_uuid))
        )

    @staticmethod
    def archive(db: Session, principal_id: str, notification_id: str) -> InAppNotification:
        notification = Notifications.get(db, principal_id, notification_id)
        if notification.archived_at is None:
            notification.archived_at = datetime.now(timezone.utc)
            db.commit()
            db.refresh(notification)
            logger.info("Archived notification %s", notification_id)
        return notification


notifications = Notifications()
