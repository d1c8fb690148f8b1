"""In-app inbox: the bell-icon feed a member sees for posts they follow.

Rows are written by the ``notification`` hook for activity on followed posts.
Everything here is scoped to the principal in the path.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.db import SessionLocal
from app.schemas.common import ListResponse
from app.schemas.notification import (
    MarkReadRequest,
    MarkReadResponse,
    NotificationRead,
    NotificationType,
    UnreadCountResponse,
)
from app.services.notification import notifications

router = APIRouter(
    prefix="/principals/{principal_id}/notifications", tags=["notifications"]
)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@router.get("", response_model=ListResponse[NotificationRead])
def list_inbox(
    principal_id: UUID,
    type: NotificationType | None = None,
    post_id: UUID | None = Query(default=None, description="Only notifications about this post"),
    unread_only: bool = False,
    include_archived: bool = False,
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return notifications.list_response(
        db,
        principal_id,
        type,
        post_id,
        unread_only,
        include_archived,
        order_by,
        order_dir,
        limit,
        offset,
    )


@router.get("/unread-count", response_model=UnreadCountResponse)
def unread_badge(principal_id: UUID, db: Session = Depends(get_db)):
    return {"count": notifications.unread_count(db, principal_id)}


@router.post("/read", response_model=MarkReadResponse)
def mark_read(principal_id: UUID, payload: MarkReadRequest, db: Session = Depends(get_db)):
    return {"marked": notifications.mark_read(db, principal_id, payload.notification_ids)}


@router.post("/read-all", response_model=MarkReadResponse)
def mark_all_read(
    principal_id: UUID,
    post_id: UUID | None = Query(
        default=None, description="Clear only this post's notifications, e.g. on opening it"
    ),
    db: Session = Depends(get_db),
):
    return {"marked": notifications.mark_all_read(db, principal_id, post_id)}


@router.get("/{notification_id}", response_model=NotificationRead)
def get_notification(principal_id: UUID, notification_id: UUID, db: Session = Depends(get_db)):
    return notifications.get(db, principal_id, notification_id)


@router.post("/{notification_id}/archive", response_model=NotificationRead)
def archive_notification(
    principal_id: UUID, notification_id: UUID, db: Session = Depends(get_db)
):
    return notifications.archive(db, principal_id, notification_id)
