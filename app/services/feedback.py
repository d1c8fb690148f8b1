"""Feedback actions that raise notification events.

Each action commits its own writes (including the auto-subscription of the
acting principal) before dispatching, so a dispatch failure never undoes the
action.
"""

import logging
from datetime import datetime, timezone

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.feedback import (
    Board,
    ChangelogEntry,
    ChangelogEntryPost,
    Comment,
    Post,
    Principal,
    Vote,
)
from app.models.notifications import SubscriptionReason
from app.services import event as event_service
from app.services import subscription as subscription_service
from app.services.common import coerce_uuid

logger = logging.getLogger(__name__)

MAX_COMMENT_LENGTH = 5000


def _get_principal(db: Session, principal_id) -> Principal:
    principal = db.get(Principal, coerce_uuid(principal_id))
    if not principal:
        raise HTTPException(status_code=404, detail="Principal not found")
    return principal


def _get_post(db: Session, post_id) -> Post:
    post = db.get(Post, coerce_uuid(post_id))
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")
    return post


def create_post(db: Session, principal_id, board_id, title: str, content: str = "") -> Post:
    principal = _get_principal(db, principal_id)
    if not db.get(Board, coerce_uuid(board_id)):
        raise HTTPException(status_code=404, detail="Board not found")
    if not title or not title.strip():
        raise HTTPException(status_code=400, detail="Title is required")

    post = Post(
        board_id=coerce_uuid(board_id),
        principal_id=principal.id,
        title=title.strip(),
        content=content or "",
    )
    db.add(post)
    db.flush()
    subscription_service.subscribe_to_post(
        db, principal.id, post.id, SubscriptionReason.author, commit=False
    )
    db.commit()
    db.refresh(post)
    logger.info("Created post %s on board %s", post.id, board_id)

    event_service.dispatch_post_created(db, event_service.actor_for_principal(principal), post)
    return post


def change_post_status(db: Session, principal_id, post_id, new_status: str) -> Post:
    principal = _get_principal(db, principal_id)
    post = _get_post(db, post_id)
    if not new_status:
        raise HTTPException(status_code=400, detail="Status is required")

    previous_status = post.status_slug
    if previous_status == new_status:
        return post
    post.status_slug = new_status
    db.commit()
    db.refresh(post)
    logger.info("Post %s status %s -> %s", post.id, previous_status, new_status)

    event_service.dispatch_post_status_changed(
        db,
        event_service.actor_for_principal(principal),
        post,
        previous_status,
        new_status,
    )
    return post


def vote_on_post(db: Session, principal_id, post_id) -> bool:
    """Record a vote and subscribe the voter. Returns False if already voted."""
    principal = _get_principal(db, principal_id)
    post = _get_post(db, post_id)

    existing = db.scalars(
        select(Vote).where(Vote.post_id == post.id, Vote.principal_id == principal.id)
    ).first()
    if existing:
        return False

    db.add(Vote(post_id=post.id, principal_id=principal.id))
    post.vote_count = (post.vote_count or 0) + 1
    subscription_service.subscribe_to_post(
        db, principal.id, post.id, SubscriptionReason.vote, commit=False
    )
    db.commit()
    logger.info("Principal %s voted on post %s", principal.id, post.id)
    return True


def create_comment(
    db: Session,
    principal_id,
    post_id,
    content: str,
    parent_id=None,
    is_private: bool = False,
) -> Comment:
    principal = _get_principal(db, principal_id)
    post = _get_post(db, post_id)

    content = (content or "").strip()
    if not content:
        raise HTTPException(status_code=400, detail="Comment content is required")
    if len(content) > MAX_COMMENT_LENGTH:
        raise HTTPException(
            status_code=400,
            detail=f"Comment must be {MAX_COMMENT_LENGTH} characters or less",
        )
    if parent_id is not None:
        parent = db.get(Comment, coerce_uuid(parent_id))
        if not parent:
            raise HTTPException(status_code=404, detail="Parent comment not found")
        if parent.post_id != post.id:
            raise HTTPException(
                status_code=400, detail="Parent comment belongs to a different post"
            )
    if is_private and not principal.is_team_member:
        raise HTTPException(status_code=403, detail="Only team members can post private comments")

    comment = Comment(
        post_id=post.id,
        principal_id=principal.id,
        parent_id=coerce_uuid(parent_id),
        content=content,
        is_private=is_private,
        is_team_member=principal.is_team_member,
    )
    db.add(comment)
    db.flush()
    subscription_service.subscribe_to_post(
        db, principal.id, post.id, SubscriptionReason.comment, commit=False
    )
    db.commit()
    db.refresh(comment)
    logger.info("Created comment %s on post %s", comment.id, post.id)

    event_service.dispatch_comment_created(
        db, event_service.actor_for_principal(principal), comment, post
    )
    return comment


def publish_changelog(
    db: Session, principal_id, title: str, content: str = "", post_ids=None
) -> ChangelogEntry:
    principal = _get_principal(db, principal_id)
    if not title or not title.strip():
        raise HTTPException(status_code=400, detail="Title is required")

    posts = [_get_post(db, post_id) for post_id in post_ids or []]
    entry = ChangelogEntry(
        title=title.strip(),
        content=content or "",
        published_at=datetime.now(timezone.utc),
    )
    db.add(entry)
    db.flush()
    for post in posts:
        db.add(ChangelogEntryPost(changelog_entry_id=entry.id, post_id=post.id))
    db.commit()
    db.refresh(entry)
    logger.info("Published changelog %s linking %d post(s)", entry.id, len(posts))

    event_service.dispatch_changelog_published(
        db, event_service.actor_for_principal(principal), entry
    )
    return entry
