"""Post subscriptions and per-principal notification preferences.

Principals are auto-subscribed when they author, vote on or comment on a
post. A subscription row carries two independent flags:

- ``notify_comments``: notify when someone comments
- ``notify_status_changes``: notify when the post status changes

"all" is both flags, "status_only" is status changes only and unsubscribing
deletes the row.
"""

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from app.models.feedback import Post, Principal, User
from app.models.notifications import (
    NotificationPreference,
    PostSubscription,
    SubscriptionReason,
)
from app.schemas.subscription import (
    MemberSubscription,
    NotificationEventType,
    NotificationPreferencesData,
    NotificationPreferencesUpdate,
    Subscriber,
    SubscriptionLevel,
    SubscriptionStatus,
)
from app.services.common import coerce_uuid, dialect_insert

logger = logging.getLogger(__name__)

DEFAULT_NOTIFICATION_PREFERENCES = NotificationPreferencesData()


def _level_flags(level: SubscriptionLevel) -> tuple[bool, bool]:
    if level == "all":
        return True, True
    if level == "status_only":
        return False, True
    raise ValueError(f"Subscription level {level!r} has no flag mapping")


def _level_from_flags(notify_comments: bool, notify_status_changes: bool) -> SubscriptionLevel:
    if notify_comments and notify_status_changes:
        return "all"
    if notify_status_changes:
        return "status_only"
    # Both flags false is never written by this module; a row in that state
    # behaves as unsubscribed.
    return "none"


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------


def subscribe_to_post(
    db: Session,
    principal_id,
    post_id,
    reason: SubscriptionReason | str,
    level: SubscriptionLevel = "all",
    commit: bool = True,
) -> None:
    """Subscribe a principal to a post. Idempotent: an existing row is kept as-is.

    Pass ``commit=False`` to run inside the caller's open transaction.
    """
    notify_comments, notify_status_changes = _level_flags(level)
    now = datetime.now(timezone.utc)
    stmt = (
        dialect_insert(db, PostSubscription)
        .values(
            id=uuid.uuid4(),
            post_id=coerce_uuid(post_id),
            principal_id=coerce_uuid(principal_id),
            reason=SubscriptionReason(reason).value,
            notify_comments=notify_comments,
            notify_status_changes=notify_status_changes,
            created_at=now,
            updated_at=now,
        )
        .on_conflict_do_nothing(index_elements=["post_id", "principal_id"])
    )
    db.execute(stmt)
    if commit:
        db.commit()
    logger.debug("Subscribed principal %s to post %s (%s)", principal_id, post_id, reason)


def unsubscribe_from_post(db: Session, principal_id, post_id, commit: bool = True) -> None:
    db.execute(
        delete(PostSubscription).where(
            PostSubscription.principal_id == coerce_uuid(principal_id),
            PostSubscription.post_id == coerce_uuid(post_id),
        )
    )
    if commit:
        db.commit()
    logger.info("Unsubscribed principal %s from post %s", principal_id, post_id)


def update_subscription_level(
    db: Session, principal_id, post_id, level: SubscriptionLevel
) -> None:
    if level == "none":
        unsubscribe_from_post(db, principal_id, post_id)
        return

    notify_comments, notify_status_changes = _level_flags(level)
    now = datetime.now(timezone.utc)
    stmt = dialect_insert(db, PostSubscription).values(
        id=uuid.uuid4(),
        post_id=coerce_uuid(post_id),
        principal_id=coerce_uuid(principal_id),
        reason=SubscriptionReason.manual.value,
        notify_comments=notify_comments,
        notify_status_changes=notify_status_changes,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["post_id", "principal_id"],
        set_={
            "notify_comments": notify_comments,
            "notify_status_changes": notify_status_changes,
            "updated_at": now,
        },
    )
    db.execute(stmt)
    db.commit()
    logger.info(
        "Set subscription level %s for principal %s on post %s",
        level,
        principal_id,
        post_id,
    )


def get_subscription_status(db: Session, principal_id, post_id) -> SubscriptionStatus:
    subscription = db.scalars(
        select(PostSubscription).where(
            PostSubscription.principal_id == coerce_uuid(principal_id),
            PostSubscription.post_id == coerce_uuid(post_id),
        )
    ).first()

    if subscription is None:
        return SubscriptionStatus(
            subscribed=False,
            notify_comments=False,
            notify_status_changes=False,
            reason=None,
            level="none",
        )

    return SubscriptionStatus(
        subscribed=True,
        notify_comments=subscription.notify_comments,
        notify_status_changes=subscription.notify_status_changes,
        reason=subscription.reason,
        level=_level_from_flags(
            subscription.notify_comments, subscription.notify_status_changes
        ),
    )


def get_subscribers_for_event(
    db: Session, post_id, event_type: NotificationEventType
) -> list[Subscriber]:
    """Subscribers of a post who want notifications for ``event_type``."""
    if event_type == "comment":
        notify_column = PostSubscription.notify_comments
    elif event_type == "status_change":
        notify_column = PostSubscription.notify_status_changes
    else:
        raise ValueError(f"Unknown notification event type: {event_type}")

    rows = db.execute(
        select(
            PostSubscription.principal_id,
            PostSubscription.reason,
            PostSubscription.notify_comments,
            PostSubscription.notify_status_changes,
            Principal.user_id,
            User.email,
            User.name,
        )
        .join(Principal, PostSubscription.principal_id == Principal.id)
        .join(User, Principal.user_id == User.id)
        .where(
            PostSubscription.post_id == coerce_uuid(post_id),
            notify_column.is_(True),
        )
    ).all()

    return [
        Subscriber(
            principal_id=row.principal_id,
            user_id=row.user_id,
            email=row.email,
            name=row.name,
            reason=row.reason,
            notify_comments=row.notify_comments,
            notify_status_changes=row.notify_status_changes,
        )
        for row in rows
    ]


def get_member_subscriptions(db: Session, principal_id) -> list[MemberSubscription]:
    rows = db.execute(
        select(
            PostSubscription.id,
            PostSubscription.post_id,
            Post.title.label("post_title"),
            PostSubscription.reason,
            PostSubscription.notify_comments,
            PostSubscription.notify_status_changes,
            PostSubscription.created_at,
        )
        .join(Post, PostSubscription.post_id == Post.id)
        .where(PostSubscription.principal_id == coerce_uuid(principal_id))
        .order_by(PostSubscription.created_at.desc())
    ).all()
    return [MemberSubscription.model_validate(row) for row in rows]


# ---------------------------------------------------------------------------
# Notification preferences
# ---------------------------------------------------------------------------


def get_notification_preferences(db: Session, principal_id) -> NotificationPreferencesData:
    """Stored preferences, or defaults. Reading never creates a row."""
    prefs = db.scalars(
        select(NotificationPreference).where(
            NotificationPreference.principal_id == coerce_uuid(principal_id)
        )
    ).first()
    if prefs is None:
        return DEFAULT_NOTIFICATION_PREFERENCES.model_copy()
    return NotificationPreferencesData.model_validate(prefs)


def batch_get_notification_preferences(
    db: Session, principal_ids
) -> dict[uuid.UUID, NotificationPreferencesData]:
    """Preferences for many principals in a single query, defaults filled in."""
    ids = [coerce_uuid(pid) for pid in principal_ids]
    if not ids:
        return {}

    rows = db.scalars(
        select(NotificationPreference).where(NotificationPreference.principal_id.in_(ids))
    ).all()
    result = {
        row.principal_id: NotificationPreferencesData.model_validate(row) for row in rows
    }
    for pid in ids:
        if pid not in result:
            result[pid] = DEFAULT_NOTIFICATION_PREFERENCES.model_copy()
    return result


def update_notification_preferences(
    db: Session,
    principal_id,
    payload: NotificationPreferencesUpdate,
    commit: bool = True,
) -> NotificationPreferencesData:
    data = payload.model_dump(exclude_unset=True, exclude_none=True)
    prefs = db.scalars(
        select(NotificationPreference).where(
            NotificationPreference.principal_id == coerce_uuid(principal_id)
        )
    ).first()

    if prefs is None:
        defaults = DEFAULT_NOTIFICATION_PREFERENCES.model_dump()
        defaults.update(data)
        prefs = NotificationPreference(principal_id=coerce_uuid(principal_id), **defaults)
        db.add(prefs)
    else:
        for key, value in data.items():
            setattr(prefs, key, value)

    if commit:
        db.commit()
        db.refresh(prefs)
    else:
        db.flush()
    logger.info("Updated notification preferences for principal %s", principal_id)
    return NotificationPreferencesData.model_validate(prefs)
