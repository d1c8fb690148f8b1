import logging
import secrets
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

from sqlalchemy import insert, select, update
from sqlalchemy.orm import Session

from app.config import settings
from app.models.feedback import Board, Post, Principal
from app.models.notifications import UnsubscribeAction, UnsubscribeToken
from app.schemas.subscription import (
    NotificationPreferencesUpdate,
    UnsubscribePost,
    UnsubscribeResult,
)
from app.services import subscription as subscription_service
from app.services.common import coerce_uuid

logger = logging.getLogger(__name__)


def _new_token() -> str:
    return secrets.token_urlsafe(32)


def _expiry() -> datetime:
    return datetime.now(timezone.utc) + timedelta(days=settings.unsubscribe_token_ttl_days)


def build_unsubscribe_url(base_url: str, token: str) -> str:
    return f"{base_url.rstrip('/')}/unsubscribe?{urlencode({'token': token})}"


def generate_unsubscribe_token(
    db: Session,
    principal_id,
    post_id,
    action: UnsubscribeAction | str,
    commit: bool = True,
) -> str:
    token = _new_token()
    db.add(
        UnsubscribeToken(
            token=token,
            principal_id=coerce_uuid(principal_id),
            post_id=coerce_uuid(post_id),
            action=UnsubscribeAction(action),
            expires_at=_expiry(),
        )
    )
    if commit:
        db.commit()
    else:
        db.flush()
    return token


def batch_generate_unsubscribe_tokens(
    db: Session, entries: list[dict], commit: bool = True
) -> dict:
    """Issue one token per entry with a single bulk insert.

    Each entry is ``{"principal_id", "post_id", "action"}``. Returns a map of
    principal id to token.
    """
    if not entries:
        return {}

    expires_at = _expiry()
    rows = [
        {
            "token": _new_token(),
            "principal_id": coerce_uuid(entry["principal_id"]),
            "post_id": coerce_uuid(entry.get("post_id")),
            "action": UnsubscribeAction(entry["action"]),
            "expires_at": expires_at,
        }
        for entry in entries
    ]
    db.execute(insert(UnsubscribeToken), rows)
    if commit:
        db.commit()
    return {row["principal_id"]: row["token"] for row in rows}


def process_unsubscribe_token(db: Session, token: str) -> UnsubscribeResult | None:
    """Consume a token and apply its action.

    Returns ``None`` for unknown, used or expired tokens. Consumption is a
    conditional update on ``used_at IS NULL``, so a token can only win once
    even when requests race.
    """
    record = db.scalars(
        select(UnsubscribeToken).where(UnsubscribeToken.token == token)
    ).first()
    if record is None:
        return None
    token_id = record.id
    principal_id = record.principal_id
    post_id = record.post_id
    action = record.action

    now = datetime.now(timezone.utc)
    claimed = db.execute(
        update(UnsubscribeToken)
        .where(
            UnsubscribeToken.id == token_id,
            UnsubscribeToken.used_at.is_(None),
            UnsubscribeToken.expires_at > now,
        )
        .values(used_at=now)
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount != 1:
        db.rollback()
        logger.info("Rejected used or expired unsubscribe token %s", token_id)
        return None

    principal = db.get(Principal, principal_id)
    if principal is None:
        db.commit()
        return None

    post_details = None
    if post_id is not None:
        row = db.execute(
            select(Post.title, Board.slug)
            .join(Board, Post.board_id == Board.id)
            .where(Post.id == post_id)
        ).first()
        if row is not None:
            post_details = UnsubscribePost(title=row.title, board_slug=row.slug)

    if action == UnsubscribeAction.unsubscribe_post:
        if post_id is not None:
            subscription_service.unsubscribe_from_post(
                db, principal_id, post_id, commit=False
            )
    elif action == UnsubscribeAction.unsubscribe_all:
        subscription_service.update_notification_preferences(
            db,
            principal_id,
            NotificationPreferencesUpdate(email_muted=True),
            commit=False,
        )

    db.commit()
    logger.info(
        "Processed unsubscribe token %s (%s) for principal %s",
        token_id,
        action.value,
        principal_id,
    )
    return UnsubscribeResult(
        action=action.value,
        principal_id=principal_id,
        post_id=post_id,
        post=post_details,
    )
