"""Resolve the hook targets an event fans out to.

Workspace context is read once per event and handed to every resolver.
Resolution never raises: a failure is logged and the event gets no targets.
"""

import logging
from typing import assert_never

from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from app.models.feedback import ChangelogEntryPost, Principal, PrincipalRole
from app.models.integrations import (
    Integration,
    IntegrationEventMapping,
    IntegrationStatus,
    Webhook,
    WebhookStatus,
)
from app.models.notifications import UnsubscribeAction
from app.schemas.events import (
    ChangelogPublishedEvent,
    CommentCreatedEvent,
    EventActor,
    EventData,
    EventType,
    PostCreatedEvent,
    PostStatusChangedEvent,
    ServiceActor,
    UserActor,
)
from app.schemas.subscription import (
    NotificationEventType,
    NotificationPreferencesData,
    Subscriber,
)
from app.services import subscription as subscription_service
from app.services import unsubscribe as unsubscribe_service
from app.services.encryption import SecretsError, decrypt_secret, decrypt_secrets
from app.services.hook_context import HookContext, build_hook_context
from app.services.hooks.base import HookTarget
from app.services.hooks.utils import (
    build_post_url,
    resolve_commenter_name,
    strip_html,
    truncate,
)

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 200


def notification_event_type(event_type: EventType) -> NotificationEventType | None:
    """Which subscription flag an event is filtered on, if it notifies subscribers."""
    match event_type:
        case EventType.post_status_changed | EventType.changelog_published:
            return "status_change"
        case EventType.comment_created:
            return "comment"
        case EventType.post_created:
            return None
        case _:
            assert_never(event_type)


def should_send_email(event_type: EventType, prefs: NotificationPreferencesData) -> bool:
    if prefs.email_muted:
        return False
    match event_type:
        case EventType.post_status_changed | EventType.changelog_published:
            return prefs.email_status_change
        case EventType.comment_created:
            return prefs.email_new_comment
        case EventType.post_created:
            return False
        case _:
            assert_never(event_type)


def is_private_comment(event: EventData) -> bool:
    return isinstance(event, CommentCreatedEvent) and event.data.comment.is_private


def extract_post_id(event: EventData):
    match event:
        case PostCreatedEvent() | PostStatusChangedEvent() | CommentCreatedEvent():
            return event.data.post.id
        case ChangelogPublishedEvent():
            return None
        case _:
            assert_never(event)


def extract_board_id(event: EventData) -> str | None:
    match event:
        case PostCreatedEvent() | PostStatusChangedEvent() | CommentCreatedEvent():
            return str(event.data.post.board_id)
        case ChangelogPublishedEvent():
            return None
        case _:
            assert_never(event)


def is_actor_subscriber(subscriber: Subscriber, actor: EventActor) -> bool:
    match actor:
        case ServiceActor():
            return False
        case UserActor():
            if subscriber.user_id == actor.user_id:
                return True
            return bool(actor.email) and subscriber.email == actor.email
        case _:
            assert_never(actor)


def _is_actor_team_member(db: Session, actor: EventActor) -> bool:
    role = db.scalar(select(Principal.role).where(Principal.id == actor.principal_id))
    return role is not None and role != PrincipalRole.user


def _filter_to_team_members(db: Session, subscribers: list[Subscriber]) -> list[Subscriber]:
    if not subscribers:
        return []
    team_ids = set(
        db.scalars(
            select(Principal.id).where(
                Principal.id.in_([s.principal_id for s in subscribers]),
                Principal.role != PrincipalRole.user,
            )
        ).all()
    )
    return [s for s in subscribers if s.principal_id in team_ids]


# ---------------------------------------------------------------------------
# Integrations
# ---------------------------------------------------------------------------


def _integration_targets(db: Session, event: EventData, context: HookContext) -> list[HookTarget]:
    # Private comments never leave the workspace
    if is_private_comment(event):
        return []

    rows = db.execute(
        select(
            Integration.id,
            Integration.integration_type,
            Integration.secrets,
            Integration.config,
            IntegrationEventMapping.action_config,
            IntegrationEventMapping.filters,
        )
        .join(Integration, IntegrationEventMapping.integration_id == Integration.id)
        .where(
            IntegrationEventMapping.event_type == event.type,
            IntegrationEventMapping.enabled.is_(True),
            Integration.status == IntegrationStatus.active,
        )
    ).all()
    if not rows:
        return []

    board_id = extract_board_id(event)
    seen: set[tuple[str, str]] = set()
    targets: list[HookTarget] = []
    for row in rows:
        board_ids = (row.filters or {}).get("board_ids") or []
        if board_ids and board_id and board_id not in [str(b) for b in board_ids]:
            continue

        channel_id = (row.action_config or {}).get("channel_id") or (row.config or {}).get(
            "channel_id"
        )
        if not channel_id:
            logger.warning("No channel configured for %s integration %s", row.integration_type, row.id)
            continue

        key = (row.integration_type, channel_id)
        if key in seen:
            continue
        seen.add(key)

        access_token = None
        if row.secrets:
            try:
                access_token = decrypt_secrets(row.secrets).get("access_token")
            except (SecretsError, ValueError):
                logger.error("Could not decrypt secrets for %s integration %s", row.integration_type, row.id)
                continue

        targets.append(
            HookTarget(
                type=row.integration_type,
                target={"channel_id": channel_id},
                config={"access_token": access_token, "root_url": context.portal_base_url},
            )
        )
    return targets


# ---------------------------------------------------------------------------
# Subscribers (email + in-app)
# ---------------------------------------------------------------------------


def _event_config(db: Session, event: EventData, context: HookContext) -> dict:
    """Event details shared by the email and in-app targets."""
    root_url = context.portal_base_url
    match event:
        case PostStatusChangedEvent():
            post = event.data.post
            return {
                "post_id": str(post.id),
                "post_title": post.title,
                "board_slug": post.board_slug,
                "post_url": build_post_url(root_url, post.board_slug, post.id),
                "previous_status": event.data.previous_status,
                "new_status": event.data.new_status,
            }
        case CommentCreatedEvent():
            post, comment = event.data.post, event.data.comment
            return {
                "post_id": str(post.id),
                "post_title": post.title,
                "board_slug": post.board_slug,
                "post_url": f"{build_post_url(root_url, post.board_slug, post.id)}#comment-{comment.id}",
                "comment_id": str(comment.id),
                "commenter_name": resolve_commenter_name(comment.author_name, comment.author_email),
                "comment_preview": truncate(strip_html(comment.content), PREVIEW_LENGTH),
                "is_team_member": _is_actor_team_member(db, event.actor),
            }
        case ChangelogPublishedEvent():
            return {
                "changelog_title": event.data.changelog.title,
                "changelog_url": f"{root_url}/changelog",
                "content_preview": event.data.changelog.content_preview,
            }
        case PostCreatedEvent():
            return {}
        case _:
            assert_never(event)


def _recipient_targets(
    db: Session,
    event: EventData,
    context: HookContext,
    subscribers: list[Subscriber],
    token_post_id,
) -> list[HookTarget]:
    """Email targets for subscribers whose preferences allow it, plus one in-app target."""
    config = _event_config(db, event, context)
    targets: list[HookTarget] = []

    prefs = subscription_service.batch_get_notification_preferences(
        db, [s.principal_id for s in subscribers]
    )
    eligible = [
        s for s in subscribers if should_send_email(event.event_type, prefs[s.principal_id])
    ]
    if eligible:
        tokens = unsubscribe_service.batch_generate_unsubscribe_tokens(
            db,
            [
                {
                    "principal_id": s.principal_id,
                    "post_id": token_post_id,
                    "action": UnsubscribeAction.unsubscribe_post,
                }
                for s in eligible
            ],
            commit=False,
        )
        for subscriber in eligible:
            targets.append(
                HookTarget(
                    type="email",
                    target={
                        "email": subscriber.email,
                        "unsubscribe_url": unsubscribe_service.build_unsubscribe_url(
                            context.portal_base_url, tokens[subscriber.principal_id]
                        ),
                    },
                    config={"workspace_name": context.workspace_name, **config},
                )
            )

    targets.append(
        HookTarget(
            type="notification",
            target={"principal_ids": [str(s.principal_id) for s in subscribers]},
            config=config,
        )
    )
    return targets


def _subscriber_targets(db: Session, event: EventData, context: HookContext) -> list[HookTarget]:
    post_id = extract_post_id(event)
    notify_type = notification_event_type(event.event_type)
    if post_id is None or notify_type is None:
        return []

    subscribers = subscription_service.get_subscribers_for_event(db, post_id, notify_type)
    logger.info(
        "Found %d %s subscribers on post %s", len(subscribers), notify_type, post_id
    )
    subscribers = [s for s in subscribers if not is_actor_subscriber(s, event.actor)]
    if is_private_comment(event):
        subscribers = _filter_to_team_members(db, subscribers)
    if not subscribers:
        return []

    return _recipient_targets(db, event, context, subscribers, post_id)


def _changelog_subscriber_targets(
    db: Session, event: ChangelogPublishedEvent, context: HookContext
) -> list[HookTarget]:
    post_ids = db.scalars(
        select(ChangelogEntryPost.post_id)
        .where(ChangelogEntryPost.changelog_entry_id == event.data.changelog.id)
        .order_by(ChangelogEntryPost.post_id)
    ).all()
    if not post_ids:
        return []

    unique: dict = {}
    for post_id in post_ids:
        for subscriber in subscription_service.get_subscribers_for_event(
            db, post_id, "status_change"
        ):
            unique.setdefault(subscriber.principal_id, subscriber)
    logger.info(
        "Found %d unique subscribers across %d posts for changelog %s",
        len(unique),
        len(post_ids),
        event.data.changelog.id,
    )

    subscribers = [s for s in unique.values() if not is_actor_subscriber(s, event.actor)]
    if not subscribers:
        return []
    # Unsubscribe links point at the first linked post
    return _recipient_targets(db, event, context, subscribers, post_ids[0])


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------


def _webhook_targets(db: Session, event: EventData) -> list[HookTarget]:
    if is_private_comment(event):
        return []

    active = db.scalars(
        select(Webhook).where(
            and_(Webhook.status == WebhookStatus.active, Webhook.deleted_at.is_(None))
        )
    ).all()
    board_id = extract_board_id(event)

    targets: list[HookTarget] = []
    for webhook in active:
        if event.type not in (webhook.events or []):
            continue
        if webhook.board_ids:
            if not board_id or board_id not in [str(b) for b in webhook.board_ids]:
                continue
        try:
            secret = decrypt_secret(webhook.secret)
        except SecretsError:
            logger.error("Could not decrypt signing secret for webhook %s", webhook.id)
            continue
        targets.append(
            HookTarget(
                type="webhook",
                target={"url": webhook.url},
                config={"secret": secret, "webhook_id": str(webhook.id)},
            )
        )
    logger.info("Found %d webhook(s) for %s", len(targets), event.type)
    return targets


def get_hook_targets(db: Session, event: EventData) -> list[HookTarget]:
    """Every hook target for ``event``. Returns ``[]`` rather than raising."""
    try:
        context = build_hook_context(db)
        if context is None:
            logger.warning("Workspace not provisioned; no hook targets for %s", event.type)
            return []

        targets = _integration_targets(db, event, context)
        match event:
            case ChangelogPublishedEvent():
                targets.extend(_changelog_subscriber_targets(db, event, context))
            case PostStatusChangedEvent() | CommentCreatedEvent():
                targets.extend(_subscriber_targets(db, event, context))
            case PostCreatedEvent():
                pass
            case _:
                assert_never(event)
        targets.extend(_webhook_targets(db, event))
        return targets
    except Exception:
        logger.exception("Failed to resolve hook targets for %s %s", event.type, event.id)
        db.rollback()
        return []
