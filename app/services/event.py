"""Build domain events and fan them out to hooks.

``dispatch_*`` helpers are called by domain actions after their own commit.
They resolve targets and enqueue one ``run_hook`` job per target, and never
raise: a failed dispatch is logged and counted but does not fail the action
that triggered it.
"""

import logging
from typing import Callable

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.models.feedback import Board, ChangelogEntry, Comment, Post, Principal
from app.models.integrations import HookDelivery, HookDeliveryStatus
from app.observability import (
    EVENT_DISPATCH_FAILURES,
    EVENTS_DISPATCHED,
    HOOK_TARGETS_ENQUEUED,
)
from app.schemas.events import (
    ChangelogPublishedData,
    ChangelogPublishedEvent,
    ChangelogSnapshot,
    CommentCreatedData,
    CommentCreatedEvent,
    CommentSnapshot,
    EventActor,
    EventData,
    EventType,
    PostCreatedData,
    PostCreatedEvent,
    PostRef,
    PostSnapshot,
    PostStatusChangedData,
    PostStatusChangedEvent,
    ServiceActor,
    UserActor,
    serialize_event,
)
from app.services.common import coerce_uuid
from app.services.hooks.base import HookTarget
from app.services.hooks.utils import strip_html, truncate
from app.services.targets import get_hook_targets

logger = logging.getLogger(__name__)

CHANGELOG_PREVIEW_LENGTH = 300


def build_event_actor(
    principal_id,
    user_id=None,
    email: str | None = None,
    display_name: str | None = None,
) -> EventActor:
    """A user actor when a user id is known, otherwise a service actor."""
    if user_id is not None:
        return UserActor(
            principal_id=coerce_uuid(principal_id),
            user_id=coerce_uuid(user_id),
            email=email,
        )
    return ServiceActor(principal_id=coerce_uuid(principal_id), display_name=display_name)


def actor_for_principal(principal: Principal) -> EventActor:
    user = principal.user
    return build_event_actor(
        principal.id,
        user_id=user.id if user else None,
        email=user.email if user else None,
        display_name=principal.display_name,
    )


def _board_slug(db: Session, post: Post) -> str:
    board = post.board or db.get(Board, post.board_id)
    return board.slug if board else ""


def _post_ref(db: Session, post: Post) -> PostRef:
    return PostRef(
        id=post.id,
        title=post.title,
        board_id=post.board_id,
        board_slug=_board_slug(db, post),
    )


def _author(principal: Principal | None) -> tuple[str | None, str | None]:
    if principal is None:
        return None, None
    user = principal.user
    name = (user.name if user else None) or principal.display_name
    return name, user.email if user else None


# ---------------------------------------------------------------------------
# Processing
# ---------------------------------------------------------------------------


def enqueue_hook_jobs(db: Session, event: EventData, targets: list[HookTarget]) -> int:
    """Record a pending delivery per target, commit, then queue the jobs.

    If the broker rejects a job, that delivery and every one after it is
    marked failed before the error propagates.
    """
    from app.tasks.hooks import run_hook

    pending = []
    for hook_target in targets:
        delivery = HookDelivery(
            event_id=event.id,
            event_type=event.type,
            hook_type=hook_target.type,
            target=hook_target.target,
            status=HookDeliveryStatus.pending,
        )
        db.add(delivery)
        pending.append((delivery, hook_target))
    db.flush()
    jobs = [(delivery.id, hook_target) for delivery, hook_target in pending]
    # Also commits unsubscribe tokens issued during resolution
    db.commit()

    payload = serialize_event(event)
    for index, (delivery_id, hook_target) in enumerate(jobs):
        try:
            run_hook.delay(
                delivery_id=str(delivery_id),
                hook_type=hook_target.type,
                event=payload,
                target=hook_target.target,
                config=hook_target.config,
            )
        except Exception as e:
            _fail_unqueued(db, [job_id for job_id, _ in jobs[index:]], e)
            raise
        HOOK_TARGETS_ENQUEUED.labels(hook_target.type).inc()
    return len(jobs)


def _fail_unqueued(db: Session, delivery_ids: list, error: Exception) -> None:
    logger.error(
        "Could not enqueue %d hook job(s), marking them failed: %s", len(delivery_ids), error
    )
    try:
        db.execute(
            update(HookDelivery)
            .where(HookDelivery.id.in_(delivery_ids))
            .values(
                status=HookDeliveryStatus.failed,
                error=f"Enqueue failed: {error}",
            )
        )
        db.commit()
    except Exception:
        logger.exception("Failed to mark unqueued hook deliveries as failed")
        db.rollback()


def process_event(
    db: Session,
    event: EventData,
    enqueue: Callable[[Session, EventData, list[HookTarget]], int] = enqueue_hook_jobs,
) -> int:
    """Resolve targets for ``event`` and enqueue them. Returns the job count."""
    targets = get_hook_targets(db, event)
    if not targets:
        logger.info("No hook targets for %s %s", event.type, event.id)
        EVENTS_DISPATCHED.labels(event.type).inc()
        return 0

    count = enqueue(db, event, targets)
    EVENTS_DISPATCHED.labels(event.type).inc()
    logger.info(
        "Enqueued %d hook job(s) for %s %s (%s)",
        count,
        event.type,
        event.id,
        ", ".join(sorted({t.type for t in targets})),
    )
    return count


def _rollback(db: Session, label) -> None:
    try:
        db.rollback()
    except Exception:
        logger.exception("Rollback after failed dispatch of %s raised", label)


def dispatch_event(db: Session, event: EventData) -> None:
    """Process an event inline. Never raises."""
    try:
        process_event(db, event)
    except Exception as e:
        logger.exception("Failed to dispatch event %s %s: %s", event.type, event.id, e)
        EVENT_DISPATCH_FAILURES.labels(event.type).inc()
        _rollback(db, event.id)


def publish_event(event: EventData) -> None:
    """Fire-and-forget variant: process the event on a worker instead of inline.

    Never raises. Logs failures and continues.
    """
    try:
        from app.tasks.events import process_event_task

        process_event_task.delay(event=serialize_event(event))
        logger.debug("Published event %s %s", event.type, event.id)
    except Exception as e:
        logger.exception("Failed to publish event %s: %s", event.type, e)
        EVENT_DISPATCH_FAILURES.labels(event.type).inc()


# ---------------------------------------------------------------------------
# Dispatch helpers
# ---------------------------------------------------------------------------



def _dispatch_built(
    db: Session, event_type: EventType, build: Callable[[], EventData]
) -> EventData | None:
    """Build the envelope and dispatch it. Never raises; returns None on a build failure."""
    try:
        event = build()
    except Exception as e:
        logger.exception("Failed to build %s event: %s", event_type.value, e)
        EVENT_DISPATCH_FAILURES.labels(event_type.value).inc()
        _rollback(db, event_type.value)
        return None
    dispatch_event(db, event)
    return event


def dispatch_post_created(db: Session, actor: EventActor, post: Post) -> EventData | None:
    def build() -> EventData:
        author_name, author_email = _author(post.author)
        ref = _post_ref(db, post)
        return PostCreatedEvent(
            actor=actor,
            data=PostCreatedData(
                post=PostSnapshot(
                    **ref.model_dump(),
                    content=post.content or "",
                    status_slug=post.status_slug,
                    author_name=author_name,
                    author_email=author_email,
                    vote_count=post.vote_count or 0,
                )
            ),
        )

    return _dispatch_built(db, EventType.post_created, build)


def dispatch_post_status_changed(
    db: Session,
    actor: EventActor,
    post: Post,
    previous_status: str,
    new_status: str,
) -> EventData | None:
    def build() -> EventData:
        return PostStatusChangedEvent(
            actor=actor,
            data=PostStatusChangedData(
                post=_post_ref(db, post),
                previous_status=previous_status,
                new_status=new_status,
            ),
        )

    return _dispatch_built(db, EventType.post_status_changed, build)


def dispatch_comment_created(
    db: Session, actor: EventActor, comment: Comment, post: Post
) -> EventData | None:
    def build() -> EventData:
        author_name, author_email = _author(db.get(Principal, comment.principal_id))
        return CommentCreatedEvent(
            actor=actor,
            data=CommentCreatedData(
                comment=CommentSnapshot(
                    id=comment.id,
                    content=comment.content,
                    author_name=author_name,
                    author_email=author_email,
                    is_private=bool(comment.is_private),
                ),
                post=_post_ref(db, post),
            ),
        )

    return _dispatch_built(db, EventType.comment_created, build)


def dispatch_changelog_published(
    db: Session, actor: EventActor, changelog: ChangelogEntry
) -> EventData | None:
    def build() -> EventData:
        return ChangelogPublishedEvent(
            actor=actor,
            data=ChangelogPublishedData(
                changelog=ChangelogSnapshot(
                    id=changelog.id,
                    title=changelog.title,
                    content_preview=truncate(
                        strip_html(changelog.content), CHANGELOG_PREVIEW_LENGTH
                    ),
                    published_at=changelog.published_at,
                )
            ),
        )

    return _dispatch_built(db, EventType.changelog_published, build)
