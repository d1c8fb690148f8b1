import logging
import secrets
from datetime import datetime, timezone

from fastapi import HTTPException
from sqlalchemy import case, func, literal, select, update
from sqlalchemy.orm import Session

from app.config import settings
from app.models.feedback import Principal
from app.models.integrations import (
    HookDelivery,
    HookDeliveryStatus,
    Webhook,
    WebhookStatus,
)
from app.schemas.webhook import WebhookCreate, WebhookUpdate
from app.services.common import apply_ordering, apply_pagination, coerce_uuid
from app.services.encryption import encrypt_secret
from app.services.response import ListResponseMixin

logger = logging.getLogger(__name__)

MAX_WEBHOOKS = 25


def generate_webhook_secret() -> str:
    return f"whsec_{secrets.token_urlsafe(32)}"


def _board_ids(values) -> list[str] | None:
    if values is None:
        return None
    return [str(value) for value in values]


class Webhooks(ListResponseMixin):
    @staticmethod
    def create(db: Session, payload: WebhookCreate) -> tuple[Webhook, str]:
        """Create a webhook. Returns the row and the plaintext signing secret."""
        if payload.created_by and not db.get(Principal, coerce_uuid(payload.created_by)):
            raise HTTPException(status_code=404, detail="Creator not found")
        count = db.scalar(
            select(func.count(Webhook.id)).where(Webhook.deleted_at.is_(None))
        )
        if count >= MAX_WEBHOOKS:
            raise HTTPException(
                status_code=400,
                detail={
                    "code": "webhook_limit_reached",
                    "message": f"Maximum of {MAX_WEBHOOKS} webhooks allowed per workspace",
                },
            )
        secret = generate_webhook_secret()
        webhook = Webhook(
            url=payload.url,
            secret=encrypt_secret(secret),
            events=payload.events,
            board_ids=_board_ids(payload.board_ids),
            created_by=payload.created_by,
        )
        db.add(webhook)
        db.commit()
        db.refresh(webhook)
        logger.info("Created webhook %s", webhook.id)
        return webhook, secret

    @staticmethod
    def get(db: Session, webhook_id: str) -> Webhook:
        webhook = db.get(Webhook, coerce_uuid(webhook_id))
        if not webhook or webhook.deleted_at is not None:
            raise HTTPException(status_code=404, detail="Webhook not found")
        return webhook

    @staticmethod
    def list(
        db: Session,
        status: str | None,
        order_by: str,
        order_dir: str,
        limit: int,
        offset: int,
    ) -> list[Webhook]:
        query = db.query(Webhook).filter(Webhook.deleted_at.is_(None))
        if status is not None:
            query = query.filter(Webhook.status == WebhookStatus(status))
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {
                "url": Webhook.url,
                "created_at": Webhook.created_at,
            },
        )
        return apply_pagination(query, limit, offset).all()

    @staticmethod
    def update(db: Session, webhook_id: str, payload: WebhookUpdate) -> Webhook:
        webhook = Webhooks.get(db, webhook_id)
        data = payload.model_dump(exclude_unset=True)
        if "board_ids" in data:
            data["board_ids"] = _board_ids(data["board_ids"])
        for key, value in data.items():
            setattr(webhook, key, value)
        if data.get("status") == WebhookStatus.active:
            # Re-enabling starts a fresh failure streak
            webhook.failure_count = 0
            webhook.last_error = None
        db.commit()
        db.refresh(webhook)
        logger.info("Updated webhook %s", webhook.id)
        return webhook

    @staticmethod
    def rotate_secret(db: Session, webhook_id: str) -> tuple[Webhook, str]:
        webhook = Webhooks.get(db, webhook_id)
        secret = generate_webhook_secret()
        webhook.secret = encrypt_secret(secret)
        db.commit()
        db.refresh(webhook)
        logger.info("Rotated signing secret for webhook %s", webhook.id)
        return webhook, secret

    @staticmethod
    def delete(db: Session, webhook_id: str) -> None:
        webhook = Webhooks.get(db, webhook_id)
        webhook.deleted_at = datetime.now(timezone.utc)
        db.commit()
        logger.info("Soft-deleted webhook %s", webhook_id)


class HookDeliveries(ListResponseMixin):
    @staticmethod
    def get(db: Session, delivery_id: str) -> HookDelivery:
        delivery = db.get(HookDelivery, coerce_uuid(delivery_id))
        if not delivery:
            raise HTTPException(status_code=404, detail="Hook delivery not found")
        return delivery

    @staticmethod
    def list(
        db: Session,
        event_id: str | None,
        hook_type: str | None,
        status: str | None,
        order_by: str,
        order_dir: str,
        limit: int,
        offset: int,
    ) -> list[HookDelivery]:
        query = db.query(HookDelivery)
        if event_id is not None:
            query = query.filter(HookDelivery.event_id == coerce_uuid(event_id))
        if hook_type is not None:
            query = query.filter(HookDelivery.hook_type == hook_type)
        if status is not None:
            query = query.filter(HookDelivery.status == HookDeliveryStatus(status))
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {"created_at": HookDelivery.created_at},
        )
        return apply_pagination(query, limit, offset).all()


def record_webhook_success(db: Session, webhook_id) -> None:
    db.execute(
        update(Webhook)
        .where(Webhook.id == coerce_uuid(webhook_id))
        .values(
            failure_count=0,
            last_error=None,
            last_triggered_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()


def record_webhook_failure(db: Session, webhook_id, error: str | None) -> None:
    """Count a permanent delivery failure; disables the webhook at the threshold.

    The increment and the threshold check run in one UPDATE so concurrent
    failures cannot skip past the limit.
    """
    db.execute(
        update(Webhook)
        .where(Webhook.id == coerce_uuid(webhook_id))
        .values(
            failure_count=Webhook.failure_count + 1,
            last_error=error or "Unknown error",
            last_triggered_at=datetime.now(timezone.utc),
            status=case(
                (
                    Webhook.failure_count + 1 >= settings.webhook_max_failures,
                    literal(WebhookStatus.disabled, Webhook.__table__.c.status.type),
                ),
                else_=Webhook.status,
            ),
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()
    logger.warning("Recorded failure for webhook %s: %s", webhook_id, error)


webhooks = Webhooks()
hook_deliveries = HookDeliveries()
