from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.db import SessionLocal
from app.schemas.common import ListResponse
from app.schemas.webhook import (
    HookDeliveryRead,
    WebhookCreate,
    WebhookRead,
    WebhookSecretRead,
    WebhookUpdate,
)
from app.services.webhook import hook_deliveries, webhooks

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@router.post("", response_model=WebhookSecretRead, status_code=status.HTTP_201_CREATED)
def create_webhook(payload: WebhookCreate, db: Session = Depends(get_db)):
    webhook, secret = webhooks.create(db, payload)
    return {"webhook": webhook, "secret": secret}


@router.get("", response_model=ListResponse[WebhookRead])
def list_webhooks(
    webhook_status: str | None = Query(default=None, alias="status"),
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=25, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return webhooks.list_response(
        db,
        webhook_status,
        order_by,
        order_dir,
        limit,
        offset,
    )


@router.get("/deliveries", response_model=ListResponse[HookDeliveryRead])
def list_deliveries(
    event_id: str | None = None,
    hook_type: str | None = None,
    delivery_status: str | None = Query(default=None, alias="status"),
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=25, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return hook_deliveries.list_response(
        db,
        event_id,
        hook_type,
        delivery_status,
        order_by,
        order_dir,
        limit,
        offset,
    )


@router.get("/deliveries/{delivery_id}", response_model=HookDeliveryRead)
def get_delivery(delivery_id: str, db: Session = Depends(get_db)):
    return hook_deliveries.get(db, delivery_id)


@router.get("/{webhook_id}", response_model=WebhookRead)
def get_webhook(webhook_id: str, db: Session = Depends(get_db)):
    return webhooks.get(db, webhook_id)


@router.patch("/{webhook_id}", response_model=WebhookRead)
def update_webhook(
    webhook_id: str,
    payload: WebhookUpdate,
    db: Session = Depends(get_db),
):
    return webhooks.update(db, webhook_id, payload)


@router.post("/{webhook_id}/rotate-secret", response_model=WebhookSecretRead)
def rotate_webhook_secret(webhook_id: str, db: Session = Depends(get_db)):
    webhook, secret = webhooks.rotate_secret(db, webhook_id)
    return {"webhook": webhook, "secret": secret}


@router.delete("/{webhook_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_webhook(webhook_id: str, db: Session = Depends(get_db)):
    webhooks.delete(db, webhook_id)
