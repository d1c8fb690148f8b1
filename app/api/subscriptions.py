from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.db import SessionLocal
from app.models.feedback import Post, Principal
from app.models.notifications import SubscriptionReason
from app.schemas.subscription import (
    MemberSubscription,
    NotificationPreferencesData,
    NotificationPreferencesUpdate,
    SubscribeRequest,
    SubscriptionLevelUpdate,
    SubscriptionStatus,
)
from app.services import subscription as subscription_service

router = APIRouter(tags=["subscriptions"])


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _require(db: Session, post_id: UUID | None = None, principal_id: UUID | None = None):
    if post_id is not None and not db.get(Post, post_id):
        raise HTTPException(status_code=404, detail="Post not found")
    if principal_id is not None and not db.get(Principal, principal_id):
        raise HTTPException(status_code=404, detail="Principal not found")


@router.get("/posts/{post_id}/subscription", response_model=SubscriptionStatus)
def get_subscription(
    post_id: UUID, principal_id: UUID = Query(...), db: Session = Depends(get_db)
):
    _require(db, post_id=post_id)
    return subscription_service.get_subscription_status(db, principal_id, post_id)


@router.post("/posts/{post_id}/subscription", response_model=SubscriptionStatus)
def subscribe(post_id: UUID, payload: SubscribeRequest, db: Session = Depends(get_db)):
    _require(db, post_id=post_id, principal_id=payload.principal_id)
    subscription_service.subscribe_to_post(
        db, payload.principal_id, post_id, SubscriptionReason.manual, level=payload.level
    )
    return subscription_service.get_subscription_status(db, payload.principal_id, post_id)


@router.put("/posts/{post_id}/subscription", response_model=SubscriptionStatus)
def update_subscription(
    post_id: UUID, payload: SubscriptionLevelUpdate, db: Session = Depends(get_db)
):
    _require(db, post_id=post_id, principal_id=payload.principal_id)
    subscription_service.update_subscription_level(
        db, payload.principal_id, post_id, payload.level
    )
    return subscription_service.get_subscription_status(db, payload.principal_id, post_id)


@router.delete("/posts/{post_id}/subscription", response_model=SubscriptionStatus)
def unsubscribe(
    post_id: UUID, principal_id: UUID = Query(...), db: Session = Depends(get_db)
):
    _require(db, post_id=post_id)
    subscription_service.unsubscribe_from_post(db, principal_id, post_id)
    return subscription_service.get_subscription_status(db, principal_id, post_id)


@router.get("/subscriptions", response_model=list[MemberSubscription])
def list_subscriptions(principal_id: UUID = Query(...), db: Session = Depends(get_db)):
    _require(db, principal_id=principal_id)
    return subscription_service.get_member_subscriptions(db, principal_id)


@router.get(
    "/notification-preferences/{principal_id}",
    response_model=NotificationPreferencesData,
)
def get_preferences(principal_id: UUID, db: Session = Depends(get_db)):
    _require(db, principal_id=principal_id)
    return subscription_service.get_notification_preferences(db, principal_id)


@router.patch(
    "/notification-preferences/{principal_id}",
    response_model=NotificationPreferencesData,
)
def update_preferences(
    principal_id: UUID,
    payload: NotificationPreferencesUpdate,
    db: Session = Depends(get_db),
):
    _require(db, principal_id=principal_id)
    return subscription_service.update_notification_preferences(db, principal_id, payload)
