from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.db import SessionLocal
from app.schemas.subscription import UnsubscribeResult
from app.services.unsubscribe import process_unsubscribe_token

router = APIRouter(tags=["unsubscribe"])


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@router.get("/unsubscribe", response_model=UnsubscribeResult)
def unsubscribe(token: str = Query(..., min_length=1), db: Session = Depends(get_db)):
    result = process_unsubscribe_token(db, token)
    if result is None:
        raise HTTPException(
            status_code=410,
            detail={
                "code": "unsubscribe_link_invalid",
                "message": "This unsubscribe link is invalid or has expired",
            },
        )
    return result
