import logging

from app.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="app.tasks.events.process_event", ignore_result=True)
def process_event_task(event: dict) -> None:
    """Resolve and enqueue hook targets for an event published with ``publish_event``."""
    from app.db import SessionLocal
    from app.schemas.events import parse_event
    from app.services.event import dispatch_event

    parsed = parse_event(event)
    logger.info("Processing event %s %s", parsed.type, parsed.id)

    db = SessionLocal()
    try:
        dispatch_event(db, parsed)
    finally:
        db.close()
