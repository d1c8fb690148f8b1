import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from app.celery_app import celery_app
from app.config import settings
from app.models.integrations import HookDelivery, HookDeliveryStatus
from app.observability import HOOK_RESULTS
from app.schemas.events import parse_event
from app.services.common import coerce_uuid
from app.services.hooks.base import HookResult
from app.services.hooks.registry import get_hook

logger = logging.getLogger(__name__)

OUTCOME_SUCCESS = "success"
OUTCOME_RETRY = "retry"
OUTCOME_FAILED = "failed"


def _update_delivery(
    db: Session, delivery_id: str, attempt: int, status: HookDeliveryStatus, result: HookResult
) -> None:
    delivery = db.get(HookDelivery, coerce_uuid(delivery_id))
    if not delivery:
        logger.error("HookDelivery %s not found", delivery_id)
        return
    delivery.attempts = attempt
    delivery.last_attempt_at = datetime.now(timezone.utc)
    delivery.status = status
    delivery.error = result.error
    if result.success:
        delivery.external_id = result.external_id
        delivery.external_url = result.external_url
    db.commit()


def execute_hook_job(
    db: Session,
    delivery_id: str,
    hook_type: str,
    event: dict,
    target: dict,
    config: dict,
    attempt: int,
) -> str:
    """Run one hook attempt and record it. Returns the outcome.

    ``retry`` means the caller should schedule another attempt; ``failed`` is
    permanent.
    """
    handler = get_hook(hook_type)
    if handler is None:
        logger.error("Unknown hook type %s for delivery %s", hook_type, delivery_id)
        result = HookResult.failed(f"Unknown hook type: {hook_type}", should_retry=False)
        _update_delivery(db, delivery_id, attempt, HookDeliveryStatus.failed, result)
        HOOK_RESULTS.labels(hook_type, OUTCOME_FAILED).inc()
        return OUTCOME_FAILED

    parsed = parse_event(event)
    result = handler.run(parsed, target, config)

    if result.success:
        _update_delivery(db, delivery_id, attempt, HookDeliveryStatus.success, result)
        HOOK_RESULTS.labels(hook_type, OUTCOME_SUCCESS).inc()
        logger.info("Hook %s succeeded for %s %s", hook_type, parsed.type, parsed.id)
        return OUTCOME_SUCCESS

    if result.should_retry and attempt < settings.hook_max_attempts:
        _update_delivery(db, delivery_id, attempt, HookDeliveryStatus.pending, result)
        HOOK_RESULTS.labels(hook_type, OUTCOME_RETRY).inc()
        logger.warning(
            "Hook %s attempt %d/%d failed for %s: %s",
            hook_type,
            attempt,
            settings.hook_max_attempts,
            parsed.id,
            result.error,
        )
        return OUTCOME_RETRY

    _update_delivery(db, delivery_id, attempt, HookDeliveryStatus.failed, result)
    HOOK_RESULTS.labels(hook_type, OUTCOME_FAILED).inc()
    logger.error(
        "Hook %s failed permanently for %s after %d attempt(s): %s",
        hook_type,
        parsed.id,
        attempt,
        result.error,
    )
    # Non-retryable webhook failures are counted by the handler itself
    if hook_type == "webhook" and result.should_retry and config.get("webhook_id"):
        from app.services.webhook import record_webhook_failure

        try:
            record_webhook_failure(db, config["webhook_id"], result.error)
        except Exception:
            logger.exception("Failed to record failure for webhook %s", config["webhook_id"])
            db.rollback()
    return OUTCOME_FAILED


@celery_app.task(
    name="app.tasks.hooks.run_hook",
    ignore_result=True,
    bind=True,
    max_retries=settings.hook_max_attempts - 1,
    acks_late=True,
)
def run_hook(
    self: "celery_app.Task",  # type: ignore[name-defined]
    delivery_id: str,
    hook_type: str,
    event: dict,
    target: dict,
    config: dict,
) -> None:
    """Execute a single hook target, retrying with exponential backoff."""
    from app.db import SessionLocal

    retries = self.request.retries or 0
    db = SessionLocal()
    try:
        outcome = execute_hook_job(
            db, delivery_id, hook_type, event, target, config, attempt=retries + 1
        )
    finally:
        db.close()

    if outcome == OUTCOME_RETRY:
        raise self.retry(countdown=2**retries)
