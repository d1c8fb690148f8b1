import uuid
from unittest.mock import MagicMock, patch

import pytest

from app.config import settings
from app.models.integrations import HookDelivery, HookDeliveryStatus, Webhook
from app.schemas.events import (
    PostRef,
    PostStatusChangedData,
    PostStatusChangedEvent,
    ServiceActor,
    serialize_event,
)
from app.services.encryption import encrypt_secret
from app.services.hooks.base import HookResult
from app.tasks.hooks import execute_hook_job


def _event_payload():
    return serialize_event(
        PostStatusChangedEvent(
            actor=ServiceActor(principal_id=uuid.uuid4()),
            data=PostStatusChangedData(
                post=PostRef(
                    id=uuid.uuid4(), title="Dark mode", board_id=uuid.uuid4(), board_slug="features"
                ),
                previous_status="open",
                new_status="planned",
            ),
        )
    )


@pytest.fixture()
def delivery(db_session):
    d = HookDelivery(
        event_id=uuid.uuid4(),
        event_type="post.status_changed",
        hook_type="webhook",
        target={"url": "https://hooks.example.com"},
        status=HookDeliveryStatus.pending,
    )
    db_session.add(d)
    db_session.commit()
    db_session.refresh(d)
    return d


def _handler(result: HookResult):
    handler = MagicMock()
    handler.run.return_value = result
    return handler


def _run(db_session, delivery, attempt, config=None, hook_type="webhook"):
    return execute_hook_job(
        db_session,
        str(delivery.id),
        hook_type,
        _event_payload(),
        {"url": "https://hooks.example.com"},
        config or {},
        attempt=attempt,
    )


class TestExecuteHookJob:
    def test_success(self, db_session, delivery) -> None:
        handler = _handler(HookResult.ok(external_id="ext-1"))
        with patch("app.tasks.hooks.get_hook", return_value=handler):
            outcome = _run(db_session, delivery, attempt=1)

        assert outcome == "success"
        db_session.refresh(delivery)
        assert delivery.status == HookDeliveryStatus.success
        assert delivery.attempts == 1
        assert delivery.external_id == "ext-1"
        assert delivery.last_attempt_at is not None

    def test_retryable_failure_stays_pending(self, db_session, delivery) -> None:
        handler = _handler(HookResult.failed("HTTP 503", should_retry=True))
        with patch("app.tasks.hooks.get_hook", return_value=handler):
            outcome = _run(db_session, delivery, attempt=1)

        assert outcome == "retry"
        db_session.refresh(delivery)
        assert delivery.status == HookDeliveryStatus.pending
        assert delivery.error == "HTTP 503"

    def test_non_retryable_failure(self, db_session, delivery) -> None:
        handler = _handler(HookResult.failed("HTTP 400", should_retry=False))
        with patch("app.tasks.hooks.get_hook", return_value=handler):
            outcome = _run(db_session, delivery, attempt=1)

        assert outcome == "failed"
        db_session.refresh(delivery)
        assert delivery.status == HookDeliveryStatus.failed

    def test_exhausted_retries_record_webhook_failure(self, db_session, delivery) -> None:
        webhook = Webhook(
            url="https://hooks.example.com",
            secret=encrypt_secret("whsec_test"),
            events=["post.status_changed"],
        )
        db_session.add(webhook)
        db_session.commit()

        handler = _handler(HookResult.failed("HTTP 503", should_retry=True))
        with patch("app.tasks.hooks.get_hook", return_value=handler):
            outcome = _run(
                db_session,
                delivery,
                attempt=settings.hook_max_attempts,
                config={"secret": "whsec_test", "webhook_id": str(webhook.id)},
            )

        assert outcome == "failed"
        db_session.refresh(delivery)
        db_session.refresh(webhook)
        assert delivery.status == HookDeliveryStatus.failed
        assert delivery.attempts == settings.hook_max_attempts
        assert webhook.failure_count == 1
        assert webhook.last_error == "HTTP 503"

    def test_exhausted_non_webhook_does_not_touch_webhooks(self, db_session, delivery) -> None:
        handler = _handler(HookResult.failed("ratelimited", should_retry=True))
        with (
            patch("app.tasks.hooks.get_hook", return_value=handler),
            patch("app.services.webhook.record_webhook_failure") as mock_record,
        ):
            outcome = _run(
                db_session, delivery, attempt=settings.hook_max_attempts, hook_type="slack"
            )
        assert outcome == "failed"
        mock_record.assert_not_called()

    def test_unknown_hook_type(self, db_session, delivery) -> None:
        with patch("app.tasks.hooks.get_hook", return_value=None):
            outcome = _run(db_session, delivery, attempt=1, hook_type="fax")

        assert outcome == "failed"
        db_session.refresh(delivery)
        assert delivery.status == HookDeliveryStatus.failed
        assert delivery.error == "Unknown hook type: fax"

    def test_missing_delivery_row_still_runs(self, db_session) -> None:
        handler = _handler(HookResult.ok())
        with patch("app.tasks.hooks.get_hook", return_value=handler):
            outcome = execute_hook_job(
                db_session,
                str(uuid.uuid4()),
                "webhook",
                _event_payload(),
                {"url": "https://hooks.example.com"},
                {},
                attempt=1,
            )
        assert outcome == "success"
        handler.run.assert_called_once()


class TestRunHookTask:
    def test_retry_is_scheduled(self, delivery) -> None:
        from celery.exceptions import Retry

        from app.tasks.hooks import run_hook

        with (
            patch("app.tasks.hooks.execute_hook_job", return_value="retry"),
            patch.object(run_hook, "retry", side_effect=Retry()) as mock_retry,
        ):
            with pytest.raises(Retry):
                run_hook.run(
                    str(delivery.id),
                    "webhook",
                    _event_payload(),
                    {"url": "https://hooks.example.com"},
                    {},
                )
        mock_retry.assert_called_once_with(countdown=1)

    def test_success_does_not_retry(self, delivery) -> None:
        from app.tasks.hooks import run_hook

        with (
            patch("app.tasks.hooks.execute_hook_job", return_value="success") as mock_exec,
            patch.object(run_hook, "retry") as mock_retry,
        ):
            run_hook.run(
                str(delivery.id),
                "webhook",
                _event_payload(),
                {"url": "https://hooks.example.com"},
                {},
            )
        assert mock_exec.call_args.kwargs["attempt"] == 1
        mock_retry.assert_not_called()
