from datetime import datetime, timedelta, timezone

from sqlalchemy import select, update

from app.models.notifications import UnsubscribeAction, UnsubscribeToken
from app.services import subscription as subscription_service
from app.services import unsubscribe as unsubscribe_service


def _expire(db_session, token: str) -> None:
    db_session.execute(
        update(UnsubscribeToken)
        .where(UnsubscribeToken.token == token)
        .values(expires_at=datetime.now(timezone.utc) - timedelta(minutes=1))
    )
    db_session.commit()


class TestTokenIssue:
    def test_generate_token(self, db_session, post, other_principal) -> None:
        token = unsubscribe_service.generate_unsubscribe_token(
            db_session, other_principal.id, post.id, UnsubscribeAction.unsubscribe_post
        )
        record = db_session.scalars(
            select(UnsubscribeToken).where(UnsubscribeToken.token == token)
        ).one()
        assert len(token) >= 40
        assert record.used_at is None
        assert record.action == UnsubscribeAction.unsubscribe_post

    def test_tokens_are_unique(self, db_session, post, other_principal) -> None:
        tokens = {
            unsubscribe_service.generate_unsubscribe_token(
                db_session, other_principal.id, post.id, "unsubscribe_post"
            )
            for _ in range(5)
        }
        assert len(tokens) == 5

    def test_batch_generate(self, db_session, post, principal, other_principal) -> None:
        result = unsubscribe_service.batch_generate_unsubscribe_tokens(
            db_session,
            [
                {"principal_id": principal.id, "post_id": post.id, "action": "unsubscribe_post"},
                {
                    "principal_id": str(other_principal.id),
                    "post_id": post.id,
                    "action": UnsubscribeAction.unsubscribe_post,
                },
            ],
        )
        assert set(result) == {principal.id, other_principal.id}
        assert result[principal.id] != result[other_principal.id]
        assert len(db_session.scalars(select(UnsubscribeToken)).all()) == 2

    def test_batch_generate_empty(self, db_session) -> None:
        assert unsubscribe_service.batch_generate_unsubscribe_tokens(db_session, []) == {}

    def test_build_url(self) -> None:
        url = unsubscribe_service.build_unsubscribe_url("https://acme.example.com/", "abc-123")
        assert url == "https://acme.example.com/unsubscribe?token=abc-123"


class TestTokenProcessing:
    def test_unsubscribe_post(self, db_session, post, board, other_principal) -> None:
        subscription_service.subscribe_to_post(
            db_session, other_principal.id, post.id, "vote"
        )
        token = unsubscribe_service.generate_unsubscribe_token(
            db_session, other_principal.id, post.id, "unsubscribe_post"
        )

        result = unsubscribe_service.process_unsubscribe_token(db_session, token)

        assert result is not None
        assert result.action == "unsubscribe_post"
        assert result.principal_id == other_principal.id
        assert result.post_id == post.id
        assert result.post.title == "Dark mode"
        assert result.post.board_slug == board.slug
        status = subscription_service.get_subscription_status(
            db_session, other_principal.id, post.id
        )
        assert status.subscribed is False

    def test_unsubscribe_all_mutes_email(self, db_session, other_principal) -> None:
        token = unsubscribe_service.generate_unsubscribe_token(
            db_session, other_principal.id, None, "unsubscribe_all"
        )
        result = unsubscribe_service.process_unsubscribe_token(db_session, token)

        assert result is not None
        assert result.post is None
        prefs = subscription_service.get_notification_preferences(
            db_session, other_principal.id
        )
        assert prefs.email_muted is True
        assert prefs.email_status_change is True

    def test_token_is_single_use(self, db_session, post, other_principal) -> None:
        token = unsubscribe_service.generate_unsubscribe_token(
            db_session, other_principal.id, post.id, "unsubscribe_post"
        )
        assert unsubscribe_service.process_unsubscribe_token(db_session, token) is not None
        assert unsubscribe_service.process_unsubscribe_token(db_session, token) is None

    def test_used_token_does_not_reapply(self, db_session, post, other_principal) -> None:
        token = unsubscribe_service.generate_unsubscribe_token(
            db_session, other_principal.id, post.id, "unsubscribe_post"
        )
        unsubscribe_service.process_unsubscribe_token(db_session, token)
        subscription_service.subscribe_to_post(
            db_session, other_principal.id, post.id, "manual"
        )
        assert unsubscribe_service.process_unsubscribe_token(db_session, token) is None
        status = subscription_service.get_subscription_status(
            db_session, other_principal.id, post.id
        )
        assert status.subscribed is True

    def test_expired_token(self, db_session, post, other_principal) -> None:
        subscription_service.subscribe_to_post(
            db_session, other_principal.id, post.id, "vote"
        )
        token = unsubscribe_service.generate_unsubscribe_token(
            db_session, other_principal.id, post.id, "unsubscribe_post"
        )
        _expire(db_session, token)

        assert unsubscribe_service.process_unsubscribe_token(db_session, token) is None
        status = subscription_service.get_subscription_status(
            db_session, other_principal.id, post.id
        )
        assert status.subscribed is True

    def test_unknown_token(self, db_session) -> None:
        assert unsubscribe_service.process_unsubscribe_token(db_session, "nope") is None

    def test_marks_used_at(self, db_session, post, other_principal) -> None:
        token = unsubscribe_service.generate_unsubscribe_token(
            db_session, other_principal.id, post.id, "unsubscribe_post"
        )
        unsubscribe_service.process_unsubscribe_token(db_session, token)
        db_session.expire_all()
        record = db_session.scalars(
            select(UnsubscribeToken).where(UnsubscribeToken.token == token)
        ).one()
        assert record.used_at is not None

    def test_token_just_before_expiry(self, db_session, post, other_principal) -> None:
        token = unsubscribe_service.generate_unsubscribe_token(
            db_session, other_principal.id, post.id, "unsubscribe_post"
        )
        db_session.execute(
            update(UnsubscribeToken)
            .where(UnsubscribeToken.token == token)
            .values(expires_at=datetime.now(timezone.utc) + timedelta(seconds=5))
        )
        db_session.commit()

        assert unsubscribe_service.process_unsubscribe_token(db_session, token) is not None
