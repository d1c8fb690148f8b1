import uuid
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

from app.models.feedback import Board, ChangelogEntry, ChangelogEntryPost, Post
from app.models.integrations import (
    Integration,
    IntegrationEventMapping,
    IntegrationStatus,
    Webhook,
    WebhookStatus,
)
from app.models.notifications import UnsubscribeToken
from app.schemas.events import (
    ChangelogPublishedData,
    ChangelogPublishedEvent,
    ChangelogSnapshot,
    CommentCreatedData,
    CommentCreatedEvent,
    CommentSnapshot,
    PostCreatedData,
    PostCreatedEvent,
    PostRef,
    PostSnapshot,
    PostStatusChangedData,
    PostStatusChangedEvent,
    ServiceActor,
)
from app.schemas.subscription import NotificationPreferencesUpdate
from app.services import event as event_service
from app.services import subscription as subscription_service
from app.services import targets as targets_service
from app.services.encryption import encrypt_secret, encrypt_secrets


def _service_actor():
    return ServiceActor(principal_id=uuid.uuid4(), display_name="Importer")


def _post_ref(post, board):
    return PostRef(id=post.id, title=post.title, board_id=board.id, board_slug=board.slug)


def _status_event(post, board, actor=None):
    return PostStatusChangedEvent(
        actor=actor or _service_actor(),
        data=PostStatusChangedData(
            post=_post_ref(post, board), previous_status="open", new_status="planned"
        ),
    )


def _comment_event(post, board, actor=None, is_private=False):
    return CommentCreatedEvent(
        actor=actor or _service_actor(),
        data=CommentCreatedData(
            comment=CommentSnapshot(
                id=uuid.uuid4(),
                content="<p>We are <b>on it</b></p>",
                author_name=None,
                author_email="ash@example.com",
                is_private=is_private,
            ),
            post=_post_ref(post, board),
        ),
    )


def _changelog_event(entry, actor=None):
    return ChangelogPublishedEvent(
        actor=actor or _service_actor(),
        data=ChangelogPublishedData(
            changelog=ChangelogSnapshot(
                id=entry.id,
                title=entry.title,
                content_preview="Shipped",
                published_at=entry.published_at,
            )
        ),
    )


def _by_type(targets, hook_type):
    return [t for t in targets if t.type == hook_type]


def _add_webhook(db_session, events, board_ids=None, status=WebhookStatus.active, deleted=False):
    webhook = Webhook(
        url="https://hooks.example.com/feedback",
        secret=encrypt_secret("whsec_test"),
        events=events,
        board_ids=board_ids,
        status=status,
        deleted_at=datetime.now(timezone.utc) if deleted else None,
    )
    db_session.add(webhook)
    db_session.commit()
    return webhook


def _add_slack(db_session, event_type, channel_id="C123", filters=None, token="xoxb-1"):
    integration = Integration(
        integration_type="slack",
        status=IntegrationStatus.active,
        secrets=encrypt_secrets({"access_token": token}),
        config={"channel_id": channel_id},
    )
    db_session.add(integration)
    db_session.flush()
    db_session.add(
        IntegrationEventMapping(
            integration_id=integration.id,
            event_type=event_type,
            enabled=True,
            filters=filters,
        )
    )
    db_session.commit()
    return integration


class TestHelpers:
    def test_notification_event_type(self) -> None:
        from app.schemas.events import EventType

        assert targets_service.notification_event_type(EventType.comment_created) == "comment"
        assert (
            targets_service.notification_event_type(EventType.changelog_published)
            == "status_change"
        )
        assert targets_service.notification_event_type(EventType.post_created) is None

    def test_should_send_email(self) -> None:
        from app.schemas.events import EventType
        from app.schemas.subscription import NotificationPreferencesData

        muted = NotificationPreferencesData(email_muted=True)
        no_comments = NotificationPreferencesData(email_new_comment=False)
        assert targets_service.should_send_email(EventType.post_status_changed, muted) is False
        assert targets_service.should_send_email(EventType.comment_created, no_comments) is False
        assert (
            targets_service.should_send_email(EventType.post_status_changed, no_comments)
            is True
        )

    def test_actor_matching(self, db_session, post, principal) -> None:
        subscription_service.subscribe_to_post(db_session, principal.id, post.id, "author")
        subscriber = subscription_service.get_subscribers_for_event(
            db_session, post.id, "status_change"
        )[0]

        actor = event_service.actor_for_principal(principal)
        assert targets_service.is_actor_subscriber(subscriber, actor) is True
        service = ServiceActor(principal_id=principal.id)
        assert targets_service.is_actor_subscriber(subscriber, service) is False
        by_email = event_service.build_event_actor(
            uuid.uuid4(), user_id=uuid.uuid4(), email="author@example.com"
        )
        assert targets_service.is_actor_subscriber(subscriber, by_email) is True

    def test_extract_ids(self, post, board, db_session) -> None:
        event = _status_event(post, board)
        assert targets_service.extract_post_id(event) == post.id
        assert targets_service.extract_board_id(event) == str(board.id)


class TestSubscriberTargets:
    def test_no_workspace_returns_nothing(self, db_session, post, board, other_principal) -> None:
        subscription_service.subscribe_to_post(db_session, other_principal.id, post.id, "vote")
        _add_webhook(db_session, ["post.status_changed"])

        assert targets_service.get_hook_targets(db_session, _status_event(post, board)) == []

    def test_status_change_fans_out(
        self, db_session, workspace, post, board, principal, other_principal
    ) -> None:
        subscription_service.subscribe_to_post(db_session, principal.id, post.id, "author")
        subscription_service.subscribe_to_post(db_session, other_principal.id, post.id, "vote")

        targets = targets_service.get_hook_targets(db_session, _status_event(post, board))

        emails = _by_type(targets, "email")
        assert {t.target["email"] for t in emails} == {
            "author@example.com",
            "voter@example.com",
        }
        for email in emails:
            assert email.target["unsubscribe_url"].startswith(
                "https://feedback.example.com/unsubscribe?token="
            )
            assert email.config["workspace_name"] == "Acme"
            assert email.config["new_status"] == "planned"
            assert email.config["post_url"] == (
                f"https://feedback.example.com/b/features/posts/{post.id}"
            )
        [notification] = _by_type(targets, "notification")
        assert set(notification.target["principal_ids"]) == {
            str(principal.id),
            str(other_principal.id),
        }

    def test_actor_is_excluded(
        self, db_session, workspace, post, board, principal, other_principal
    ) -> None:
        subscription_service.subscribe_to_post(db_session, principal.id, post.id, "author")
        subscription_service.subscribe_to_post(db_session, other_principal.id, post.id, "vote")
        actor = event_service.actor_for_principal(principal)

        targets = targets_service.get_hook_targets(
            db_session, _status_event(post, board, actor=actor)
        )

        assert [t.target["email"] for t in _by_type(targets, "email")] == ["voter@example.com"]
        [notification] = _by_type(targets, "notification")
        assert notification.target["principal_ids"] == [str(other_principal.id)]

    def test_only_subscriber_is_actor(self, db_session, workspace, post, board, principal) -> None:
        subscription_service.subscribe_to_post(db_session, principal.id, post.id, "author")
        actor = event_service.actor_for_principal(principal)

        targets = targets_service.get_hook_targets(
            db_session, _status_event(post, board, actor=actor)
        )
        assert targets == []

    def test_muted_subscriber_still_notified_in_app(
        self, db_session, workspace, post, board, other_principal
    ) -> None:
        subscription_service.subscribe_to_post(db_session, other_principal.id, post.id, "vote")
        subscription_service.update_notification_preferences(
            db_session, other_principal.id, NotificationPreferencesUpdate(email_muted=True)
        )

        targets = targets_service.get_hook_targets(db_session, _status_event(post, board))

        assert _by_type(targets, "email") == []
        [notification] = _by_type(targets, "notification")
        assert notification.target["principal_ids"] == [str(other_principal.id)]
        assert db_session.query(UnsubscribeToken).count() == 0

    def test_status_only_skips_comments(
        self, db_session, workspace, post, board, other_principal
    ) -> None:
        subscription_service.subscribe_to_post(
            db_session, other_principal.id, post.id, "manual", level="status_only"
        )
        targets = targets_service.get_hook_targets(db_session, _comment_event(post, board))
        assert targets == []

    def test_comment_config(self, db_session, workspace, post, board, other_principal) -> None:
        subscription_service.subscribe_to_post(db_session, other_principal.id, post.id, "vote")
        event = _comment_event(post, board)

        targets = targets_service.get_hook_targets(db_session, event)

        [email] = _by_type(targets, "email")
        assert email.config["commenter_name"] == "ash"
        assert email.config["comment_preview"] == "We are on it"
        assert email.config["comment_id"] == str(event.data.comment.id)
        assert email.config["post_url"].endswith(f"#comment-{event.data.comment.id}")
        assert email.config["is_team_member"] is False

    def test_private_comment_reaches_team_only(
        self, db_session, workspace, post, board, principal, admin_principal
    ) -> None:
        subscription_service.subscribe_to_post(db_session, principal.id, post.id, "author")
        subscription_service.subscribe_to_post(
            db_session, admin_principal.id, post.id, "comment"
        )
        _add_webhook(db_session, ["comment.created"])
        _add_slack(db_session, "comment.created")

        targets = targets_service.get_hook_targets(
            db_session, _comment_event(post, board, is_private=True)
        )

        assert [t.target["email"] for t in _by_type(targets, "email")] == ["admin@example.com"]
        [notification] = _by_type(targets, "notification")
        assert notification.target["principal_ids"] == [str(admin_principal.id)]
        assert _by_type(targets, "webhook") == []
        assert _by_type(targets, "slack") == []

    def test_post_created_has_no_subscriber_targets(
        self, db_session, workspace, post, board, other_principal
    ) -> None:
        subscription_service.subscribe_to_post(db_session, other_principal.id, post.id, "vote")
        event = PostCreatedEvent(
            actor=_service_actor(),
            data=PostCreatedData(post=PostSnapshot(**_post_ref(post, board).model_dump())),
        )
        assert targets_service.get_hook_targets(db_session, event) == []


class TestChangelogTargets:
    def test_subscribers_are_deduplicated(
        self, db_session, workspace, post, board, principal, other_principal
    ) -> None:
        second = Post(board_id=board.id, principal_id=principal.id, title="API access")
        db_session.add(second)
        db_session.commit()
        for target_post in (post, second):
            subscription_service.subscribe_to_post(
                db_session, other_principal.id, target_post.id, "vote"
            )
        entry = ChangelogEntry(title="October release", published_at=datetime.now(timezone.utc))
        db_session.add(entry)
        db_session.flush()
        db_session.add_all(
            [
                ChangelogEntryPost(changelog_entry_id=entry.id, post_id=post.id),
                ChangelogEntryPost(changelog_entry_id=entry.id, post_id=second.id),
            ]
        )
        db_session.commit()

        targets = targets_service.get_hook_targets(db_session, _changelog_event(entry))

        [email] = _by_type(targets, "email")
        assert email.target["email"] == "voter@example.com"
        assert email.config["changelog_title"] == "October release"
        assert email.config["changelog_url"] == "https://feedback.example.com/changelog"
        [notification] = _by_type(targets, "notification")
        assert notification.target["principal_ids"] == [str(other_principal.id)]
        token = db_session.query(UnsubscribeToken).one()
        assert token.post_id == min(post.id, second.id)

    def test_unlinked_changelog_has_no_subscribers(self, db_session, workspace) -> None:
        entry = ChangelogEntry(title="Quiet release")
        db_session.add(entry)
        db_session.commit()
        assert targets_service.get_hook_targets(db_session, _changelog_event(entry)) == []


class TestWebhookTargets:
    def test_event_filter_and_secret(self, db_session, workspace, post, board) -> None:
        matching = _add_webhook(db_session, ["post.status_changed"])
        _add_webhook(db_session, ["comment.created"])

        targets = targets_service.get_hook_targets(db_session, _status_event(post, board))

        [webhook] = _by_type(targets, "webhook")
        assert webhook.target == {"url": "https://hooks.example.com/feedback"}
        assert webhook.config == {"secret": "whsec_test", "webhook_id": str(matching.id)}

    def test_board_filter(self, db_session, workspace, post, board) -> None:
        other_board = Board(name="Bugs", slug="bugs")
        db_session.add(other_board)
        db_session.commit()
        included = _add_webhook(db_session, ["post.status_changed"], board_ids=[str(board.id)])
        _add_webhook(db_session, ["post.status_changed"], board_ids=[str(other_board.id)])

        targets = targets_service.get_hook_targets(db_session, _status_event(post, board))

        assert [t.config["webhook_id"] for t in _by_type(targets, "webhook")] == [
            str(included.id)
        ]

    def test_board_filter_excludes_boardless_events(self, db_session, workspace, board) -> None:
        _add_webhook(db_session, ["changelog.published"], board_ids=[str(board.id)])
        unfiltered = _add_webhook(db_session, ["changelog.published"])
        entry = ChangelogEntry(title="Release")
        db_session.add(entry)
        db_session.commit()

        targets = targets_service.get_hook_targets(db_session, _changelog_event(entry))

        assert [t.config["webhook_id"] for t in targets] == [str(unfiltered.id)]

    def test_disabled_and_deleted_are_skipped(self, db_session, workspace, post, board) -> None:
        _add_webhook(db_session, ["post.status_changed"], status=WebhookStatus.disabled)
        _add_webhook(db_session, ["post.status_changed"], deleted=True)

        targets = targets_service.get_hook_targets(db_session, _status_event(post, board))
        assert targets == []

    def test_undecryptable_secret_is_skipped(self, db_session, workspace, post, board) -> None:
        webhook = _add_webhook(db_session, ["post.status_changed"])
        webhook.secret = "not-a-fernet-token"
        db_session.commit()

        assert targets_service.get_hook_targets(db_session, _status_event(post, board)) == []

    def test_bad_key_skips_webhook_but_keeps_subscribers(
        self, db_session, workspace, post, board, other_principal
    ) -> None:
        subscription_service.subscribe_to_post(db_session, other_principal.id, post.id, "vote")
        _add_webhook(db_session, ["post.status_changed"])

        with patch(
            "app.services.encryption.settings", MagicMock(secrets_key="not-a-fernet-key")
        ):
            targets = targets_service.get_hook_targets(db_session, _status_event(post, board))

        assert _by_type(targets, "webhook") == []
        assert [t.target["email"] for t in _by_type(targets, "email")] == ["voter@example.com"]
        assert len(_by_type(targets, "notification")) == 1


class TestIntegrationTargets:
    def test_slack_target(self, db_session, workspace, post, board) -> None:
        _add_slack(db_session, "post.status_changed", token="xoxb-secret")

        targets = targets_service.get_hook_targets(db_session, _status_event(post, board))

        [slack] = _by_type(targets, "slack")
        assert slack.target == {"channel_id": "C123"}
        assert slack.config == {
            "access_token": "xoxb-secret",
            "root_url": "https://feedback.example.com",
        }

    def test_same_channel_is_deduplicated(self, db_session, workspace, post, board) -> None:
        _add_slack(db_session, "post.status_changed")
        _add_slack(db_session, "post.status_changed")
        _add_slack(db_session, "post.status_changed", channel_id="C999")

        targets = targets_service.get_hook_targets(db_session, _status_event(post, board))

        assert sorted(t.target["channel_id"] for t in _by_type(targets, "slack")) == [
            "C123",
            "C999",
        ]

    def test_board_filter(self, db_session, workspace, post, board) -> None:
        _add_slack(db_session, "post.status_changed", filters={"board_ids": [str(uuid.uuid4())]})
        assert targets_service.get_hook_targets(db_session, _status_event(post, board)) == []

    def test_board_filter_ignored_without_board(self, db_session, workspace, board) -> None:
        _add_slack(db_session, "changelog.published", filters={"board_ids": [str(board.id)]})
        entry = ChangelogEntry(title="Release")
        db_session.add(entry)
        db_session.commit()

        targets = targets_service.get_hook_targets(db_session, _changelog_event(entry))
        assert len(_by_type(targets, "slack")) == 1

    def test_paused_integration_is_skipped(self, db_session, workspace, post, board) -> None:
        integration = _add_slack(db_session, "post.status_changed")
        integration.status = IntegrationStatus.paused
        db_session.commit()

        assert targets_service.get_hook_targets(db_session, _status_event(post, board)) == []


class TestResolutionFailure:
    def test_error_returns_empty(self, db_session, workspace, post, board) -> None:
        _add_webhook(db_session, ["post.status_changed"])
        with patch(
            "app.services.targets._webhook_targets", side_effect=RuntimeError("boom")
        ):
            targets = targets_service.get_hook_targets(db_session, _status_event(post, board))
        assert targets == []
