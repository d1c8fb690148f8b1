import uuid
from unittest.mock import patch

import pytest
from fastapi import HTTPException
from sqlalchemy import select

from app.models.feedback import ChangelogEntryPost, Comment, Post, Vote
from app.services import feedback as feedback_service
from app.services import subscription as subscription_service


@pytest.fixture(autouse=True)
def _no_dispatch():
    with patch("app.services.event.dispatch_event") as mock_dispatch:
        yield mock_dispatch


class TestCreatePost:
    def test_subscribes_author(self, db_session, board, principal, _no_dispatch) -> None:
        post = feedback_service.create_post(
            db_session, principal.id, board.id, "  Export to CSV ", "<p>Please</p>"
        )
        assert post.title == "Export to CSV"
        status = subscription_service.get_subscription_status(db_session, principal.id, post.id)
        assert status.reason == "author"
        assert status.level == "all"
        event = _no_dispatch.call_args.args[1]
        assert event.type == "post.created"
        assert event.data.post.author_email == "author@example.com"

    def test_requires_title(self, db_session, board, principal) -> None:
        with pytest.raises(HTTPException) as exc:
            feedback_service.create_post(db_session, principal.id, board.id, "   ")
        assert exc.value.status_code == 400

    def test_unknown_board(self, db_session, principal) -> None:
        with pytest.raises(HTTPException) as exc:
            feedback_service.create_post(db_session, principal.id, uuid.uuid4(), "Title")
        assert exc.value.status_code == 404


class TestChangePostStatus:
    def test_dispatches_change(self, db_session, post, admin_principal, _no_dispatch) -> None:
        feedback_service.change_post_status(db_session, admin_principal.id, post.id, "planned")
        event = _no_dispatch.call_args.args[1]
        assert event.data.previous_status == "open"
        assert event.data.new_status == "planned"
        assert event.data.post.board_slug == "features"

    def test_same_status_is_noop(self, db_session, post, admin_principal, _no_dispatch) -> None:
        feedback_service.change_post_status(db_session, admin_principal.id, post.id, "open")
        _no_dispatch.assert_not_called()


class TestVote:
    def test_vote_subscribes_once(self, db_session, post, other_principal) -> None:
        assert feedback_service.vote_on_post(db_session, other_principal.id, post.id) is True
        assert feedback_service.vote_on_post(db_session, other_principal.id, post.id) is False
        db_session.refresh(post)
        assert post.vote_count == 1
        assert len(db_session.scalars(select(Vote)).all()) == 1
        status = subscription_service.get_subscription_status(
            db_session, other_principal.id, post.id
        )
        assert status.reason == "vote"

    def test_missing_post(self, db_session, other_principal) -> None:
        with pytest.raises(HTTPException) as exc:
            feedback_service.vote_on_post(db_session, other_principal.id, uuid.uuid4())
        assert exc.value.status_code == 404


class TestCreateComment:
    def test_subscribes_commenter(self, db_session, post, other_principal, _no_dispatch) -> None:
        comment = feedback_service.create_comment(
            db_session, other_principal.id, post.id, "  +1  "
        )
        assert comment.content == "+1"
        assert comment.is_team_member is False
        status = subscription_service.get_subscription_status(
            db_session, other_principal.id, post.id
        )
        assert status.reason == "comment"
        event = _no_dispatch.call_args.args[1]
        assert event.data.comment.author_name == "Val Voter"

    def test_keeps_existing_subscription_reason(self, db_session, post, principal) -> None:
        subscription_service.subscribe_to_post(db_session, principal.id, post.id, "author")
        feedback_service.create_comment(db_session, principal.id, post.id, "Update coming")
        status = subscription_service.get_subscription_status(db_session, principal.id, post.id)
        assert status.reason == "author"

    def test_empty_content(self, db_session, post, other_principal) -> None:
        with pytest.raises(HTTPException) as exc:
            feedback_service.create_comment(db_session, other_principal.id, post.id, "   ")
        assert exc.value.status_code == 400

    def test_content_too_long(self, db_session, post, other_principal) -> None:
        with pytest.raises(HTTPException) as exc:
            feedback_service.create_comment(
                db_session,
                other_principal.id,
                post.id,
                "x" * (feedback_service.MAX_COMMENT_LENGTH + 1),
            )
        assert exc.value.status_code == 400

    def test_parent_on_other_post(self, db_session, board, post, principal, other_principal) -> None:
        other = Post(board_id=board.id, principal_id=principal.id, title="Other")
        db_session.add(other)
        db_session.commit()
        parent = feedback_service.create_comment(db_session, principal.id, other.id, "First")

        with pytest.raises(HTTPException) as exc:
            feedback_service.create_comment(
                db_session, other_principal.id, post.id, "Reply", parent_id=parent.id
            )
        assert exc.value.status_code == 400

    def test_reply(self, db_session, post, principal, other_principal) -> None:
        parent = feedback_service.create_comment(db_session, principal.id, post.id, "First")
        reply = feedback_service.create_comment(
            db_session, other_principal.id, post.id, "Reply", parent_id=parent.id
        )
        assert reply.parent_id == parent.id

    def test_private_requires_team_member(self, db_session, post, other_principal) -> None:
        with pytest.raises(HTTPException) as exc:
            feedback_service.create_comment(
                db_session, other_principal.id, post.id, "psst", is_private=True
            )
        assert exc.value.status_code == 403
        assert db_session.scalars(select(Comment)).all() == []

    def test_private_by_team_member(self, db_session, post, admin_principal, _no_dispatch) -> None:
        comment = feedback_service.create_comment(
            db_session, admin_principal.id, post.id, "Internal note", is_private=True
        )
        assert comment.is_private is True
        assert comment.is_team_member is True
        assert _no_dispatch.call_args.args[1].data.comment.is_private is True


class TestPublishChangelog:
    def test_links_posts(self, db_session, post, admin_principal, _no_dispatch) -> None:
        entry = feedback_service.publish_changelog(
            db_session,
            admin_principal.id,
            "October release",
            "<h1>Dark mode</h1><p>is here</p>",
            post_ids=[post.id],
        )
        links = db_session.scalars(select(ChangelogEntryPost)).all()
        assert [link.post_id for link in links] == [post.id]
        event = _no_dispatch.call_args.args[1]
        assert event.data.changelog.id == entry.id
        assert event.data.changelog.content_preview == "Dark mode is here"

    def test_unknown_post_aborts(self, db_session, admin_principal, _no_dispatch) -> None:
        with pytest.raises(HTTPException) as exc:
            feedback_service.publish_changelog(
                db_session, admin_principal.id, "Release", post_ids=[uuid.uuid4()]
            )
        assert exc.value.status_code == 404
        _no_dispatch.assert_not_called()
