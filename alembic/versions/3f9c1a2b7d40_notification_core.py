"""notification core schema

Revision ID: 3f9c1a2b7d40
Revises:
Create Date: 2026-10-19 09:12:40.118302

"""

from alembic import op
import sqlalchemy as sa

revision = "3f9c1a2b7d40"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps(*, updated: bool = True) -> list[sa.Column]:
    columns = [sa.Column("created_at", sa.DateTime(timezone=True), nullable=True)]
    if updated:
        columns.append(sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True))
    return columns


def upgrade() -> None:
    # Collaborator tables
    op.create_table(
        "users",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )
    op.create_table(
        "principals",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("user_id", sa.UUID(), nullable=True),
        sa.Column("role", sa.Enum("admin", "member", "user", name="principalrole"), nullable=True),
        sa.Column("type", sa.Enum("user", "service", name="principaltype"), nullable=True),
        sa.Column("display_name", sa.String(length=255), nullable=True),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_principals_user_id", "principals", ["user_id"])
    op.create_table(
        "workspace_settings",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("slug", sa.String(length=100), nullable=False),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "boards",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("slug", sa.String(length=100), nullable=False),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("slug", name="uq_boards_slug"),
    )
    op.create_table(
        "posts",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("board_id", sa.UUID(), nullable=False),
        sa.Column("principal_id", sa.UUID(), nullable=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("status_slug", sa.String(length=50), nullable=True),
        sa.Column("vote_count", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["board_id"], ["boards.id"]),
        sa.ForeignKeyConstraint(["principal_id"], ["principals.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_posts_board_id", "posts", ["board_id"])
    op.create_table(
        "votes",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("post_id", sa.UUID(), nullable=False),
        sa.Column("principal_id", sa.UUID(), nullable=False),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(["post_id"], ["posts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["principal_id"], ["principals.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("post_id", "principal_id", name="uq_votes_post_principal"),
    )
    op.create_table(
        "comments",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("post_id", sa.UUID(), nullable=False),
        sa.Column("principal_id", sa.UUID(), nullable=True),
        sa.Column("parent_id", sa.UUID(), nullable=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("is_private", sa.Boolean(), nullable=True),
        sa.Column("is_team_member", sa.Boolean(), nullable=True),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(["post_id"], ["posts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["principal_id"], ["principals.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["parent_id"], ["comments.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_comments_post_id", "comments", ["post_id"])
    op.create_table(
        "changelog_entries",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "changelog_entry_posts",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("changelog_entry_id", sa.UUID(), nullable=False),
        sa.Column("post_id", sa.UUID(), nullable=False),
        sa.ForeignKeyConstraint(
            ["changelog_entry_id"], ["changelog_entries.id"], ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(["post_id"], ["posts.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "changelog_entry_id", "post_id", name="uq_changelog_entry_posts_entry_post"
        ),
    )

    # Subscriptions and preferences
    op.create_table(
        "post_subscriptions",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("post_id", sa.UUID(), nullable=False),
        sa.Column("principal_id", sa.UUID(), nullable=False),
        sa.Column("reason", sa.String(length=20), nullable=False),
        sa.Column("notify_comments", sa.Boolean(), nullable=True),
        sa.Column("notify_status_changes", sa.Boolean(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["post_id"], ["posts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["principal_id"], ["principals.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "post_id", "principal_id", name="uq_post_subscriptions_post_principal"
        ),
    )
    op.create_index(
        "ix_post_subscriptions_principal_id", "post_subscriptions", ["principal_id"]
    )
    op.create_index("ix_post_subscriptions_post_id", "post_subscriptions", ["post_id"])
    op.create_table(
        "notification_preferences",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("principal_id", sa.UUID(), nullable=False),
        sa.Column("email_status_change", sa.Boolean(), nullable=True),
        sa.Column("email_new_comment", sa.Boolean(), nullable=True),
        sa.Column("email_muted", sa.Boolean(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["principal_id"], ["principals.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("principal_id", name="uq_notification_preferences_principal"),
    )
    op.create_table(
        "unsubscribe_tokens",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("token", sa.String(length=128), nullable=False),
        sa.Column("principal_id", sa.UUID(), nullable=False),
        sa.Column("post_id", sa.UUID(), nullable=True),
        sa.Column(
            "action",
            sa.Enum("unsubscribe_post", "unsubscribe_all", name="unsubscribeaction"),
            nullable=False,
        ),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(["principal_id"], ["principals.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["post_id"], ["posts.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("token", name="uq_unsubscribe_tokens_token"),
    )
    op.create_index(
        "ix_unsubscribe_tokens_principal_id", "unsubscribe_tokens", ["principal_id"]
    )
    op.create_table(
        "in_app_notifications",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("principal_id", sa.UUID(), nullable=False),
        sa.Column("type", sa.String(length=50), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("post_id", sa.UUID(), nullable=True),
        sa.Column("comment_id", sa.UUID(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(["principal_id"], ["principals.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["post_id"], ["posts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["comment_id"], ["comments.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_in_app_notifications_principal_created",
        "in_app_notifications",
        ["principal_id", "created_at"],
    )
    op.create_index("ix_in_app_notifications_post_id", "in_app_notifications", ["post_id"])

    # Integrations, webhooks and hook outcomes
    op.create_table(
        "integrations",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("integration_type", sa.String(length=50), nullable=False),
        sa.Column(
            "status",
            sa.Enum("active", "paused", "error", name="integrationstatus"),
            nullable=True,
        ),
        sa.Column("secrets", sa.Text(), nullable=True),
        sa.Column("config", sa.JSON(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "integration_event_mappings",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("integration_id", sa.UUID(), nullable=False),
        sa.Column("event_type", sa.String(length=100), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=True),
        sa.Column("action_config", sa.JSON(), nullable=True),
        sa.Column("filters", sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(
            ["integration_id"], ["integrations.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_integration_event_mappings_event_type",
        "integration_event_mappings",
        ["event_type"],
    )
    op.create_table(
        "webhooks",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("url", sa.String(length=2048), nullable=False),
        sa.Column("secret", sa.Text(), nullable=False),
        sa.Column("events", sa.JSON(), nullable=False),
        sa.Column("board_ids", sa.JSON(), nullable=True),
        sa.Column("status", sa.Enum("active", "disabled", name="webhookstatus"), nullable=True),
        sa.Column("failure_count", sa.Integer(), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("last_triggered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.UUID(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["created_by"], ["principals.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "hook_deliveries",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("event_id", sa.UUID(), nullable=False),
        sa.Column("event_type", sa.String(length=100), nullable=False),
        sa.Column("hook_type", sa.String(length=50), nullable=False),
        sa.Column("target", sa.JSON(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("pending", "success", "failed", name="hookdeliverystatus"),
            nullable=True,
        ),
        sa.Column("attempts", sa.Integer(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("external_id", sa.String(length=255), nullable=True),
        sa.Column("external_url", sa.String(length=2048), nullable=True),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_hook_deliveries_event_id", "hook_deliveries", ["event_id"])
    op.create_index("ix_hook_deliveries_status", "hook_deliveries", ["status"])
    op.create_index("ix_hook_deliveries_created_at", "hook_deliveries", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_hook_deliveries_created_at", table_name="hook_deliveries")
    op.drop_index("ix_hook_deliveries_status", table_name="hook_deliveries")
    op.drop_index("ix_hook_deliveries_event_id", table_name="hook_deliveries")
    op.drop_table("hook_deliveries")
    op.drop_table("webhooks")
    op.drop_index(
        "ix_integration_event_mappings_event_type", table_name="integration_event_mappings"
    )
    op.drop_table("integration_event_mappings")
    op.drop_table("integrations")
    op.drop_index("ix_in_app_notifications_post_id", table_name="in_app_notifications")
    op.drop_index(
        "ix_in_app_notifications_principal_created", table_name="in_app_notifications"
    )
    op.drop_table("in_app_notifications")
    op.drop_index("ix_unsubscribe_tokens_principal_id", table_name="unsubscribe_tokens")
    op.drop_table("unsubscribe_tokens")
    op.drop_table("notification_preferences")
    op.drop_index("ix_post_subscriptions_post_id", table_name="post_subscriptions")
    op.drop_index("ix_post_subscriptions_principal_id", table_name="post_subscriptions")
    op.drop_table("post_subscriptions")
    op.drop_table("changelog_entry_posts")
    op.drop_table("changelog_entries")
    op.drop_index("ix_comments_post_id", table_name="comments")
    op.drop_table("comments")
    op.drop_table("votes")
    op.drop_index("ix_posts_board_id", table_name="posts")
    op.drop_table("posts")
    op.drop_table("boards")
    op.drop_table("workspace_settings")
    op.drop_index("ix_principals_user_id", table_name="principals")
    op.drop_table("principals")
    op.drop_table("users")

    for enum_name in (
        "hookdeliverystatus",
        "webhookstatus",
        "integrationstatus",
        "unsubscribeaction",
        "principaltype",
        "principalrole",
    ):
        sa.Enum(name=enum_name).drop(op.get_bind(), checkfirst=True)
