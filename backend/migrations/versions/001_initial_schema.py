"""Initial schema - users, videos, watch history, subscriptions.

Revision: 001_initial_schema
Created:  2026-10-19

Append-only:
  This file must NEVER be edited after it has been applied to any database.
  If a schema change is required, create a NEW migration file.

Creation order (FK dependencies):
  users → videos → watch_history, subscriptions

ON DELETE policies:
  videos.owner_id               → SET NULL  (history keeps the video, owner absent)
  watch_history.user_id         → CASCADE
  watch_history.video_id        → CASCADE
  subscriptions.subscriber_id   → CASCADE
  subscriptions.channel_id      → CASCADE
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# ── Alembic revision identifiers ──────────────────────────────────────────
revision: str = "001_initial_schema"
down_revision: str | None = None      # first migration - no parent
branch_labels: tuple | None = None
depends_on: tuple | None = None


def upgrade() -> None:

    # ── Step 1: users ──────────────────────────────────────────────────────
    # refresh_token holds the single honoured refresh token (NULL = logged out).

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("username", sa.String(50), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("full_name", sa.String(100), nullable=False),
        sa.Column("avatar_url", sa.String(500), nullable=False),
        sa.Column("cover_image_url", sa.String(500), nullable=False, server_default=""),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("refresh_token", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("username", name="uq_users_username"),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.CheckConstraint(
            "LENGTH(TRIM(username)) > 0",
            name="ck_users_username_nonempty",
        ),
        sa.CheckConstraint(
            "email LIKE '%@%'",
            name="ck_users_email_format",
        ),
    )
    # Case-insensitive lookups use LOWER(username) / LOWER(email).
    op.create_index("idx_users_username_lower", "users", [sa.text("LOWER(username)")])
    op.create_index("idx_users_email_lower", "users", [sa.text("LOWER(email)")])
    op.create_index("idx_users_full_name", "users", ["full_name"])

    # ── Step 2: videos ─────────────────────────────────────────────────────

    op.create_table(
        "videos",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "owner_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="SET NULL", name="fk_videos_owner"),
            nullable=True,
        ),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("video_file_url", sa.String(500), nullable=False),
        sa.Column("thumbnail_url", sa.String(500), nullable=False),
        sa.Column("duration", sa.Float(), nullable=False, server_default="0"),
        sa.Column("views", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_published", sa.Boolean(), nullable=False, server_default=sa.text("TRUE")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_videos"),
    )
    op.create_index("idx_videos_owner", "videos", ["owner_id"])

    # ── Step 3: watch_history ──────────────────────────────────────────────

    op.create_table(
        "watch_history",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE", name="fk_watch_history_user"),
            nullable=False,
        ),
        sa.Column(
            "video_id",
            sa.Integer(),
            sa.ForeignKey("videos.id", ondelete="CASCADE", name="fk_watch_history_video"),
            nullable=False,
        ),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column(
            "watched_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_watch_history"),
        sa.UniqueConstraint("user_id", "position", name="uq_watch_history_user_position"),
    )
    op.create_index("idx_watch_history_user", "watch_history", ["user_id"])

    # ── Step 4: subscriptions (edge table) ─────────────────────────────────
    # One index per column: subscriber counts scan by channel_id, followed
    # counts scan by subscriber_id.

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "subscriber_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE", name="fk_subscriptions_subscriber"),
            nullable=False,
        ),
        sa.Column(
            "channel_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE", name="fk_subscriptions_channel"),
            nullable=False,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_subscriptions"),
        sa.UniqueConstraint(
            "subscriber_id", "channel_id",
            name="uq_subscriptions_subscriber_channel",
        ),
    )
    op.create_index("idx_subscriptions_subscriber", "subscriptions", ["subscriber_id"])
    op.create_index("idx_subscriptions_channel", "subscriptions", ["channel_id"])


def downgrade() -> None:
    op.drop_table("subscriptions")
    op.drop_table("watch_history")
    op.drop_table("videos")
    op.drop_table("users")
