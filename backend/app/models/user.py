"""
models/user.py - User table definition.

No business logic. No imports from services or routes.

password_hash and refresh_token are never serialised outward; the public
projection lives in services/credential_store.sanitize().
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.extensions import db


class User(db.Model):
    __tablename__ = "users"

    __table_args__ = (
        CheckConstraint(
            "LENGTH(TRIM(username)) > 0",
            name="ck_users_username_nonempty",
        ),
        CheckConstraint(
            "email LIKE '%@%'",
            name="ck_users_email_format",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    # Stored trimmed and lowercased; lookups are case-insensitive.
    username: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
        index=True,
    )

    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
    )

    full_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
    )

    avatar_url: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
    )

    cover_image_url: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
        default="",
        server_default="",
    )

    password_hash: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    # Single active session: the one refresh token currently honoured.
    # NULL after logout.
    refresh_token: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────
    # Read-only navigation - no logic here.

    videos: Mapped[list["Video"]] = relationship(  # noqa: F821
        "Video",
        back_populates="owner",
    )

    watch_history: Mapped[list["WatchHistoryEntry"]] = relationship(  # noqa: F821
        "WatchHistoryEntry",
        back_populates="user",
        order_by="WatchHistoryEntry.position",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<User id={self.id} username={self.username!r}>"
