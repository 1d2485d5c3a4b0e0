"""
models/subscription.py - Subscription edge table definition.

A row means "subscriber follows channel". Both ends are users.
No business logic. No imports from services or routes.

Indexes on both columns back the two range counts in graph_service
(by channel_id for subscriber counts, by subscriber_id for followed counts).
UNIQUE(subscriber_id, channel_id) keeps duplicate follows from inflating counts.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.extensions import db


class Subscription(db.Model):
    __tablename__ = "subscriptions"

    __table_args__ = (
        UniqueConstraint(
            "subscriber_id", "channel_id",
            name="uq_subscriptions_subscriber_channel",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    # ON DELETE CASCADE - an edge cannot outlive either endpoint.
    subscriber_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,   # idx_subscriptions_subscriber
    )

    channel_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,   # idx_subscriptions_channel
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    subscriber: Mapped["User"] = relationship(  # noqa: F821
        "User",
        foreign_keys=[subscriber_id],
    )

    channel: Mapped["User"] = relationship(  # noqa: F821
        "User",
        foreign_keys=[channel_id],
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Subscription id={self.id} "
            f"subscriber_id={self.subscriber_id} "
            f"channel_id={self.channel_id}>"
        )
