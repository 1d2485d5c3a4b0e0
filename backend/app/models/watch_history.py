"""
models/watch_history.py - WatchHistoryEntry table definition.

One row per (user, video) reference in a user's watch history. `position`
carries the list order; graph_service returns videos sorted by it.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.extensions import db


class WatchHistoryEntry(db.Model):
    __tablename__ = "watch_history"

    __table_args__ = (
        UniqueConstraint("user_id", "position", name="uq_watch_history_user_position"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    video_id: Mapped[int] = mapped_column(
        ForeignKey("videos.id", ondelete="CASCADE"),
        nullable=False,
    )

    position: Mapped[int] = mapped_column(Integer, nullable=False)

    watched_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    user: Mapped["User"] = relationship(  # noqa: F821
        "User",
        back_populates="watch_history",
    )

    video: Mapped["Video"] = relationship("Video")  # noqa: F821

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<WatchHistoryEntry user_id={self.user_id} "
            f"video_id={self.video_id} position={self.position}>"
        )
