"""
services/graph_service.py - Read-only views over the subscription graph and
watch history.

Channel profile:
  Two indexed counts over the subscriptions edge table (by channel_id, by
  subscriber_id) plus one membership test, issued together as scalar
  subqueries of a single SELECT so all three see the same snapshot.

Watch history:
  The viewer's history rows in position order, joined to their videos, with
  each video's owner LEFT JOINed and collapsed to a single projection
  ({username, full_name, avatar_url}) or None.

No caching: every call re-derives the numbers from current table state.

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
  - Never writes.
"""

from __future__ import annotations

from sqlalchemy import exists, func, select
from sqlalchemy.orm import Session

from backend.app.errors import ErrorCode, NotFoundError, ValidationError
from backend.app.models.subscription import Subscription
from backend.app.models.user import User
from backend.app.models.video import Video
from backend.app.models.watch_history import WatchHistoryEntry
from backend.app.services import credential_store


# ── Private helpers ────────────────────────────────────────────────────────

def _count_edges(column, user_id: int):
    return (
        select(func.count(Subscription.id))
        .where(column == user_id)
        .scalar_subquery()
    )


def _owner_projection(username, full_name, avatar_url) -> dict | None:
    # Outer join with no owner row yields all-NULL owner columns.
    if username is None:
        return None
    return {
        "username": username,
        "full_name": full_name,
        "avatar_url": avatar_url,
    }


def _build_video_dict(video: Video, owner: dict | None) -> dict:
    return {
        "id": video.id,
        "title": video.title,
        "description": video.description,
        "video_file_url": video.video_file_url,
        "thumbnail_url": video.thumbnail_url,
        "duration": video.duration,
        "views": video.views,
        "is_published": video.is_published,
        "created_at": video.created_at.isoformat() if video.created_at else None,
        "owner": owner,
    }


# ── Public service functions ───────────────────────────────────────────────

def get_channel_profile(
        username: str,
        viewer_id: int | None,
        session: Session,
) -> dict:
    """
    Returns the public channel profile for `username` as seen by `viewer_id`.

    Raises:
      ValidationError(MISSING_FIELD)   - username empty after trimming
      NotFoundError(CHANNEL_NOT_FOUND) - no user with that username
    """
    if not (username or "").strip():
        raise ValidationError(
            ErrorCode.MISSING_FIELD,
            "Username is missing.",
            field="username",
        )

    target = credential_store.find_by_username(username, session=session)
    if target is None:
        raise NotFoundError(
            ErrorCode.CHANNEL_NOT_FOUND,
            f"Channel '{username.strip()}' does not exist.",
        )

    columns = [
        _count_edges(Subscription.channel_id, target.id),
        _count_edges(Subscription.subscriber_id, target.id),
    ]
    if viewer_id is not None:
        columns.append(
            exists().where(
                Subscription.channel_id == target.id,
                Subscription.subscriber_id == viewer_id,
            )
        )

    row = session.execute(select(*columns)).one()
    subscriber_count, subscribed_to_count = row[0], row[1]
    subscribed = row[2] if viewer_id is not None else False

    return {
        "username": target.username,
        "full_name": target.full_name,
        "avatar_url": target.avatar_url,
        "cover_image_url": target.cover_image_url or "",
        "email": target.email,
        "subscriber_count": int(subscriber_count),
        "channels_subscribed_to_count": int(subscribed_to_count),
        "is_subscribed": bool(subscribed),
    }


def get_watch_history(viewer_id: int, session: Session) -> list[dict]:
    """
    Returns the viewer's watched videos in history order, each with a single
    `owner` object (or None).

    Raises:
      NotFoundError(USER_NOT_FOUND) - viewer does not exist
    """
    if credential_store.find_by_id(viewer_id, session=session) is None:
        raise NotFoundError(
            ErrorCode.USER_NOT_FOUND,
            f"User {viewer_id} not found.",
        )

    stmt = (
        select(Video, User.username, User.full_name, User.avatar_url)
        .join(WatchHistoryEntry, WatchHistoryEntry.video_id == Video.id)
        .outerjoin(User, User.id == Video.owner_id)
        .where(WatchHistoryEntry.user_id == viewer_id)
        .order_by(WatchHistoryEntry.position.asc(), WatchHistoryEntry.id.asc())
    )
    rows = session.execute(stmt).all()

    return [
        _build_video_dict(video, _owner_projection(username, full_name, avatar_url))
        for video, username, full_name, avatar_url in rows
    ]
