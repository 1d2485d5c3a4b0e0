"""
tests/integration/conftest.py - Fixtures and helpers for all integration tests.

Design:
  - The app is created once per session using create_app("testing").
    TestingConfig points at in-memory SQLite unless TEST_DATABASE_URL names
    a real database.
  - All tables are created once via db.create_all() at session start.
  - Between tests, all rows are deleted in FK-safe order so tests are isolated.
  - cloudinary.uploader.upload is replaced for every test; nothing is sent to
    the network. The fake records each call in `uploads`.
  - The test client does not keep a cookie jar. Tests that authenticate via
    cookies send the Cookie header themselves, which also keeps the
    secure-only cookies usable over the test client's plain http.

Helper functions (not fixtures) are provided for common operations:
  - register(client, ...)          → HTTP response
  - login(client, ...)             → data dict with user + tokens
  - auth_headers(token)            → {"Authorization": "Bearer <token>"}
  - cookie_headers(**cookies)      → {"Cookie": "name=value; ..."}
  - make_video(app, owner_id, ...) → video id
  - subscribe(app, subscriber_id, channel_id)
  - add_to_history(app, user_id, video_ids)
"""

from __future__ import annotations

import io
import os

import cloudinary.uploader
import pytest
from sqlalchemy import delete

from backend.app import create_app
from backend.app.extensions import db as _db
from backend.app.models.subscription import Subscription
from backend.app.models.user import User
from backend.app.models.video import Video
from backend.app.models.watch_history import WatchHistoryEntry

API = "/api/v1/users"


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def app():
    """Flask application in 'testing' mode, tables created once."""
    flask_app = create_app("testing")

    with flask_app.app_context():
        _db.create_all()

    yield flask_app

    with flask_app.app_context():
        _db.drop_all()


# ═══════════════════════════════════════════════════════════════════════════
# Function-scoped test isolation
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def clean_tables(app):
    """Deletes all rows after every test, children before parents."""
    yield

    with app.app_context():
        _db.session.rollback()
        for model in (WatchHistoryEntry, Subscription, Video, User):
            _db.session.execute(delete(model))
        _db.session.commit()


@pytest.fixture(autouse=True)
def uploads(monkeypatch):
    """
    Fake object storage. Returns the list of local paths handed to it;
    each call answers with a URL derived from the file name.
    """
    calls: list[str] = []

    def fake_upload(local_path, **options):
        calls.append(local_path)
        return {"secure_url": f"https://res.cloudinary.test/{os.path.basename(local_path)}"}

    monkeypatch.setattr(cloudinary.uploader, "upload", fake_upload)
    return calls


# ═══════════════════════════════════════════════════════════════════════════
# Client fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def client(app):
    """Flask test client without a cookie jar (function-scoped)."""
    return app.test_client(use_cookies=False)


# ═══════════════════════════════════════════════════════════════════════════
# Shared helper functions (not fixtures)
# ═══════════════════════════════════════════════════════════════════════════

def image(name: str = "avatar.png") -> tuple:
    return io.BytesIO(b"\x89PNG\r\n\x1a\n fake image"), name


def register(
    client,
    username: str = "alice",
    email: str | None = None,
    password: str = "Password1",
    full_name: str | None = None,
    with_avatar: bool = True,
    with_cover: bool = False,
):
    """POSTs a multipart registration and returns the raw response."""
    if email is None:
        email = f"{username}@test.com"
    data = {
        "username": username,
        "email": email,
        "password": password,
        "full_name": full_name or username.title(),
    }
    if with_avatar:
        data["avatar"] = image()
    if with_cover:
        data["cover_image"] = image("cover.png")
    return client.post(
        f"{API}/register",
        data=data,
        content_type="multipart/form-data",
    )


def login(client, username: str = "alice", password: str = "Password1") -> dict:
    """
    Logs in and returns the response data dict.
    Returns: {"user": {...}, "access_token": "...", "refresh_token": "..."}
    """
    resp = client.post(f"{API}/login", json={"username": username, "password": password})
    assert resp.status_code == 200, resp.get_json()
    return resp.get_json()["data"]


def register_and_login(client, username: str = "alice", password: str = "Password1") -> dict:
    resp = register(client, username=username, password=password)
    assert resp.status_code == 201, resp.get_json()
    return login(client, username=username, password=password)


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def cookie_headers(**cookies: str) -> dict:
    return {"Cookie": "; ".join(f"{name}={value}" for name, value in cookies.items())}


def stored_refresh_token(app, user_id: int) -> str | None:
    with app.app_context():
        return _db.session.get(User, user_id).refresh_token


def make_video(app, owner_id: int | None, title: str = "A video") -> int:
    with app.app_context():
        video = Video(
            owner_id=owner_id,
            title=title,
            description=f"{title} description",
            video_file_url=f"https://res.cloudinary.test/{title}.mp4",
            thumbnail_url=f"https://res.cloudinary.test/{title}.png",
            duration=61.5,
        )
        _db.session.add(video)
        _db.session.commit()
        return video.id


def subscribe(app, subscriber_id: int, channel_id: int) -> None:
    with app.app_context():
        _db.session.add(Subscription(subscriber_id=subscriber_id, channel_id=channel_id))
        _db.session.commit()


def add_to_history(app, user_id: int, video_ids: list[int]) -> None:
    with app.app_context():
        for position, video_id in enumerate(video_ids):
            _db.session.add(
                WatchHistoryEntry(user_id=user_id, video_id=video_id, position=position)
            )
        _db.session.commit()
