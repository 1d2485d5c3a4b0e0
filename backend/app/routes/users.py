"""
routes/users.py - User, session and channel route handlers.

Layer rules:
  - Parse request body / form / files
  - Validate with the appropriate schema (raises ValidationError on bad input)
  - Call exactly ONE service function
  - Commit the DB session
  - Return the standard response envelope:
      {"data": {...}, "message": "...", "warnings": []}

No business logic here. No DB queries.
AppError propagates to the global error handler in app/__init__.py - routes
never catch it.

Endpoints (base url_prefix=/api/v1/users):
  POST   /register         → 201  multipart: fields + avatar (+ cover_image)
  POST   /login            → 200  sets accessToken / refreshToken cookies
  POST   /logout           → 200  (auth) clears cookies
  POST   /refresh-token    → 200  rotates; sets cookies
  POST   /change-password  → 200  (auth)
  GET    /current-user     → 200  (auth)
  PATCH  /update-account   → 200  (auth)
  PATCH  /avatar           → 200  (auth) multipart: avatar
  PATCH  /cover-image      → 200  (auth) multipart: cover_image
  GET    /c/<username>     → 200  (auth) channel profile
  GET    /history          → 200  (auth) watch history
"""

from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from backend.app.extensions import db
from backend.app.middleware.auth_middleware import ACCESS_COOKIE, REFRESH_COOKIE, require_auth
from backend.app.schemas.user_schema import (
    ChangePasswordSchema,
    LoginSchema,
    RefreshTokenSchema,
    RegisterSchema,
    UpdateAccountSchema,
)
from backend.app.services import account_service, auth_service, graph_service

users_bp = Blueprint("users", __name__)


def _envelope(data, message: str, status: int = 200):
    return jsonify({"data": data, "message": message, "warnings": []}), status


def _request_data() -> dict:
    """JSON body if present, otherwise form fields."""
    payload = request.get_json(silent=True)
    if payload is None:
        payload = request.form.to_dict()
    return payload


def _cookie_options() -> dict:
    return {
        "httponly": True,
        "secure": current_app.config.get("COOKIE_SECURE", True),
        "samesite": current_app.config.get("COOKIE_SAMESITE", "Lax"),
    }


def _set_token_cookies(response, tokens: dict):
    options = _cookie_options()
    response.set_cookie(ACCESS_COOKIE, tokens["access_token"], **options)
    response.set_cookie(REFRESH_COOKIE, tokens["refresh_token"], **options)
    return response


@users_bp.route("/register", methods=["POST"])
def register():
    """POST /users/register - Create account. (No auth required.)"""
    data = RegisterSchema().load(request.form.to_dict())
    result = auth_service.register_user(
        username=data["username"],
        email=data["email"],
        password=data["password"],
        full_name=data["full_name"],
        avatar_file=request.files.get("avatar"),
        cover_file=request.files.get("cover_image"),
        session=db.session,
    )
    db.session.commit()
    return _envelope(result, "User registered successfully.", 201)


@users_bp.route("/login", methods=["POST"])
def login():
    """POST /users/login - Authenticate; return and set tokens. (No auth required.)"""
    data = LoginSchema().load(_request_data())
    result = auth_service.login_user(
        identifier=data["username"] or data["email"],
        password=data["password"],
        session=db.session,
    )
    db.session.commit()
    response, status = _envelope(result, "User logged in successfully.")
    return _set_token_cookies(response, result), status


@users_bp.route("/logout", methods=["POST"])
@require_auth
def logout():
    """POST /users/logout - Invalidate the session and clear cookies. (Auth required.)"""
    auth_service.logout_user(user_id=g.user_id, session=db.session)
    db.session.commit()
    response, status = _envelope({}, "User logged out successfully.")
    options = _cookie_options()
    response.delete_cookie(ACCESS_COOKIE, **options)
    response.delete_cookie(REFRESH_COOKIE, **options)
    return response, status


@users_bp.route("/refresh-token", methods=["POST"])
def refresh_token():
    """POST /users/refresh-token - Exchange the refresh token for a new pair."""
    data = RefreshTokenSchema().load(_request_data())
    presented = request.cookies.get(REFRESH_COOKIE) or data["refresh_token"]
    result = auth_service.refresh_session(
        presented_refresh_token=presented,
        session=db.session,
    )
    db.session.commit()
    response, status = _envelope(result, "Access token refreshed.")
    return _set_token_cookies(response, result), status


@users_bp.route("/change-password", methods=["POST"])
@require_auth
def change_password():
    """POST /users/change-password - Replace the password. (Auth required.)"""
    data = ChangePasswordSchema().load(_request_data())
    account_service.change_password(
        user_id=g.user_id,
        old_password=data["old_password"],
        new_password=data["new_password"],
        session=db.session,
    )
    db.session.commit()
    return _envelope({}, "Password changed successfully.")


@users_bp.route("/current-user", methods=["GET"])
@require_auth
def current_user():
    """GET /users/current-user - Return the authenticated user's profile."""
    result = auth_service.get_current_user(user_id=g.user_id, session=db.session)
    return _envelope(result, "Current user fetched successfully.")


@users_bp.route("/update-account", methods=["PATCH"])
@require_auth
def update_account():
    """PATCH /users/update-account - Update full name and email."""
    data = UpdateAccountSchema().load(_request_data())
    result = account_service.update_profile(
        user_id=g.user_id,
        full_name=data["full_name"],
        email=data["email"],
        session=db.session,
    )
    db.session.commit()
    return _envelope(result, "Account details updated successfully.")


@users_bp.route("/avatar", methods=["PATCH"])
@require_auth
def update_avatar():
    """PATCH /users/avatar - Upload and set a new avatar."""
    result = account_service.update_avatar(
        user_id=g.user_id,
        file=request.files.get("avatar"),
        session=db.session,
    )
    db.session.commit()
    return _envelope(result, "Avatar updated successfully.")


@users_bp.route("/cover-image", methods=["PATCH"])
@require_auth
def update_cover_image():
    """PATCH /users/cover-image - Upload and set a new cover image."""
    result = account_service.update_cover_image(
        user_id=g.user_id,
        file=request.files.get("cover_image"),
        session=db.session,
    )
    db.session.commit()
    return _envelope(result, "Cover image updated successfully.")


@users_bp.route("/c/<string:username>", methods=["GET"])
@require_auth
def channel_profile(username: str):
    """GET /users/c/:username - Channel profile as seen by the caller."""
    result = graph_service.get_channel_profile(
        username=username,
        viewer_id=g.user_id,
        session=db.session,
    )
    return _envelope(result, "Channel profile fetched successfully.")


@users_bp.route("/history", methods=["GET"])
@require_auth
def watch_history():
    """GET /users/history - The caller's watch history with video owners."""
    result = graph_service.get_watch_history(viewer_id=g.user_id, session=db.session)
    return _envelope(result, "Watch history fetched successfully.")
