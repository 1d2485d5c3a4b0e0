"""
services/auth_service.py - Registration, login, logout and token refresh.

Responsibilities:
  - Registration: validation, uniqueness, image uploads, user creation
  - Login by username or email
  - Logout (session invalidation)
  - Refresh-token rotation
  - Current-user lookup

Layer rules:
  - No imports from routes or schemas
  - No use of flask.request, flask.g, or HTTP status codes
  - Commits are the route's responsibility - only flush here.

Registration ordering:
  Fields and uniqueness are checked first, then the avatar (required) and
  cover image (optional) are uploaded, and only then is the user row
  created. A failed upload therefore never leaves an account behind.
"""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session
from werkzeug.datastructures import FileStorage

from backend.app.errors import AuthError, ErrorCode, NotFoundError, UpstreamError, ValidationError
from backend.app.services import credential_store, storage_service, token_service

logger = logging.getLogger(__name__)


def _has_file(file: FileStorage | None) -> bool:
    return file is not None and bool(file.filename)


# ── Public service functions ───────────────────────────────────────────────

def register_user(
        username: str,
        email: str,
        password: str,
        full_name: str,
        avatar_file: FileStorage | None,
        session: Session,
        cover_file: FileStorage | None = None,
) -> dict:
    """
    Creates a new account. No tokens are issued; the client logs in next.

    Raises:
      ValidationError(MISSING_FIELD)     - a required field is empty
      ValidationError(INVALID_FIELD)     - password too long for bcrypt
      ValidationError(AVATAR_REQUIRED)   - no avatar file
      ConflictError(DUPLICATE_*)         - username or email taken
      UpstreamError(UPLOAD_FAILED)       - avatar / cover upload failed
      UpstreamError(REGISTRATION_FAILED) - user row missing right after creation

    Returns: sanitized user dict
    """
    cleaned = credential_store.require_fields(
        username=username,
        email=email,
        password=password,
        full_name=full_name,
    )
    credential_store.check_password_length(password)
    if not _has_file(avatar_file):
        raise ValidationError(
            ErrorCode.AVATAR_REQUIRED,
            "Avatar is required.",
            field="avatar",
        )
    credential_store.ensure_available(cleaned["username"], cleaned["email"], session=session)

    avatar_url = storage_service.upload_file(avatar_file)
    cover_image_url = storage_service.upload_file(cover_file) if _has_file(cover_file) else ""

    user = credential_store.create_user(
        username=cleaned["username"],
        email=cleaned["email"],
        password=password,
        full_name=cleaned["full_name"],
        avatar_url=avatar_url,
        cover_image_url=cover_image_url,
        session=session,
    )

    created = credential_store.find_by_id(user.id, session=session)
    if created is None:
        raise UpstreamError(
            ErrorCode.REGISTRATION_FAILED,
            "Something went wrong while registering the user.",
        )
    return credential_store.sanitize(created)


def login_user(
        identifier: str,
        password: str,
        session: Session,
) -> dict:
    """
    Validates credentials and issues a new token pair, replacing any session
    the user had before.

    `identifier` may be the username or the email address.

    Raises:
      ValidationError(MISSING_FIELD)  - identifier or password empty
      AuthError(INVALID_CREDENTIALS)  - unknown user or wrong password.
        Same error for both to avoid username enumeration.

    Returns: {"user": {...}, "access_token": "...", "refresh_token": "..."}
    """
    credential_store.require_fields(username=identifier, password=password)

    user = credential_store.find_by_username_or_email(identifier, session=session)
    if user is None or not credential_store.verify_password(user, password):
        raise AuthError(
            "The username or password is incorrect.",
            code=ErrorCode.INVALID_CREDENTIALS,
        )

    tokens = token_service.issue_pair(user, session=session)
    logger.info("user id=%s logged in", user.id)

    return {
        "user": credential_store.sanitize(user),
        **tokens,
    }


def logout_user(user_id: int, session: Session) -> None:
    """Clears the stored refresh token. Outstanding access tokens expire naturally."""
    token_service.invalidate(user_id, session=session)


def refresh_session(presented_refresh_token: str | None, session: Session) -> dict:
    """
    Rotates the refresh token.

    Raises:
      AuthError(UNAUTHORIZED) - invalid, expired, stale or reused token

    Returns: {"access_token": "...", "refresh_token": "..."}
    """
    return token_service.rotate(presented_refresh_token, session=session)


def get_current_user(user_id: int, session: Session) -> dict:
    """
    Returns the profile of the currently authenticated user.

    Raises:
      NotFoundError(USER_NOT_FOUND) - user_id no longer exists.
    """
    user = credential_store.find_by_id(user_id, session=session)
    if user is None:
        raise NotFoundError(
            ErrorCode.USER_NOT_FOUND,
            f"User {user_id} not found.",
        )
    return credential_store.sanitize(user)
