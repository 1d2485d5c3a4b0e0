"""
services/account_service.py - Self-service account changes.

Password, profile, avatar and cover image updates for an already
authenticated user. Each path writes only the columns it owns.

Layer rules:
  - No Flask request imports. Pure Python with a SQLAlchemy session parameter.
  - Commits are the route's responsibility - only flush here.
"""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session
from werkzeug.datastructures import FileStorage

from backend.app.errors import AuthError, ErrorCode, NotFoundError, ValidationError
from backend.app.models.user import User
from backend.app.services import credential_store, storage_service

logger = logging.getLogger(__name__)


def _get_user_or_404(user_id: int, session: Session) -> User:
    """Returns the User or raises USER_NOT_FOUND (404)."""
    user = credential_store.find_by_id(user_id, session=session)
    if user is None:
        raise NotFoundError(
            ErrorCode.USER_NOT_FOUND,
            f"User {user_id} not found.",
        )
    return user


def change_password(
        user_id: int,
        old_password: str,
        new_password: str,
        session: Session,
) -> None:
    """
    Raises:
      ValidationError(MISSING_FIELD)  - either password empty
      AuthError(INVALID_CREDENTIALS)  - old password does not match
    """
    credential_store.require_fields(old_password=old_password, new_password=new_password)
    user = _get_user_or_404(user_id, session)

    if not credential_store.verify_password(user, old_password):
        raise AuthError(
            "The old password is incorrect.",
            code=ErrorCode.INVALID_CREDENTIALS,
        )

    credential_store.set_password(user_id, new_password, session=session)
    logger.info("user id=%s changed password", user_id)


def update_profile(
        user_id: int,
        full_name: str,
        email: str,
        session: Session,
) -> dict:
    """Both fields are required. Returns the sanitized user."""
    cleaned = credential_store.require_fields(full_name=full_name, email=email)
    user = credential_store.update_profile_fields(user_id, cleaned, session=session)
    if user is None:
        raise NotFoundError(
            ErrorCode.USER_NOT_FOUND,
            f"User {user_id} not found.",
        )
    return credential_store.sanitize(user)


def _replace_image(
        user_id: int,
        file: FileStorage | None,
        column: str,
        field: str,
        session: Session,
) -> dict:
    if file is None or not file.filename:
        raise ValidationError(
            ErrorCode.MISSING_FIELD,
            f"The '{field}' file is missing.",
            field=field,
        )
    _get_user_or_404(user_id, session)

    url = storage_service.upload_file(file)
    user = credential_store.update_profile_fields(user_id, {column: url}, session=session)
    if user is None:
        # Row deleted between the existence check and the write.
        raise NotFoundError(
            ErrorCode.USER_NOT_FOUND,
            f"User {user_id} not found.",
        )
    return credential_store.sanitize(user)


def update_avatar(user_id: int, file: FileStorage | None, session: Session) -> dict:
    return _replace_image(user_id, file, "avatar_url", "avatar", session)


def update_cover_image(user_id: int, file: FileStorage | None, session: Session) -> dict:
    return _replace_image(user_id, file, "cover_image_url", "cover_image", session)
