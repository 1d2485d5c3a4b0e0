"""
middleware/auth_middleware.py - Session guard decorator.

The @require_auth decorator:
  1. Reads the access token from the `accessToken` cookie, falling back to
     the Authorization header ("Bearer <token>")
  2. Verifies it through token_service.verify_access_token
  3. Resolves the subject to an existing user
  4. Attaches user_id (int) and current_user (sanitized dict) to flask.g
  5. Raises AuthError (401) if any step fails

The guard never writes: it does not touch the stored refresh token.
Services receive user_id as a plain integer argument, with no knowledge
of cookies or headers.
"""

from __future__ import annotations

import functools
import logging
from typing import Callable

from flask import g, request

from backend.app.errors import AuthError
from backend.app.extensions import db
from backend.app.services import credential_store, token_service

logger = logging.getLogger(__name__)

ACCESS_COOKIE = "accessToken"
REFRESH_COOKIE = "refreshToken"


def require_auth(f: Callable) -> Callable:
    """
    Route decorator that enforces an authenticated session.

    Usage:
        @users_bp.route("/current-user")
        @require_auth
        def current_user():
            user_id = g.user_id  # always an int when this runs
            ...
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        _authenticate_request()
        return f(*args, **kwargs)

    return decorated


def extract_access_token() -> str | None:
    """Cookie first, then Authorization header. None if neither is present."""
    token = request.cookies.get(ACCESS_COOKIE)
    if token:
        return token

    auth_header = request.headers.get("Authorization", "")
    if not auth_header:
        return None

    parts = auth_header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        logger.debug("malformed Authorization header")
        return None
    return parts[1]


def _authenticate_request() -> None:
    """
    Performs the full session check and sets flask.g.user_id / g.current_user.

    Separated from the decorator wrapper so tests can call it directly.
    """
    token = extract_access_token()
    if not token:
        raise AuthError("Unauthorized request.")

    user_id = token_service.verify_access_token(token)

    user = credential_store.find_by_id(user_id, session=db.session)
    if user is None:
        logger.debug("access token subject id=%s no longer exists", user_id)
        raise AuthError("Invalid access token.")

    g.user_id = user.id
    g.current_user = credential_store.sanitize(user)
