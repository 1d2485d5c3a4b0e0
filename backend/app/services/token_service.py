"""
services/token_service.py - Session token lifecycle.

Responsibilities:
  - Signing access / refresh JWT pairs (HS256, PyJWT)
  - Verifying access tokens for the session guard
  - Rotating refresh tokens
  - Invalidating a user's session on logout

Token design:
  - Access token:  sub, username, email, full_name, iat, exp, type="access".
                   Signed with ACCESS_TOKEN_SECRET, TTL ACCESS_TOKEN_EXPIRES.
  - Refresh token: sub, iat, exp, jti, type="refresh".
                   Signed with REFRESH_TOKEN_SECRET, TTL REFRESH_TOKEN_EXPIRES.
                   The raw token is mirrored in users.refresh_token.

Single active session:
  Each user has exactly one honoured refresh token. issue_pair() overwrites
  it unconditionally, so a new login silently revokes the previous one.
  rotate() only accepts the currently stored token and replaces it with a
  compare-and-swap (credential_store.swap_refresh_token), so of two
  concurrent rotations presenting the same token at most one succeeds.

Every failure is reported as AuthError(UNAUTHORIZED) with a generic message.
The precise reason is logged at debug level only.

Layer rules:
  - No imports from routes or schemas
  - No use of flask.request, flask.g, or HTTP status codes
  - current_app.config is read for secrets and TTLs only
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timezone

import jwt
from flask import current_app
from sqlalchemy.orm import Session

from backend.app.errors import AuthError
from backend.app.models.user import User
from backend.app.services import credential_store

logger = logging.getLogger(__name__)

ACCESS = "access"
REFRESH = "refresh"

_INVALID_REFRESH_MESSAGE = "Invalid or expired refresh token."
_INVALID_ACCESS_MESSAGE = "Invalid or expired access token."


# ── Private helpers ────────────────────────────────────────────────────────

def _algorithm() -> str:
    return current_app.config.get("JWT_ALGORITHM", "HS256")


def _create_access_token(user: User) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user.id),
        "username": user.username,
        "email": user.email,
        "full_name": user.full_name,
        "type": ACCESS,
        "iat": now,
        "exp": now + current_app.config["ACCESS_TOKEN_EXPIRES"],
    }
    return jwt.encode(
        payload,
        current_app.config["ACCESS_TOKEN_SECRET"],
        algorithm=_algorithm(),
    )


def _create_refresh_token(user_id: int) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "type": REFRESH,
        "iat": now,
        "exp": now + current_app.config["REFRESH_TOKEN_EXPIRES"],
        # Two tokens issued in the same second must still differ, otherwise
        # a rotation could hand back the token it just replaced.
        "jti": secrets.token_hex(8),
    }
    return jwt.encode(
        payload,
        current_app.config["REFRESH_TOKEN_SECRET"],
        algorithm=_algorithm(),
    )


def _decode(token: str | None, secret_key: str, expected_type: str) -> int:
    """
    Verifies signature, expiry and token type. Returns the subject user id.
    Raises AuthError on any failure.
    """
    message = _INVALID_ACCESS_MESSAGE if expected_type == ACCESS else _INVALID_REFRESH_MESSAGE
    if not token:
        logger.debug("%s token rejected: missing", expected_type)
        raise AuthError(message)

    try:
        payload = jwt.decode(
            token,
            current_app.config[secret_key],
            algorithms=[_algorithm()],
            options={"require": ["exp", "iat", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        logger.debug("%s token rejected: expired", expected_type)
        raise AuthError(message)
    except jwt.InvalidTokenError as exc:
        logger.debug("%s token rejected: %s", expected_type, exc)
        raise AuthError(message)

    if payload.get("type") != expected_type:
        logger.debug("%s token rejected: wrong type %r", expected_type, payload.get("type"))
        raise AuthError(message)

    try:
        return int(payload["sub"])
    except (TypeError, ValueError):
        logger.debug("%s token rejected: non-integer sub", expected_type)
        raise AuthError(message)


# ── Public service functions ───────────────────────────────────────────────

def issue_pair(user: User, session: Session) -> dict:
    """
    Signs a fresh access + refresh pair for `user` and stores the refresh
    token, overwriting whatever was stored before.

    Returns: {"access_token": "...", "refresh_token": "..."}
    """
    access_token = _create_access_token(user)
    refresh_token = _create_refresh_token(user.id)
    credential_store.set_refresh_token(user.id, refresh_token, session=session)
    logger.info("issued token pair for user id=%s", user.id)
    return {
        "access_token": access_token,
        "refresh_token": refresh_token,
    }


def verify_access_token(token: str | None) -> int:
    """Verification primitive for the session guard. Returns the user id."""
    return _decode(token, "ACCESS_TOKEN_SECRET", ACCESS)


def verify_refresh_token(token: str | None) -> int:
    return _decode(token, "REFRESH_TOKEN_SECRET", REFRESH)


def rotate(presented_refresh_token: str | None, session: Session) -> dict:
    """
    Exchanges the currently stored refresh token for a brand-new pair.

    Raises AuthError if:
      - the token is missing, malformed, forged, expired or not a refresh token
      - the subject no longer exists
      - the token is not the one currently stored (rotated out, logged out,
        or superseded by a newer login)
      - a concurrent rotation replaced the stored token first

    Returns: {"access_token": "...", "refresh_token": "..."}
    """
    user_id = verify_refresh_token(presented_refresh_token)

    user = credential_store.find_by_id(user_id, session=session)
    if user is None:
        logger.debug("refresh token rejected: user id=%s does not exist", user_id)
        raise AuthError(_INVALID_REFRESH_MESSAGE)

    if user.refresh_token is None or not secrets.compare_digest(
            user.refresh_token, presented_refresh_token
    ):
        logger.warning("stale or reused refresh token presented for user id=%s", user_id)
        raise AuthError(_INVALID_REFRESH_MESSAGE)

    access_token = _create_access_token(user)
    refresh_token = _create_refresh_token(user.id)
    swapped = credential_store.swap_refresh_token(
        user.id,
        expected=presented_refresh_token,
        new=refresh_token,
        session=session,
    )
    if not swapped:
        logger.warning("refresh token rotation lost a race for user id=%s", user_id)
        raise AuthError(_INVALID_REFRESH_MESSAGE)

    logger.info("rotated refresh token for user id=%s", user_id)
    return {
        "access_token": access_token,
        "refresh_token": refresh_token,
    }


def invalidate(user_id: int, session: Session) -> None:
    """Clears the stored refresh token; every outstanding one stops rotating."""
    credential_store.set_refresh_token(user_id, None, session=session)
    logger.info("invalidated session for user id=%s", user_id)
