"""
services/credential_store.py - Owner of the User record.

Responsibilities:
  - Creating users (field validation, uniqueness, bcrypt hashing)
  - Lookups by id and by username-or-email
  - Password verification
  - The sanitized public projection of a user
  - Narrow mutators for refresh token, password and profile fields

Layer rules:
  - No imports from routes or schemas
  - No use of flask.request, flask.g, or HTTP status codes
  - current_app.config is read only for BCRYPT_LOG_ROUNDS
  - Commits are the route's responsibility - only flush here.

Lookups return None for "not found". Database failures are wrapped in
UpstreamError so callers can tell the two apart.

The mutators (set_refresh_token, swap_refresh_token, set_password,
update_profile_fields) touch only the columns they name; they do not
re-validate or re-hash anything else on the row.
"""

from __future__ import annotations

import logging

import bcrypt
from flask import current_app
from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from backend.app.errors import ConflictError, ErrorCode, UpstreamError, ValidationError
from backend.app.models.user import User

logger = logging.getLogger(__name__)

# Columns update_profile_fields() is allowed to write.
PROFILE_FIELDS = ("full_name", "email", "avatar_url", "cover_image_url")

MAX_PASSWORD_BYTES = 72


# ── Private helpers ────────────────────────────────────────────────────────

def _normalise(value: str | None) -> str:
    return (value or "").strip()


def _iso(value) -> str | None:
    return value.isoformat() if value is not None else None


def _hash_password(password: str) -> str:
    """bcrypt hash of `password`. Cost factor from BCRYPT_LOG_ROUNDS."""
    rounds = current_app.config.get("BCRYPT_LOG_ROUNDS", 12)
    try:
        return bcrypt.hashpw(
            password.encode("utf-8"),
            bcrypt.gensalt(rounds=rounds),
        ).decode("utf-8")
    except (ValueError, TypeError) as exc:
        raise UpstreamError(
            ErrorCode.INTERNAL_ERROR,
            "Password could not be hashed.",
        ) from exc


def _store_error(exc: SQLAlchemyError, action: str) -> UpstreamError:
    logger.error("credential store failure during %s: %s", action, exc)
    return UpstreamError(
        ErrorCode.STORE_ERROR,
        f"The user store failed while trying to {action}.",
    )


def require_fields(**fields: str | None) -> dict[str, str]:
    """Trims every value; raises ValidationError naming the empty ones."""
    cleaned = {name: _normalise(value) for name, value in fields.items()}
    missing = [name for name, value in cleaned.items() if not value]
    if missing:
        raise ValidationError(
            ErrorCode.MISSING_FIELD,
            "All fields are required.",
            field=missing[0],
            errors=[{"field": name, "message": "This field is required."} for name in missing],
        )
    return cleaned


def check_password_length(password: str, field: str = "password") -> None:
    """bcrypt only reads the first MAX_PASSWORD_BYTES bytes; longer input is refused."""
    if len((password or "").encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValidationError(
            ErrorCode.INVALID_FIELD,
            f"Password must be at most {MAX_PASSWORD_BYTES} bytes long.",
            field=field,
        )


def _find_conflict(username: str, email: str, session: Session) -> ConflictError | None:
    existing = session.execute(
        select(User).where(
            or_(
                func.lower(User.username) == username,
                func.lower(User.email) == email,
            )
        )
    ).scalars().first()
    if existing is None:
        return None
    if existing.username.lower() == username:
        return ConflictError(
            ErrorCode.DUPLICATE_USERNAME,
            f"The username '{username}' is already taken.",
            field="username",
        )
    return ConflictError(
        ErrorCode.DUPLICATE_EMAIL,
        f"The email address '{email}' is already registered.",
        field="email",
    )


# ── Public functions ───────────────────────────────────────────────────────

def ensure_available(username: str, email: str, session: Session) -> None:
    """Raises ConflictError if the username or email is already in use."""
    try:
        conflict = _find_conflict(
            _normalise(username).lower(),
            _normalise(email).lower(),
            session,
        )
    except SQLAlchemyError as exc:
        raise _store_error(exc, "check for existing users") from exc
    if conflict is not None:
        raise conflict


def create_user(
        username: str,
        email: str,
        password: str,
        full_name: str,
        avatar_url: str,
        session: Session,
        cover_image_url: str | None = None,
) -> User:
    """
    Creates and flushes a new User. Returns the full entity; callers must
    pass it through sanitize() before exposing it.

    Raises:
      ValidationError(MISSING_FIELD)      - a required field is empty after trimming
      ValidationError(INVALID_FIELD)      - password longer than MAX_PASSWORD_BYTES
      ConflictError(DUPLICATE_USERNAME)   - username taken (case-insensitive)
      ConflictError(DUPLICATE_EMAIL)      - email taken (case-insensitive)
      UpstreamError(STORE_ERROR)          - database failure
    """
    cleaned = require_fields(
        username=username,
        email=email,
        password=password,
        full_name=full_name,
        avatar_url=avatar_url,
    )
    check_password_length(password)
    username = cleaned["username"].lower()
    email = cleaned["email"].lower()
    ensure_available(username, email, session=session)

    user = User(
        username=username,
        email=email,
        full_name=cleaned["full_name"],
        avatar_url=cleaned["avatar_url"],
        cover_image_url=_normalise(cover_image_url),
        password_hash=_hash_password(password),
    )
    session.add(user)
    try:
        session.flush()  # populate user.id
    except IntegrityError as exc:
        # Lost a race with a concurrent registration for the same name/email.
        session.rollback()
        if "email" in str(exc.orig).lower():
            raise ConflictError(
                ErrorCode.DUPLICATE_EMAIL,
                f"The email address '{email}' is already registered.",
                field="email",
            ) from exc
        raise ConflictError(
            ErrorCode.DUPLICATE_USERNAME,
            f"The username '{username}' is already taken.",
            field="username",
        ) from exc
    except SQLAlchemyError as exc:
        raise _store_error(exc, "create the user") from exc

    logger.info("created user id=%s username=%s", user.id, user.username)
    return user


def verify_password(user: User, candidate: str) -> bool:
    """
    Checks `candidate` against the stored bcrypt hash.

    bcrypt.checkpw does the work for every candidate, so a mismatch costs the
    same as a match. Never raises: a malformed stored hash is a mismatch.
    """
    if not candidate or not getattr(user, "password_hash", None):
        return False
    if len(candidate.encode("utf-8")) > MAX_PASSWORD_BYTES:
        return False
    try:
        return bcrypt.checkpw(
            candidate.encode("utf-8"),
            user.password_hash.encode("utf-8"),
        )
    except ValueError:
        logger.warning("stored password hash for user id=%s is malformed", user.id)
        return False


def find_by_id(user_id: int, session: Session) -> User | None:
    try:
        return session.get(User, user_id)
    except SQLAlchemyError as exc:
        raise _store_error(exc, "load a user") from exc


def find_by_username_or_email(identifier: str, session: Session) -> User | None:
    """Case-insensitive match of `identifier` against username OR email."""
    identifier = _normalise(identifier).lower()
    if not identifier:
        return None
    try:
        return session.execute(
            select(User).where(
                or_(
                    func.lower(User.username) == identifier,
                    func.lower(User.email) == identifier,
                )
            )
        ).scalars().first()
    except SQLAlchemyError as exc:
        raise _store_error(exc, "look up a user") from exc


def find_by_username(username: str, session: Session) -> User | None:
    """Case-insensitive exact username match."""
    username = _normalise(username).lower()
    if not username:
        return None
    try:
        return session.execute(
            select(User).where(func.lower(User.username) == username)
        ).scalar_one_or_none()
    except SQLAlchemyError as exc:
        raise _store_error(exc, "look up a user") from exc


def sanitize(user: User) -> dict:
    """Public projection. Never includes password_hash or refresh_token."""
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "full_name": user.full_name,
        "avatar_url": user.avatar_url,
        "cover_image_url": user.cover_image_url or "",
        "created_at": _iso(user.created_at),
        "updated_at": _iso(user.updated_at),
    }


def set_refresh_token(user_id: int, token: str | None, session: Session) -> None:
    """Unconditionally overwrites the stored refresh token (None clears it)."""
    try:
        session.execute(
            update(User)
            .where(User.id == user_id)
            .values(refresh_token=token)
        )
    except SQLAlchemyError as exc:
        raise _store_error(exc, "store the refresh token") from exc


def swap_refresh_token(
        user_id: int,
        expected: str,
        new: str,
        session: Session,
) -> bool:
    """
    Replaces the stored refresh token with `new` only if it still equals
    `expected`. Returns True iff the row was updated.

    The check and the write are one UPDATE statement, so two callers racing
    with the same `expected` value cannot both win.
    """
    try:
        result = session.execute(
            update(User)
            .where(User.id == user_id, User.refresh_token == expected)
            .values(refresh_token=new)
        )
    except SQLAlchemyError as exc:
        raise _store_error(exc, "rotate the refresh token") from exc
    return result.rowcount == 1


def set_password(user_id: int, new_password: str, session: Session) -> None:
    if not _normalise(new_password):
        raise ValidationError(
            ErrorCode.MISSING_FIELD,
            "New password is required.",
            field="new_password",
        )
    check_password_length(new_password, field="new_password")
    password_hash = _hash_password(new_password)
    try:
        session.execute(
            update(User)
            .where(User.id == user_id)
            .values(password_hash=password_hash)
        )
    except SQLAlchemyError as exc:
        raise _store_error(exc, "update the password") from exc


def update_profile_fields(user_id: int, fields: dict, session: Session) -> User | None:
    """
    Partial update of whitelisted profile columns. Returns the updated user,
    or None if `user_id` does not exist.

    Only an email change re-checks uniqueness; nothing else is re-validated.
    """
    unknown = set(fields) - set(PROFILE_FIELDS)
    if unknown:
        raise ValidationError(
            ErrorCode.INVALID_FIELD,
            f"Field '{sorted(unknown)[0]}' cannot be updated.",
            field=sorted(unknown)[0],
        )

    user = find_by_id(user_id, session=session)
    if user is None:
        return None

    values = {name: _normalise(value) for name, value in fields.items()}
    if "email" in values:
        values["email"] = values["email"].lower()
        if values["email"] != user.email:
            taken = session.execute(
                select(User.id).where(
                    func.lower(User.email) == values["email"],
                    User.id != user_id,
                )
            ).first()
            if taken is not None:
                raise ConflictError(
                    ErrorCode.DUPLICATE_EMAIL,
                    f"The email address '{values['email']}' is already registered.",
                    field="email",
                )

    for name, value in values.items():
        setattr(user, name, value)
    try:
        session.flush()
    except IntegrityError as exc:
        # Another account claimed the same email between the check and the flush.
        session.rollback()
        if "email" not in values:
            raise _store_error(exc, "update the profile") from exc
        raise ConflictError(
            ErrorCode.DUPLICATE_EMAIL,
            f"The email address '{values['email']}' is already registered.",
            field="email",
        ) from exc
    except SQLAlchemyError as exc:
        raise _store_error(exc, "update the profile") from exc
    return user
