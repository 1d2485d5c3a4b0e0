"""
schemas/user_schema.py - Marshmallow schemas for the /users endpoints.

Validation responsibility:
  - This file: field presence, types, lengths, formats.
  - services/credential_store.py: DUPLICATE_EMAIL / DUPLICATE_USERNAME checks
    (require a DB lookup - not a schema concern) and the trimmed-empty check
    repeated for callers that bypass the HTTP layer.

IMPORTANT: All schemas inherit from marshmallow.Schema directly.
           Do NOT use ma.Schema - it requires an active Flask app context
           and breaks unit tests. See extensions.py.
"""

from __future__ import annotations

from marshmallow import (
    EXCLUDE,
    Schema,
    ValidationError,
    fields,
    pre_load,
    validate,
    validates,
    validates_schema,
)


def _check_password_strength(value: str) -> None:
    if len(value) < 8:
        raise ValidationError("Password must be at least 8 characters long.")
    if not any(c.isalpha() for c in value):
        raise ValidationError("Password must contain at least one letter.")
    if not any(c.isdigit() for c in value):
        raise ValidationError("Password must contain at least one digit.")
    # bcrypt input limit
    if len(value.encode("utf-8")) > 72:
        raise ValidationError("Password must be at most 72 bytes long.")


class _TrimmedSchema(Schema):
    """Strips surrounding whitespace from every string input except passwords."""

    class Meta:
        unknown = EXCLUDE

    _untrimmed = ("password", "old_password", "new_password")

    @pre_load
    def strip_strings(self, data, **kwargs):
        if not hasattr(data, "items"):
            return data
        return {
            key: value.strip() if isinstance(value, str) and key not in self._untrimmed else value
            for key, value in data.items()
        }


class RegisterSchema(_TrimmedSchema):
    """
    POST /users/register (multipart form; files are read separately)

    Field rules:
      username  : 3–50 chars, letters, digits, underscore, dot
      email     : valid email format
      password  : min 8 chars, at least one letter and one digit
      full_name : 1–100 chars
    """

    username = fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=3,
                max=50,
                error="Username must be between 3 and 50 characters.",
            ),
            validate.Regexp(
                r"^[a-zA-Z0-9_.]+$",
                error="Username may only contain letters, numbers, dots and underscores.",
            ),
        ],
    )

    email = fields.Email(
        required=True,
        validate=validate.Length(max=255),
    )

    password = fields.Str(required=True, load_only=True)

    full_name = fields.Str(
        required=True,
        validate=validate.Length(
            min=1,
            max=100,
            error="Full name must be between 1 and 100 characters.",
        ),
    )

    @validates("password")
    def validate_password_strength(self, value: str, **kwargs) -> None:
        _check_password_strength(value)


class LoginSchema(_TrimmedSchema):
    """
    POST /users/login

    Accepts either username or email, plus password. Credential correctness
    is checked in auth_service.py (INVALID_CREDENTIALS, 401).
    """

    username = fields.Str(load_default=None)
    email = fields.Str(load_default=None)
    password = fields.Str(required=True, load_only=True)

    @validates_schema
    def require_identifier(self, data, **kwargs) -> None:
        if not data.get("username") and not data.get("email"):
            raise ValidationError(
                "Username or email is required.",
                field_name="username",
            )


class RefreshTokenSchema(_TrimmedSchema):
    """
    POST /users/refresh-token

    The token may instead arrive in the refreshToken cookie, so the body
    field is optional here.
    """

    refresh_token = fields.Str(load_default=None)


class ChangePasswordSchema(_TrimmedSchema):
    """POST /users/change-password"""

    old_password = fields.Str(required=True, load_only=True)
    new_password = fields.Str(required=True, load_only=True)

    @validates("new_password")
    def validate_password_strength(self, value: str, **kwargs) -> None:
        _check_password_strength(value)


class UpdateAccountSchema(_TrimmedSchema):
    """PATCH /users/update-account - both fields required."""

    full_name = fields.Str(
        required=True,
        validate=validate.Length(
            min=1,
            max=100,
            error="Full name must be between 1 and 100 characters.",
        ),
    )
    email = fields.Email(
        required=True,
        validate=validate.Length(max=255),
    )
