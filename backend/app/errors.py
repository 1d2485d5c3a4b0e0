"""
errors.py - AppError base class, error taxonomy and error code registry.

Every error returned by the API must use a code defined here.
Do not raise strings or generic exceptions from service or route code.

Taxonomy (one subclass per failure family, each with a fixed HTTP status):
  ValidationError  400 - missing / empty / malformed input
  AuthError        401 - bad credentials, invalid / expired / reused token
  NotFoundError    404 - unknown user or channel
  ConflictError    409 - duplicate username or email
  UpstreamError    500 - hashing, upload or persistence failure

AuthError is deliberately coarse: token failures all share one code so the
caller cannot tell "expired" from "forged" from "revoked".
"""

from __future__ import annotations


class AppError(Exception):

    http_status: int = 500

    def __init__(
            self,
            code: str,
            message: str,
            http_status: int | None = None,
            field: str | None = None,
            errors: list | None = None,
    ) -> None:
        super().__init__(message)
        self.code        = code
        self.message     = message
        if http_status is not None:
            self.http_status = http_status
        self.field       = field           # which request field caused the error
        self.errors      = errors or []    # optional sub-errors

    def to_dict(self) -> dict:
        payload = {
            "code":    self.code,
            "message": self.message,
            "errors":  list(self.errors),
        }
        if self.field is not None:
            payload["field"] = self.field
        return {"error": payload}

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(code={self.code!r}, "
            f"http_status={self.http_status}, "
            f"message={self.message!r})"
        )


class ValidationError(AppError):
    http_status = 400


class AuthError(AppError):
    http_status = 401

    def __init__(
            self,
            message: str = "Unauthorized request.",
            code: str | None = None,
    ) -> None:
        super().__init__(code or ErrorCode.UNAUTHORIZED, message)


class NotFoundError(AppError):
    http_status = 404


class ConflictError(AppError):
    http_status = 409


class UpstreamError(AppError):
    http_status = 500


# ── Error Code Registry ────────────────────────────────────────────────────
#
# These are the string values sent in the API response.
# Do not rename them without a major version bump.
# ──────────────────────────────────────────────────────────────────────────

class ErrorCode:

    # ── Input Errors (400) ─────────────────────────────────────────────────
    MISSING_FIELD              = "MISSING_FIELD"
    INVALID_FIELD              = "INVALID_FIELD"
    AVATAR_REQUIRED            = "AVATAR_REQUIRED"

    # ── Auth Errors (401) ──────────────────────────────────────────────────
    # UNAUTHORIZED covers every token failure (missing, malformed, expired,
    # forged, revoked, reused). INVALID_CREDENTIALS covers login and
    # change-password mismatches.
    UNAUTHORIZED               = "UNAUTHORIZED"
    INVALID_CREDENTIALS        = "INVALID_CREDENTIALS"

    # ── Not Found Errors (404) ─────────────────────────────────────────────
    USER_NOT_FOUND             = "USER_NOT_FOUND"
    CHANNEL_NOT_FOUND          = "CHANNEL_NOT_FOUND"
    RESOURCE_NOT_FOUND         = "RESOURCE_NOT_FOUND"

    # ── Conflict Errors (409) ──────────────────────────────────────────────
    DUPLICATE_EMAIL            = "DUPLICATE_EMAIL"
    DUPLICATE_USERNAME         = "DUPLICATE_USERNAME"

    # ── Request Errors ─────────────────────────────────────────────────────
    PAYLOAD_TOO_LARGE          = "PAYLOAD_TOO_LARGE"      # 413

    # ── Upstream Errors (500 / 502) ────────────────────────────────────────
    UPLOAD_FAILED              = "UPLOAD_FAILED"          # 502
    REGISTRATION_FAILED        = "REGISTRATION_FAILED"    # 500
    STORE_ERROR                = "STORE_ERROR"            # 500

    # ── System Errors (500) ────────────────────────────────────────────────
    INTERNAL_ERROR             = "INTERNAL_ERROR"
