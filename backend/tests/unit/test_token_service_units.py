"""
Unit tests for token_service: signing, verification and rotation branches.

The credential store is patched out; no database is involved. An app context
is pushed (app_ctx fixture) because secrets and TTLs come from app config.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import jwt
import pytest

from backend.app.errors import AuthError, ErrorCode
from backend.app.services import token_service


def _user(**overrides):
    data = dict(
        id=7,
        username="alice",
        email="alice@example.com",
        full_name="Alice Liddell",
        refresh_token=None,
    )
    data.update(overrides)
    return SimpleNamespace(**data)


def _sign(app, claims: dict, secret_key: str = "REFRESH_TOKEN_SECRET") -> str:
    return jwt.encode(claims, app.config[secret_key], algorithm="HS256")


# ═══════════════════════════════════════════════════════════════════════════
# issue_pair
# ═══════════════════════════════════════════════════════════════════════════

class TestIssuePair:

    @patch("backend.app.services.token_service.credential_store.set_refresh_token")
    def test_pair_claims_and_persisted_refresh_token(self, mock_set, app_ctx):
        session = MagicMock()
        user = _user()

        pair = token_service.issue_pair(user, session=session)

        access = jwt.decode(
            pair["access_token"], app_ctx.config["ACCESS_TOKEN_SECRET"], algorithms=["HS256"],
        )
        refresh = jwt.decode(
            pair["refresh_token"], app_ctx.config["REFRESH_TOKEN_SECRET"], algorithms=["HS256"],
        )
        assert access["sub"] == "7"
        assert access["username"] == "alice"
        assert access["email"] == "alice@example.com"
        assert access["type"] == "access"
        assert refresh["sub"] == "7"
        assert refresh["type"] == "refresh"
        # refresh tokens carry only the subject, never identity claims
        assert "username" not in refresh
        assert "email" not in refresh
        assert refresh["exp"] - refresh["iat"] > access["exp"] - access["iat"]

        mock_set.assert_called_once_with(7, pair["refresh_token"], session=session)

    @patch("backend.app.services.token_service.credential_store.set_refresh_token")
    def test_two_pairs_in_the_same_second_differ(self, mock_set, app_ctx):
        user = _user()
        first = token_service.issue_pair(user, session=MagicMock())
        second = token_service.issue_pair(user, session=MagicMock())
        assert first["refresh_token"] != second["refresh_token"]


# ═══════════════════════════════════════════════════════════════════════════
# verify_access_token
# ═══════════════════════════════════════════════════════════════════════════

class TestVerifyAccessToken:

    @patch("backend.app.services.token_service.credential_store.set_refresh_token")
    def test_valid_access_token_returns_user_id(self, mock_set, app_ctx):
        pair = token_service.issue_pair(_user(id=42), session=MagicMock())
        assert token_service.verify_access_token(pair["access_token"]) == 42

    @pytest.mark.parametrize("token", [None, "", "not-a-jwt", "a.b.c"])
    def test_missing_or_garbage_token_raises(self, token, app_ctx):
        with pytest.raises(AuthError) as exc_info:
            token_service.verify_access_token(token)
        assert exc_info.value.code == ErrorCode.UNAUTHORIZED
        assert exc_info.value.http_status == 401

    @patch("backend.app.services.token_service.credential_store.set_refresh_token")
    def test_refresh_token_is_not_an_access_token(self, mock_set, app_ctx):
        pair = token_service.issue_pair(_user(), session=MagicMock())
        with pytest.raises(AuthError):
            token_service.verify_access_token(pair["refresh_token"])

    def test_expired_access_token_raises(self, app_ctx):
        past = datetime.now(timezone.utc) - timedelta(hours=1)
        token = _sign(
            app_ctx,
            {"sub": "7", "type": "access", "iat": past - timedelta(minutes=5), "exp": past},
            secret_key="ACCESS_TOKEN_SECRET",
        )
        with pytest.raises(AuthError):
            token_service.verify_access_token(token)

    def test_token_signed_with_wrong_secret_raises(self, app_ctx):
        now = datetime.now(timezone.utc)
        token = jwt.encode(
            {"sub": "7", "type": "access", "iat": now, "exp": now + timedelta(minutes=5)},
            "someone-elses-secret",
            algorithm="HS256",
        )
        with pytest.raises(AuthError):
            token_service.verify_access_token(token)

    def test_failure_messages_do_not_reveal_the_reason(self, app_ctx):
        past = datetime.now(timezone.utc) - timedelta(hours=1)
        expired = _sign(
            app_ctx,
            {"sub": "7", "type": "access", "iat": past, "exp": past},
            secret_key="ACCESS_TOKEN_SECRET",
        )
        messages = set()
        for token in (expired, "garbage"):
            with pytest.raises(AuthError) as exc_info:
                token_service.verify_access_token(token)
            messages.add((exc_info.value.code, exc_info.value.message))
        assert len(messages) == 1


# ═══════════════════════════════════════════════════════════════════════════
# rotate
# ═══════════════════════════════════════════════════════════════════════════

class TestRotate:

    def _issue(self, user):
        with patch("backend.app.services.token_service.credential_store.set_refresh_token"):
            return token_service.issue_pair(user, session=MagicMock())

    @patch("backend.app.services.token_service.credential_store.swap_refresh_token")
    @patch("backend.app.services.token_service.credential_store.find_by_id")
    def test_rotate_success_swaps_presented_for_new(self, mock_find, mock_swap, app_ctx):
        user = _user()
        pair = self._issue(user)
        user.refresh_token = pair["refresh_token"]
        mock_find.return_value = user
        mock_swap.return_value = True
        session = MagicMock()

        new_pair = token_service.rotate(pair["refresh_token"], session=session)

        assert new_pair["refresh_token"] != pair["refresh_token"]
        mock_swap.assert_called_once_with(
            7,
            expected=pair["refresh_token"],
            new=new_pair["refresh_token"],
            session=session,
        )

    @patch("backend.app.services.token_service.credential_store.find_by_id")
    def test_rotate_unknown_user_raises(self, mock_find, app_ctx):
        pair = self._issue(_user())
        mock_find.return_value = None

        with pytest.raises(AuthError):
            token_service.rotate(pair["refresh_token"], session=MagicMock())

    @patch("backend.app.services.token_service.credential_store.swap_refresh_token")
    @patch("backend.app.services.token_service.credential_store.find_by_id")
    def test_rotate_token_not_currently_stored_raises(self, mock_find, mock_swap, app_ctx):
        user = _user()
        old_pair = self._issue(user)
        current_pair = self._issue(user)
        user.refresh_token = current_pair["refresh_token"]
        mock_find.return_value = user

        with pytest.raises(AuthError):
            token_service.rotate(old_pair["refresh_token"], session=MagicMock())
        mock_swap.assert_not_called()

    @patch("backend.app.services.token_service.credential_store.swap_refresh_token")
    @patch("backend.app.services.token_service.credential_store.find_by_id")
    def test_rotate_after_invalidation_raises(self, mock_find, mock_swap, app_ctx):
        user = _user()
        pair = self._issue(user)
        user.refresh_token = None
        mock_find.return_value = user

        with pytest.raises(AuthError):
            token_service.rotate(pair["refresh_token"], session=MagicMock())
        mock_swap.assert_not_called()

    @patch("backend.app.services.token_service.credential_store.swap_refresh_token")
    @patch("backend.app.services.token_service.credential_store.find_by_id")
    def test_rotate_losing_the_swap_raises(self, mock_find, mock_swap, app_ctx):
        """Both callers saw the same stored token; the conditional update decides."""
        user = _user()
        pair = self._issue(user)
        user.refresh_token = pair["refresh_token"]
        mock_find.return_value = user
        mock_swap.return_value = False

        with pytest.raises(AuthError):
            token_service.rotate(pair["refresh_token"], session=MagicMock())

    def test_rotate_with_access_token_raises(self, app_ctx):
        pair = self._issue(_user())
        with pytest.raises(AuthError):
            token_service.rotate(pair["access_token"], session=MagicMock())

    def test_rotate_with_expired_refresh_token_raises(self, app_ctx):
        past = datetime.now(timezone.utc) - timedelta(days=1)
        token = _sign(app_ctx, {"sub": "7", "type": "refresh", "iat": past, "exp": past})
        with pytest.raises(AuthError):
            token_service.rotate(token, session=MagicMock())

    def test_rotate_with_non_integer_subject_raises(self, app_ctx):
        now = datetime.now(timezone.utc)
        token = _sign(
            app_ctx,
            {"sub": "alice", "type": "refresh", "iat": now, "exp": now + timedelta(minutes=5)},
        )
        with pytest.raises(AuthError):
            token_service.rotate(token, session=MagicMock())


@patch("backend.app.services.token_service.credential_store.set_refresh_token")
def test_invalidate_clears_stored_token(mock_set):
    session = MagicMock()
    token_service.invalidate(7, session=session)
    mock_set.assert_called_once_with(7, None, session=session)
