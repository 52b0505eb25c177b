"""
Tests for token verification and the auth dependencies.

WHY: Every billing route sits behind require_admin, and the actor
resolved here is what delete-log entries and audit rows record. These
tests ensure:
1. Tokens round-trip their claims
2. Expired and tampered tokens are rejected
3. Only ADMIN actors pass require_admin
4. If-Match is parsed into an invoice version
"""

from datetime import timedelta

import pytest
from fastapi.security import HTTPAuthorizationCredentials
from jose import jwt

from billing.core.auth import create_access_token, verify_token
from billing.core.config import settings
from billing.core.deps import Actor, get_current_actor, get_expected_version, require_admin
from billing.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    TokenExpiredError,
    TokenInvalidError,
    ValidationError,
)


def _credentials(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


class TestTokens:
    """Test JWT creation and verification."""

    def test_claims_round_trip(self):
        token = create_access_token({"sub": "admin-1", "name": "Ada", "role": "ADMIN"})
        payload = verify_token(token)

        assert payload["sub"] == "admin-1"
        assert payload["name"] == "Ada"
        assert "exp" in payload
        assert "iat" in payload

    def test_expired_token_rejected(self):
        token = create_access_token({"sub": "admin-1"}, expires_delta=timedelta(seconds=-1))
        with pytest.raises(TokenExpiredError):
            verify_token(token)

    def test_wrong_signature_rejected(self):
        """Tokens signed with a different secret are rejected."""
        token = jwt.encode({"sub": "admin-1"}, "not-the-secret", algorithm=settings.JWT_ALGORITHM)
        with pytest.raises(TokenInvalidError):
            verify_token(token)

    def test_garbage_rejected(self):
        with pytest.raises(TokenInvalidError):
            verify_token("not.a.token")


@pytest.mark.asyncio
class TestGetCurrentActor:
    async def test_actor_from_claims(self):
        token = create_access_token(
            {"sub": "admin-1", "name": "Ada Admin", "email": "ada@example.com", "role": "admin"}
        )
        actor = await get_current_actor(_credentials(token))

        assert actor == Actor(
            id="admin-1", name="Ada Admin", email="ada@example.com", role="ADMIN"
        )

    async def test_name_defaults_to_subject(self):
        token = create_access_token({"sub": "admin-2", "role": "ADMIN"})
        actor = await get_current_actor(_credentials(token))
        assert actor.name == "admin-2"

    async def test_missing_credentials(self):
        with pytest.raises(AuthenticationError) as exc_info:
            await get_current_actor(None)
        assert exc_info.value.status_code == 401

    async def test_missing_subject(self):
        token = create_access_token({"role": "ADMIN"})
        with pytest.raises(AuthenticationError):
            await get_current_actor(_credentials(token))

    async def test_expired_token_is_401(self):
        token = create_access_token({"sub": "admin-1"}, expires_delta=timedelta(minutes=-5))
        with pytest.raises(AuthenticationError) as exc_info:
            await get_current_actor(_credentials(token))
        assert exc_info.value.status_code == 401


@pytest.mark.asyncio
class TestRequireAdmin:
    async def test_admin_passes(self, admin_actor):
        assert await require_admin(admin_actor) is admin_actor

    async def test_other_roles_forbidden(self):
        actor = Actor(id="client-7", name="Carl", email=None, role="CLIENT")
        with pytest.raises(AuthorizationError) as exc_info:
            await require_admin(actor)
        assert exc_info.value.status_code == 403


class TestExpectedVersion:
    """Test If-Match parsing."""

    @pytest.mark.parametrize(
        "header,expected",
        [
            (None, None),
            ("", None),
            ("3", 3),
            ('"3"', 3),
            ('W/"12"', 12),
            (" 4 ", 4),
        ],
    )
    def test_parsing(self, header, expected):
        assert get_expected_version(header) == expected

    def test_non_numeric_rejected(self):
        with pytest.raises(ValidationError):
            get_expected_version('"abc"')
