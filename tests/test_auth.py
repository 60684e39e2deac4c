"""
Unit tests for password hashing and token handling.
"""
from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.api.routes.auth import (
    create_access_token,
    decode_access_token,
    get_password_hash,
    user_from_token,
    verify_password,
)

USER_ID = "65a1b2c3d4e5f60718293a4d"


def test_password_hash_roundtrip():
    hashed = get_password_hash("correct horse")

    assert hashed != "correct horse"
    assert verify_password("correct horse", hashed)
    assert not verify_password("wrong horse", hashed)


def test_token_carries_user_id():
    token = create_access_token({"sub": USER_ID, "email": "a@example.com"})

    assert decode_access_token(token) == USER_ID


@pytest.mark.parametrize("token", [
    "not-a-token",
    create_access_token({"email": "a@example.com"}),
    create_access_token({"sub": "not-an-object-id"}),
    create_access_token({"sub": USER_ID}, expires_delta=timedelta(minutes=-5)),
])
def test_invalid_tokens(token):
    assert decode_access_token(token) is None


@pytest.mark.asyncio
async def test_user_from_token_rejects_inactive_user():
    users = MagicMock()
    users.get = AsyncMock(return_value=SimpleNamespace(id=USER_ID, is_active=False))
    with patch("app.api.routes.auth.User", users):
        assert await user_from_token(create_access_token({"sub": USER_ID})) is None


@pytest.mark.asyncio
async def test_user_from_token_loads_user():
    user = SimpleNamespace(id=USER_ID, is_active=True)
    users = MagicMock()
    users.get = AsyncMock(return_value=user)
    with patch("app.api.routes.auth.User", users):
        assert await user_from_token(create_access_token({"sub": USER_ID})) is user
