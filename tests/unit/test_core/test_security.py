"""Unit tests for JWT token helpers."""

from datetime import UTC, datetime, timedelta

import jwt
import pytest

from portal_rbac.core.security import ACCESS_TOKEN_TYPE, create_access_token, decode_token

SECRET = "test-secret-key-that-is-at-least-32-characters-long"


class TestJWT:
    """Tests for JWT token creation and decoding."""

    def test_create_and_decode_access_token(self) -> None:
        token = create_access_token("admin-1", SECRET)
        payload = decode_token(token, SECRET)
        assert payload["sub"] == "admin-1"
        assert payload["type"] == ACCESS_TOKEN_TYPE
        assert "role" not in payload

    def test_wrong_secret_rejected(self) -> None:
        token = create_access_token("admin-1", SECRET)
        with pytest.raises(jwt.InvalidTokenError):
            decode_token(token, "another-secret-key-of-thirty-two-chars!")

    def test_expired_token_rejected(self) -> None:
        token = jwt.encode(
            {"sub": "admin-1", "exp": datetime.now(UTC) - timedelta(minutes=1), "type": ACCESS_TOKEN_TYPE},
            SECRET,
            algorithm="HS256",
        )
        with pytest.raises(jwt.ExpiredSignatureError):
            decode_token(token, SECRET)

    def test_expiry_honours_minutes(self) -> None:
        token = create_access_token("admin-1", SECRET, expires_minutes=5)
        exp = datetime.fromtimestamp(decode_token(token, SECRET)["exp"], tz=UTC)
        assert timedelta(minutes=4) < exp - datetime.now(UTC) <= timedelta(minutes=5)
