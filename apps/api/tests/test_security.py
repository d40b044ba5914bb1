"""
Unit tests for password hashing and JWT helpers.
"""
from datetime import timedelta

from orderdesk.core.security import (
    create_access_token,
    create_refresh_token,
    decode_token,
    hash_password,
    verify_password,
)


class TestPasswordHashing:

    def test_hash_is_salted(self):
        first = hash_password("mysecretpassword")
        second = hash_password("mysecretpassword")

        assert first != "mysecretpassword"
        assert first != second

    def test_verify(self):
        hashed = hash_password("mysecretpassword")

        assert verify_password("mysecretpassword", hashed) is True
        assert verify_password("wrongpassword", hashed) is False


class TestJWTTokens:

    def test_access_token_round_trip(self):
        payload = decode_token(create_access_token(subject="user-123"))

        assert payload["sub"] == "user-123"
        assert payload["type"] == "access"

    def test_refresh_token_type(self):
        assert decode_token(create_refresh_token(subject="user-123"))["type"] == "refresh"

    def test_expired_token(self):
        token = create_access_token(subject="user-123", expires_delta=timedelta(seconds=-1))

        assert decode_token(token) is None

    def test_tampered_token(self):
        header, body, _ = create_access_token(subject="user-123").split(".")

        assert decode_token(f"{header}.{body}.{'A' * 43}") is None
        assert decode_token("not-a-token") is None
