"""Tests for the token codec."""

import uuid
from datetime import UTC, datetime, timedelta

import jwt
import pytest

from src.config.settings import settings
from src.features.auth.exceptions import AccessTokenExpired, AccessTokenInvalidSignature, AccessTokenMalformed
from src.features.auth.jwt_utils import (
    create_access_token,
    decode_access_token,
    generate_refresh_secret,
    generate_reset_secret,
    hash_token,
)
from src.features.user.models import UserRole


class TestAccessTokens:
    def test_round_trip_claims(self):
        session_id = uuid.uuid4()
        token = create_access_token(42, UserRole.BUSINESS_OWNER, session_id)

        claims = decode_access_token(token)

        assert claims.user_id == 42
        assert claims.role == UserRole.BUSINESS_OWNER
        assert claims.session_id == session_id
        assert claims.expires_at > claims.issued_at

    def test_default_expiry_is_short(self):
        claims = decode_access_token(create_access_token(1, UserRole.CUSTOMER, uuid.uuid4()))
        lifetime = claims.expires_at - claims.issued_at
        assert lifetime == timedelta(minutes=settings.access_token_expire_minutes)

    def test_expired_token(self):
        token = create_access_token(1, UserRole.CUSTOMER, uuid.uuid4(), expires_delta=timedelta(seconds=-5))
        with pytest.raises(AccessTokenExpired):
            decode_access_token(token)

    def test_wrong_secret_is_invalid_signature(self):
        token = create_access_token(1, UserRole.CUSTOMER, uuid.uuid4(), secret_key="another-secret-key-of-enough-length")
        with pytest.raises(AccessTokenInvalidSignature):
            decode_access_token(token)

    def test_tampered_payload_is_rejected(self):
        token = create_access_token(1, UserRole.CUSTOMER, uuid.uuid4())
        header, payload, signature = token.split(".")
        forged = jwt.encode({"sub": "2", "role": "admin"}, "x", algorithm="HS256").split(".")[1]
        with pytest.raises((AccessTokenInvalidSignature, AccessTokenMalformed)):
            decode_access_token(f"{header}.{forged}.{signature}")

    def test_garbage_is_malformed(self):
        with pytest.raises(AccessTokenMalformed):
            decode_access_token("this.is.garbage")

    def test_wrong_token_type_is_malformed(self):
        now = datetime.now(UTC)
        token = jwt.encode(
            {
                "sub": "1",
                "role": "customer",
                "sid": str(uuid.uuid4()),
                "iat": now,
                "exp": now + timedelta(minutes=5),
                "type": "refresh",
            },
            settings.secret_key,
            algorithm=settings.jwt_algorithm,
        )
        with pytest.raises(AccessTokenMalformed):
            decode_access_token(token)

    def test_missing_claims_is_malformed(self):
        now = datetime.now(UTC)
        token = jwt.encode(
            {"sub": "1", "iat": now, "exp": now + timedelta(minutes=5), "type": "access"},
            settings.secret_key,
            algorithm=settings.jwt_algorithm,
        )
        with pytest.raises(AccessTokenMalformed):
            decode_access_token(token)

    def test_unknown_role_is_malformed(self):
        token = create_access_token(1, "superuser", uuid.uuid4())
        with pytest.raises(AccessTokenMalformed):
            decode_access_token(token)


class TestOpaqueSecrets:
    def test_refresh_secret_hash_matches_raw(self):
        raw, token_hash = generate_refresh_secret()
        assert token_hash == hash_token(raw)
        assert raw not in token_hash

    def test_secrets_are_unique(self):
        assert generate_refresh_secret()[0] != generate_refresh_secret()[0]
        assert generate_reset_secret()[0] != generate_reset_secret()[0]

    def test_hash_depends_on_key(self):
        assert hash_token("value", key="key-one") != hash_token("value", key="key-two")

    def test_hash_is_hex_sha256(self):
        token_hash = hash_token("value")
        assert len(token_hash) == 64
        int(token_hash, 16)
