"""
Tests for the credential primitives.

These tests verify:
  - Argon2 digests verify only the original password and never raise
  - The strength policy reports each violated rule
  - Temporary passwords contain every character class
  - Access and refresh tokens are told apart by their type claim
  - Expired, tampered and incomplete tokens map to distinct kinds
  - Recovery tokens and TOTP secrets are random base32 strings
  - TOTP secrets survive a Fernet round trip
"""

import base64
import string
import uuid
from datetime import datetime, timedelta, timezone

import pyotp
import pytest
from jose import jwt

from mowesport.config import PasswordPolicy, settings
from mowesport.exceptions import ErrorKind, TokenError
from mowesport.schemas.token import AccessClaims, RefreshClaims
from mowesport.security import (
    TEMPORARY_PASSWORD_SYMBOLS,
    check_password_strength,
    create_access_token,
    create_refresh_token,
    decode_token,
    decrypt_value,
    digest_token,
    encrypt_value,
    generate_recovery_token,
    generate_temporary_password,
    generate_totp_secret,
    hash_password,
    verify_password,
    verify_totp,
)


class TestPasswordHashing:

    def test_hash_verifies_original_only(self):
        digest = hash_password("Correct-Horse9")
        assert digest.startswith("$argon2")
        assert verify_password("Correct-Horse9", digest)
        assert not verify_password("Correct-Horse8", digest)

    def test_same_password_gets_distinct_salts(self):
        assert hash_password("Correct-Horse9") != hash_password("Correct-Horse9")

    def test_malformed_digest_is_a_mismatch(self):
        """A corrupted stored digest must not crash the login path."""
        assert not verify_password("anything", "not-a-real-digest")
        assert not verify_password("anything", "")


class TestPasswordStrength:

    def test_strong_password_passes(self):
        assert check_password_strength("Abcdef1!") == []

    def test_each_missing_class_is_reported(self):
        problems = check_password_strength("abcdefgh")
        assert "Password must contain at least one uppercase letter" in problems
        assert "Password must contain at least one number" in problems
        assert "Password must contain at least one special character" in problems
        assert not any("lowercase" in p for p in problems)

    def test_length_bounds(self):
        policy = PasswordPolicy(min_length=10, max_length=12)
        assert any("at least 10" in p for p in check_password_strength("Ab1!", policy))
        assert any("at most 12" in p for p in check_password_strength("Abcdefghij1!xyz", policy))

    def test_relaxed_policy(self):
        policy = PasswordPolicy(require_special_chars=False, require_uppercase=False)
        assert check_password_strength("abcdefg1", policy) == []


class TestTemporaryPassword:

    def test_length_and_character_classes(self):
        for _ in range(50):
            password = generate_temporary_password()
            assert len(password) == 12
            assert any(c in string.ascii_uppercase for c in password)
            assert any(c in string.ascii_lowercase for c in password)
            assert any(c in string.digits for c in password)
            assert any(c in TEMPORARY_PASSWORD_SYMBOLS for c in password)

    def test_passes_default_policy(self):
        assert check_password_strength(generate_temporary_password()) == []

    def test_values_are_unique(self):
        assert len({generate_temporary_password() for _ in range(100)}) == 100


class TestTokens:

    def _access(self, **overrides):
        fields = {
            "user_id": uuid.uuid4(),
            "email": "ana@example.com",
            "first_name": "Ana",
            "last_name": "Gómez",
            "primary_role": "city_admin",
        }
        fields.update(overrides)
        return fields, create_access_token(**fields)

    def test_access_token_round_trip(self):
        fields, token = self._access()
        claims = decode_token(token, AccessClaims)
        assert claims.user_id == fields["user_id"]
        assert claims.email == "ana@example.com"
        assert claims.primary_role == "city_admin"
        assert claims.type == "access"
        assert claims.exp - claims.iat == int(settings.JWT_ACCESS_TTL.total_seconds())

    def test_refresh_token_carries_only_identity(self):
        user_id = uuid.uuid4()
        token = create_refresh_token(user_id)
        payload = jwt.get_unverified_claims(token)
        assert set(payload) == {"user_id", "type", "exp", "iat"}
        assert decode_token(token, RefreshClaims).user_id == user_id

    def test_refresh_token_rejected_as_access(self):
        token = create_refresh_token(uuid.uuid4())
        with pytest.raises(TokenError) as exc_info:
            decode_token(token, AccessClaims)
        assert exc_info.value.kind == ErrorKind.INVALID_TOKEN_TYPE

    def test_access_token_rejected_as_refresh(self):
        _, token = self._access()
        with pytest.raises(TokenError) as exc_info:
            decode_token(token, RefreshClaims)
        assert exc_info.value.kind == ErrorKind.INVALID_TOKEN_TYPE

    def test_expired_token(self):
        past = datetime.now(timezone.utc) - settings.JWT_ACCESS_TTL - timedelta(minutes=1)
        _, token = self._access(now=past)
        with pytest.raises(TokenError) as exc_info:
            decode_token(token, AccessClaims)
        assert exc_info.value.kind == ErrorKind.EXPIRED_TOKEN

    def test_tampered_signature(self):
        _, token = self._access()
        header, payload, signature = token.split(".")
        forged = ".".join([header, payload, signature[::-1]])
        with pytest.raises(TokenError) as exc_info:
            decode_token(forged, AccessClaims)
        assert exc_info.value.kind == ErrorKind.INVALID_TOKEN

    def test_wrong_secret(self):
        now = int(datetime.now(timezone.utc).timestamp())
        token = jwt.encode(
            {"user_id": str(uuid.uuid4()), "type": "refresh", "iat": now, "exp": now + 60},
            "some-other-secret",
            algorithm="HS256",
        )
        with pytest.raises(TokenError) as exc_info:
            decode_token(token, RefreshClaims)
        assert exc_info.value.kind == ErrorKind.INVALID_TOKEN

    def test_missing_claims(self):
        now = int(datetime.now(timezone.utc).timestamp())
        token = jwt.encode(
            {"user_id": str(uuid.uuid4()), "type": "access", "iat": now, "exp": now + 60},
            settings.JWT_SECRET,
            algorithm=settings.JWT_ALGORITHM,
        )
        with pytest.raises(TokenError) as exc_info:
            decode_token(token, AccessClaims)
        assert exc_info.value.kind == ErrorKind.INVALID_TOKEN_CLAIMS

    def test_garbage(self):
        with pytest.raises(TokenError) as exc_info:
            decode_token("not.a.token", AccessClaims)
        assert exc_info.value.kind == ErrorKind.INVALID_TOKEN


class TestRandomSecrets:

    def test_recovery_token_is_unpadded_base32_of_32_bytes(self):
        token = generate_recovery_token()
        assert "=" not in token
        padded = token + "=" * (-len(token) % 8)
        assert len(base64.b32decode(padded)) == 32

    def test_recovery_tokens_are_unique(self):
        assert len({generate_recovery_token() for _ in range(100)}) == 100

    def test_digest_is_stable_sha256_hex(self):
        token = generate_recovery_token()
        assert digest_token(token) == digest_token(token)
        assert len(digest_token(token)) == 64
        assert digest_token(token) != digest_token(generate_recovery_token())


class TestTotp:

    def test_secret_is_32_base32_characters(self):
        secret = generate_totp_secret()
        assert len(secret) == 32
        assert set(secret) <= set(string.ascii_uppercase + "234567")

    def test_current_code_verifies(self):
        secret = generate_totp_secret()
        assert verify_totp(secret, pyotp.TOTP(secret).now())

    def test_adjacent_step_is_tolerated(self):
        secret = generate_totp_secret()
        previous = pyotp.TOTP(secret).at(datetime.now(timezone.utc) - timedelta(seconds=30))
        assert verify_totp(secret, previous)

    def test_wrong_or_missing_code(self):
        secret = generate_totp_secret()
        code = pyotp.TOTP(secret).now()
        wrong = f"{(int(code) + 500000) % 1000000:06d}"
        assert not verify_totp(secret, wrong)
        assert not verify_totp(secret, None)
        assert not verify_totp("", code)

    def test_secret_encryption_round_trip(self):
        secret = generate_totp_secret()
        encrypted = encrypt_value(secret)
        assert encrypted != secret
        assert decrypt_value(encrypted) == secret
