"""
Credential primitives: password hashing, JWT tokens, random secrets, TOTP and
Fernet encryption.

This module centralizes all cryptographic operations so they're easy to
audit and update. Five concerns are handled here:

1. PASSWORD HASHING (Argon2)
   - Passwords are never stored in plaintext
   - passlib's CryptContext embeds the salt and cost parameters in the
     encoded digest, so the work factor can change without touching stored
     data ("deprecated='auto'" re-hashes on the next successful login path)
   - Strength policy (length, character classes) is checked before hashing

2. JWT TOKENS (JWS HMAC-SHA256)
   - Access tokens carry the principal snapshot, refresh tokens only the id
   - Both carry a "type" claim that decode_token() verifies explicitly

3. RANDOM SECRETS
   - Temporary passwords and recovery tokens come from the OS CSPRNG via
     the secrets module; a failing RNG aborts the request (rng_unavailable)
   - Recovery tokens are stored as SHA-256 digests, never in clear

4. TOTP (RFC 6238 via pyotp)
   - 20-byte base32 secrets, 30 s step, 6 digits, +/-1 step window

5. FERNET ENCRYPTION
   - TOTP secrets are encrypted at rest with TOTP_ENCRYPTION_KEY
"""

import base64
import hashlib
import secrets
import string
import unicodedata
from datetime import datetime, timezone

import pyotp
from cryptography.fernet import Fernet
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext
from pydantic import ValidationError

from mowesport.config import PasswordPolicy, settings
from mowesport.exceptions import ErrorKind, IntegrityFailure, TokenError
from mowesport.schemas.token import AccessClaims, RefreshClaims


# ---------------------------------------------------------------------------
# 1. Password Hashing (Argon2)
# ---------------------------------------------------------------------------

pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


def hash_password(plain_password: str) -> str:
    """
    Hash a plaintext password using Argon2id.

    Returns:
        An Argon2 hash string (e.g., "$argon2id$v=19$m=65536,t=3,p=4$...").
    """
    return pwd_context.hash(plain_password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a plaintext password against a stored Argon2 hash.

    An empty or unrecognized digest never verifies.
    """
    if not hashed_password:
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        # Not a digest passlib recognizes (corrupted row)
        return False


_dummy_hash: str | None = None


def burn_password_check(plain_password: str) -> None:
    """Run a verification against a throwaway digest to even out login latency."""
    global _dummy_hash
    if _dummy_hash is None:
        _dummy_hash = pwd_context.hash(secrets.token_urlsafe(16))
    pwd_context.verify(plain_password, _dummy_hash)


def _is_special(ch: str) -> bool:
    return unicodedata.category(ch)[0] in ("P", "S")


def check_password_strength(password: str, policy: PasswordPolicy | None = None) -> list[str]:
    """
    Check a candidate password against the strength policy.

    Returns:
        A list of human-readable violations; empty when the password passes.
    """
    policy = policy or settings.PASSWORD
    problems = []
    if len(password) < policy.min_length:
        problems.append(f"Password must be at least {policy.min_length} characters long")
    if len(password) > policy.max_length:
        problems.append(f"Password must be at most {policy.max_length} characters long")
    if policy.require_uppercase and not any(ch.isupper() for ch in password):
        problems.append("Password must contain at least one uppercase letter")
    if policy.require_lowercase and not any(ch.islower() for ch in password):
        problems.append("Password must contain at least one lowercase letter")
    if policy.require_numbers and not any(ch.isdigit() for ch in password):
        problems.append("Password must contain at least one number")
    if policy.require_special_chars and not any(_is_special(ch) for ch in password):
        problems.append("Password must contain at least one special character")
    return problems


# ---------------------------------------------------------------------------
# 2. JWT Tokens
# ---------------------------------------------------------------------------


def _encode(claims: dict) -> str:
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def create_access_token(
    user_id,
    email: str,
    first_name: str,
    last_name: str,
    primary_role: str,
    now: datetime | None = None,
) -> str:
    now = now or datetime.now(timezone.utc)
    claims = AccessClaims(
        user_id=user_id,
        email=email,
        first_name=first_name,
        last_name=last_name,
        primary_role=primary_role,
        iat=int(now.timestamp()),
        exp=int((now + settings.JWT_ACCESS_TTL).timestamp()),
    )
    return _encode(claims.model_dump(mode="json"))


def create_refresh_token(user_id, now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    claims = RefreshClaims(
        user_id=user_id,
        iat=int(now.timestamp()),
        exp=int((now + settings.JWT_REFRESH_TTL).timestamp()),
    )
    return _encode(claims.model_dump(mode="json"))


def decode_token(token: str, claims_type: type[AccessClaims] | type[RefreshClaims]):
    """
    Verify a token's signature and expiry and parse it into a claims record.

    Raises:
        TokenError: expired_token, invalid_token (bad signature or encoding),
            invalid_token_type (discriminator mismatch) or
            invalid_token_claims (required claims missing or malformed).
    """
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except ExpiredSignatureError:
        raise TokenError(ErrorKind.EXPIRED_TOKEN)
    except JWTError:
        raise TokenError(ErrorKind.INVALID_TOKEN)

    expected_type = claims_type.model_fields["type"].default
    if payload.get("type") != expected_type:
        raise TokenError(ErrorKind.INVALID_TOKEN_TYPE)

    try:
        return claims_type.model_validate(payload)
    except ValidationError:
        raise TokenError(ErrorKind.INVALID_TOKEN_CLAIMS)


# ---------------------------------------------------------------------------
# 3. Random secrets
# ---------------------------------------------------------------------------

TEMPORARY_PASSWORD_LENGTH = 12
TEMPORARY_PASSWORD_SYMBOLS = "!@#$%^&*"
_PASSWORD_CLASSES = (
    string.ascii_uppercase,
    string.ascii_lowercase,
    string.digits,
    TEMPORARY_PASSWORD_SYMBOLS,
)


def generate_temporary_password(length: int = TEMPORARY_PASSWORD_LENGTH) -> str:
    """
    Generate a random temporary password.

    One character is drawn from each class (upper, lower, digit, symbol),
    the rest from their union, and the result is shuffled with the system
    CSPRNG.

    Raises:
        IntegrityFailure: rng_unavailable when the OS RNG fails.
    """
    alphabet = "".join(_PASSWORD_CLASSES)
    try:
        chars = [secrets.choice(group) for group in _PASSWORD_CLASSES]
        chars += [secrets.choice(alphabet) for _ in range(length - len(chars))]
        secrets.SystemRandom().shuffle(chars)
    except (OSError, NotImplementedError) as exc:
        raise IntegrityFailure(ErrorKind.RNG_UNAVAILABLE) from exc
    return "".join(chars)


def _random_base32(num_bytes: int) -> str:
    try:
        raw = secrets.token_bytes(num_bytes)
    except (OSError, NotImplementedError) as exc:
        raise IntegrityFailure(ErrorKind.RNG_UNAVAILABLE) from exc
    return base64.b32encode(raw).decode("ascii").rstrip("=")


def generate_recovery_token() -> str:
    """32 random bytes, base32 encoded without padding (URL safe)."""
    return _random_base32(32)


def digest_token(token: str) -> str:
    """SHA-256 hex digest used to store and look up recovery tokens."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# 4. TOTP
# ---------------------------------------------------------------------------


def generate_totp_secret() -> str:
    # 20 bytes encode to exactly 32 base32 characters, no padding
    return _random_base32(20)


def totp_provisioning_uri(secret: str, email: str) -> str:
    return pyotp.TOTP(secret).provisioning_uri(name=email, issuer_name=settings.TOTP_ISSUER)


def verify_totp(secret: str, code: str | None) -> bool:
    if not secret or not code:
        return False
    return pyotp.TOTP(secret).verify(code.strip(), valid_window=1)


# ---------------------------------------------------------------------------
# 5. Fernet Encryption (TOTP secrets at rest)
# ---------------------------------------------------------------------------

_fernet = Fernet(settings.TOTP_ENCRYPTION_KEY.encode())


def encrypt_value(plaintext: str) -> str:
    """Encrypt a string with Fernet; the token is ASCII and fits a text column."""
    return _fernet.encrypt(plaintext.encode()).decode("ascii")


def decrypt_value(ciphertext: str) -> str:
    """
    Decrypt a Fernet token back to plaintext.

    Raises:
        cryptography.fernet.InvalidToken: If the data is corrupted or the
            encryption key doesn't match.
    """
    return _fernet.decrypt(ciphertext.encode("ascii")).decode()
