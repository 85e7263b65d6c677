"""Security utilities: hashing, encryption, signatures and token helpers."""

import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone

from cryptography.fernet import Fernet
from jose import jwt
from passlib.context import CryptContext

from app.core.config import get_settings

settings = get_settings()

# ── Password hashing (Argon2) ────────────────────────────────

pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str | None) -> bool:
    # Federated users have no password and can never match
    if not hashed:
        return False
    return pwd_context.verify(plain, hashed)


# ── Opaque token hashing (SHA-256, deterministic for lookups) ─

def hash_lookup_token(raw_token: str) -> str:
    """One-way SHA-256 hash for refresh tokens and verification codes.

    We use SHA-256 (not Argon2) because we need to look up tokens
    by their hash on every request, so it must be deterministic.
    The raw tokens carry at least 128 bits of entropy.
    """
    return hashlib.sha256(raw_token.encode()).hexdigest()


def generate_refresh_token() -> str:
    """Generate a cryptographically secure 256-bit refresh token."""
    return secrets.token_urlsafe(32)


def generate_shared_secret() -> str:
    """Generate a tenant's HMAC shared secret (256 bits, hex)."""
    return secrets.token_hex(32)


def generate_verification_code() -> str:
    return secrets.token_urlsafe(16)


# ── Field-level encryption (Fernet) ──────────────────────────

def _get_fernet() -> Fernet:
    if not settings.encryption_key:
        raise RuntimeError("ENCRYPTION_KEY is not configured")
    return Fernet(settings.encryption_key.encode())


def encrypt_value(plaintext: str) -> str:
    """Encrypt a string value. Returns base64 ciphertext."""
    return _get_fernet().encrypt(plaintext.encode()).decode()


def decrypt_value(ciphertext: str) -> str:
    """Decrypt a Fernet-encrypted value."""
    return _get_fernet().decrypt(ciphertext.encode()).decode()


# ── HMAC signatures ──────────────────────────────────────────

def sign_payload(secret: str, payload: str) -> str:
    """Hex HMAC-SHA256 of ``payload`` keyed with ``secret``."""
    return hmac.new(secret.encode(), payload.encode(), hashlib.sha256).hexdigest()


def constant_time_equals(expected: str, received: str) -> bool:
    return hmac.compare_digest(expected.encode(), received.encode("utf-8"))


# ── JWT ───────────────────────────────────────────────────────

def create_jwt(
    subject: str,
    tenant_id: str,
    expires_delta: timedelta | None = None,
    extra_claims: dict | None = None,
) -> str:
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    payload = {
        **(extra_claims or {}),
        "sub": subject,
        "tid": tenant_id,
        "iss": settings.jwt_issuer,
        "iat": now,
        "exp": expire,
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_jwt(token: str) -> dict:
    """Decode and verify a JWT. Raises jose.JWTError on failure."""
    return jwt.decode(
        token,
        settings.jwt_secret_key,
        algorithms=[settings.jwt_algorithm],
        issuer=settings.jwt_issuer,
    )
