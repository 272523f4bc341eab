import secrets

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

from app.config import Settings


def build_password_hasher(settings: Settings) -> PasswordHasher:
    """
    Argon2id hasher for agent keys.

    Production defaults: time_cost=3, memory_cost=65536 (64MB), parallelism=4.
    Tests inject cheaper parameters through Settings.
    """
    return PasswordHasher(
        time_cost=settings.argon2_time_cost,
        memory_cost=settings.argon2_memory_cost,
        parallelism=settings.argon2_parallelism,
        hash_len=32,
        salt_len=16,
    )


def hash_secret(hasher: PasswordHasher, value: str) -> str:
    """Hash a secret using Argon2id (salted, one-way)."""
    return hasher.hash(value)


def verify_secret(hasher: PasswordHasher, value: str, secret_hash: str) -> bool:
    """Verify a secret against its Argon2id hash. Never raises on bad input."""
    if not isinstance(value, str) or not isinstance(secret_hash, str) or not secret_hash:
        return False
    try:
        return hasher.verify(secret_hash, value)
    except (VerificationError, InvalidHashError, UnicodeEncodeError):
        return False


def random_suffix(num_bytes: int = 24) -> str:
    """URL-safe random string (24 bytes = 192 bits)."""
    return secrets.token_urlsafe(num_bytes)
