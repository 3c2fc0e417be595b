"""Password hashing with Argon2 (pwdlib)."""

from pwdlib import PasswordHash
from pwdlib.exceptions import UnknownHashError
from pwdlib.hashers.argon2 import Argon2Hasher

from src.config.settings import settings


def build_password_hasher(
    time_cost: int = settings.password_hash_time_cost,
    memory_cost: int = settings.password_hash_memory_cost,
    parallelism: int = settings.password_hash_parallelism,
) -> PasswordHash:
    """Create a hasher with the configured Argon2 cost factor."""
    return PasswordHash((Argon2Hasher(time_cost=time_cost, memory_cost=memory_cost, parallelism=parallelism),))


pwd_hasher = build_password_hasher()

_dummy_hash: str | None = None


def hash_password(password: str) -> str:
    """Hash a password using Argon2.

    Salt is automatically generated and embedded in the returned hash.
    """
    return pwd_hasher.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against the hash using Argon2.

    Hashes in an unknown format never verify.
    """
    try:
        return pwd_hasher.verify(plain_password, hashed_password)
    except UnknownHashError:
        return False


def verify_against_dummy(plain_password: str) -> bool:
    """Spend one verification on a throwaway hash.

    Used when the user does not exist so that path costs the same as a wrong password.
    Always returns False.
    """
    global _dummy_hash
    if _dummy_hash is None:
        _dummy_hash = pwd_hasher.hash("dummy-password-for-timing")
    pwd_hasher.verify(plain_password, _dummy_hash)
    return False
