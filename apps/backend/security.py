"""
Catalog API - Password Hashing
==============================
bcrypt hashing for user credentials, run off the event loop.
"""

import asyncio
import re
import unicodedata
from functools import lru_cache

import bcrypt

from exceptions import ValidationError

# bcrypt ignores input beyond 72 bytes
BCRYPT_MAX_BYTES = 72


def _encode(password: str) -> bytes:
    encoded = password.encode("utf-8")
    if len(encoded) > BCRYPT_MAX_BYTES:
        raise ValidationError(
            f"password must not exceed {BCRYPT_MAX_BYTES} bytes",
            field="password",
        )
    return encoded


def _hash(password: str, rounds: int) -> str:
    return bcrypt.hashpw(_encode(password), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def _verify(password: str, hashed: str) -> bool:
    try:
        encoded = _encode(password)
    except ValidationError:
        return False
    return bcrypt.checkpw(encoded, hashed.encode("utf-8"))


async def hash_password(password: str, rounds: int = 12) -> str:
    """Hash a password using bcrypt."""
    return await asyncio.to_thread(_hash, password, rounds)


async def verify_password(password: str, hashed: str) -> bool:
    """Verify a password against its bcrypt hash."""
    return await asyncio.to_thread(_verify, password, hashed)


@lru_cache(maxsize=None)
def dummy_hash(rounds: int) -> str:
    """
    Valid hash of a throwaway password at the given cost.

    Checked when the user does not exist, so unknown usernames cost the same
    as wrong passwords. The cost must match the one used for stored hashes.
    """
    return _hash("catalog-api-timing-guard", rounds)


async def burn_verification(password: str, rounds: int = 12) -> None:
    """Spend one verification on a dummy hash of cost ``rounds``."""
    expected = await asyncio.to_thread(dummy_hash, rounds)
    await asyncio.to_thread(_verify, password, expected)


def slugify(value: str) -> str:
    """
    URL slug from a product name.

    Example:
        >>> slugify("Taladro Percutor 1/2\\" Ñandú")
        'taladro-percutor-1-2-nandu'
    """
    normalized = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-z0-9]+", "-", normalized.lower())
    return slug.strip("-")
