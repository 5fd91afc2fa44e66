"""Password hashing with Argon2id.

Hashes are self-describing PHC strings (``$argon2id$v=19$m=...``) so the
parameters travel with each stored hash. Hashing is CPU-bound and runs in
the threadpool to keep the event loop free.
"""

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHashError, VerificationError
from starlette.concurrency import run_in_threadpool

MEMORY_COST_KIB = 19_456
TIME_COST = 2
PARALLELISM = 1
HASH_LENGTH = 32

_hasher = PasswordHasher(
    time_cost=TIME_COST,
    memory_cost=MEMORY_COST_KIB,
    parallelism=PARALLELISM,
    hash_len=HASH_LENGTH,
    type=Type.ID,
)


def hash_password_sync(password: str) -> str:
    """Hash a plain-text password with a fresh random salt."""
    return _hasher.hash(password)


def verify_password_sync(password: str, password_hash: str) -> bool:
    """Return True if ``password`` matches ``password_hash``.

    Never raises: a malformed or foreign hash string is simply a mismatch.
    """
    try:
        return _hasher.verify(password_hash, password)
    except (VerificationError, InvalidHashError, ValueError, TypeError):
        return False


async def hash_password(password: str) -> str:
    return await run_in_threadpool(hash_password_sync, password)


async def verify_password(password: str, password_hash: str) -> bool:
    return await run_in_threadpool(verify_password_sync, password, password_hash)
