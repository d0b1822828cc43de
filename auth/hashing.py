"""
auth/hashing.py -- bcrypt credential hashing for passwords and transaction PINs.

bcrypt is used directly (no passlib wrapper): passlib's wrap-bug detection
builds a password longer than 72 bytes, which bcrypt 4.x rejects with an
explicit error.

The work factor is fixed at 10 rounds. bcrypt is CPU-bound, so every call
runs in a worker thread via asyncio.to_thread -- the event loop keeps serving
other requests while a digest is computed.

The same hasher serves login passwords and transaction PINs. Plaintext
secrets are never logged or stored by this module.
"""

from __future__ import annotations

import asyncio
import logging

import bcrypt

from auth.errors import HashingError
from auth.results import Err, Ok, Result

logger = logging.getLogger("cryptify.auth.hashing")

SALT_ROUNDS = 10

# bcrypt only reads the first 72 bytes of a secret. Recent bcrypt releases raise
# on longer input instead of truncating, so truncate here.
_BCRYPT_MAX_BYTES = 72


def _encode(secret: str) -> bytes:
    return secret.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def _hash_sync(secret: str, rounds: int) -> str:
    return bcrypt.hashpw(_encode(secret), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def _compare_sync(secret: str, digest: str) -> bool:
    return bcrypt.checkpw(_encode(secret), digest.encode("utf-8"))


class CredentialHasher:
    """Salted one-way hashing and verification of secrets.

    Usage:
        hasher = CredentialHasher()
        digest = (await hasher.hash("s3cret")).value
        assert (await hasher.compare("s3cret", digest)).value is True
    """

    def __init__(self, rounds: int = SALT_ROUNDS) -> None:
        self.rounds = rounds
        # Compared against when the account does not exist, so the unknown-email
        # path costs one bcrypt check like the wrong-password path.
        self._dummy_digest = _hash_sync("cryptify_timing_dummy", rounds)

    async def hash(self, secret: str) -> Result[str, HashingError]:
        """Return Ok(digest) or Err(HashingError) if bcrypt fails."""
        try:
            digest = await asyncio.to_thread(_hash_sync, secret, self.rounds)
        except (ValueError, TypeError) as exc:
            logger.error("Credential hashing failed: %s", type(exc).__name__)
            return Err(HashingError("Password hashing failed"))
        return Ok(digest)

    async def compare(self, secret: str, digest: str) -> Result[bool, HashingError]:
        """Return Ok(True) on match, Ok(False) on mismatch.

        Err(HashingError) only when the stored digest is not a bcrypt hash.
        """
        try:
            matched = await asyncio.to_thread(_compare_sync, secret, digest)
        except (ValueError, TypeError) as exc:
            logger.error("Credential comparison failed: %s", type(exc).__name__)
            return Err(HashingError("Password comparison failed"))
        return Ok(matched)

    async def compare_dummy(self, secret: str) -> None:
        """Spend one bcrypt comparison without a real digest."""
        await asyncio.to_thread(_compare_sync, secret, self._dummy_digest)
