"""
auth/passwords.py -- Credential hashing (bcrypt).

bcrypt is used directly rather than through passlib: passlib's wrap-bug
detection feeds bcrypt a password longer than 72 bytes, which bcrypt 4.x+
rejects outright.

Timing equalization: BcryptHasher computes dummy_hash once, at construction,
with the same work factor as real hashes. AuthService.login() verifies against
it whenever the email is unknown, so an unknown email costs the same bcrypt
work as a wrong password and response time does not reveal which one it was.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import bcrypt

from core.errors import InternalFailure

DEFAULT_ROUNDS = 10


class HashingFailure(InternalFailure):
    """bcrypt failed to produce a hash (entropy or internal error)."""


class BcryptHasher:
    """Salted adaptive one-way hashing with a fixed work factor."""

    def __init__(self, rounds: int = DEFAULT_ROUNDS) -> None:
        self.rounds = rounds
        self.dummy_hash: str = self.hash("authgate_timing_dummy")

    def hash(self, plaintext: str) -> str:
        """Return a bcrypt hash of plaintext. Raises HashingFailure on internal error."""
        try:
            return bcrypt.hashpw(plaintext.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")
        except (ValueError, TypeError) as exc:
            raise HashingFailure(op="BcryptHasher.hash") from exc

    def verify(self, plaintext: str, hashed: str) -> bool:
        """Return True if plaintext matches hashed. Never raises on mismatch or a malformed hash."""
        try:
            return bcrypt.checkpw(plaintext.encode("utf-8"), hashed.encode("utf-8"))
        except (ValueError, TypeError):
            return False
