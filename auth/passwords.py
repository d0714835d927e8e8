"""
auth/passwords.py -- One-way password hashing and verification.

Security design decisions:
  KDF: argon2id via argon2-cffi's low-level API. Argon2id is memory-hard,
       so GPU/ASIC brute force pays for RAM as well as compute. The cost
       parameters (time_cost, memory_cost KiB, parallelism) are fixed per
       deployment via Settings and documented there.

  Format: "<salt hex>:<derived key hex>". A fresh 32-byte salt from
       os.urandom for every hash, and a 64-byte derived key. The raw
       low-level API is used (instead of argon2.PasswordHasher's PHC strings)
       so the stored value is exactly salt + key and nothing else.

  Comparison: hmac.compare_digest. Never `==` on derived keys -- a
       short-circuiting comparison leaks how many leading bytes matched.

Failure modes:
  verify() returns False for any malformed stored value; it never raises on
  bad format. A derivation failure (argon2.exceptions.HashingError, e.g.
  memory exhaustion) propagates from both hash() and verify(): it is an
  internal error, not "invalid credentials".

The hasher holds only immutable cost parameters, so a single instance is safe
to share across concurrent requests.
"""

from __future__ import annotations

import hmac
import os

from argon2 import Type
from argon2.low_level import hash_secret_raw

SALT_LENGTH = 32
KEY_LENGTH = 64
SEPARATOR = ":"


class PasswordHasher:
    """argon2id hasher producing "<salt hex>:<key hex>" strings.

    Usage:
        hasher = PasswordHasher(time_cost=3, memory_cost=65536, parallelism=4)
        stored = hasher.hash("Abcdef12")
        hasher.verify("Abcdef12", stored)   # True
    """

    def __init__(self, time_cost: int = 3, memory_cost: int = 65536, parallelism: int = 4) -> None:
        self.time_cost = time_cost
        self.memory_cost = memory_cost
        self.parallelism = parallelism

    def _derive(self, password: str, salt: bytes) -> bytes:
        return hash_secret_raw(
            secret=password.encode("utf-8"),
            salt=salt,
            time_cost=self.time_cost,
            memory_cost=self.memory_cost,
            parallelism=self.parallelism,
            hash_len=KEY_LENGTH,
            type=Type.ID,
        )

    def hash(self, password: str) -> str:
        """Return a new stored hash for password. Two calls never return the same value."""
        salt = os.urandom(SALT_LENGTH)
        key = self._derive(password, salt)
        return f"{salt.hex()}{SEPARATOR}{key.hex()}"

    def verify(self, password: str, stored_hash: str) -> bool:
        """Return True if password re-derives to the key in stored_hash."""
        salt_hex, sep, key_hex = (stored_hash or "").partition(SEPARATOR)
        if not sep or not salt_hex or not key_hex:
            return False
        try:
            salt = bytes.fromhex(salt_hex)
            expected = bytes.fromhex(key_hex)
        except ValueError:
            return False
        if len(salt) != SALT_LENGTH or len(expected) != KEY_LENGTH:
            return False
        derived = self._derive(password, salt)
        return hmac.compare_digest(derived, expected)
