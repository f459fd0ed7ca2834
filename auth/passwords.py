"""
auth/passwords.py -- Password hashing and verification.

Security design decisions:
  Format: "<salt>:<hex key>". The salt is 16 random bytes written as 32 hex
       characters and is used as-is (the hex text) as the scrypt salt. The key
       is scrypt(password, salt, N=2**14, r=8, p=1, dklen=64) in hex. Every
       parameter is fixed here, so a stored value is self-describing and
       verify_password() needs nothing but the plaintext and the stored string.

  scrypt rather than bcrypt for new hashes: memory-hard, no 72-byte input
       truncation, and it matches the format the member database already holds.

  Legacy bcrypt: accounts imported from the previous platform carry bcrypt
       modular-crypt hashes ($2a$/$2b$/$2y$). These still verify through the
       bcrypt package, and needs_rehash() flags them so the identity resolver
       can replace them with the scrypt format on the next successful login.

  Comparison: hmac.compare_digest, so a mismatch does not return earlier for
       an early differing byte.

  Event loop: hashing is deliberately slow. Async callers use the *_async
       variants, which run the derivation in the worker thread pool and await
       only their own result.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets

import bcrypt
from fastapi.concurrency import run_in_threadpool

_SEPARATOR = ":"
_SALT_BYTES = 16
_KEY_LENGTH = 64
_SCRYPT_N = 2**14
_SCRYPT_R = 8
_SCRYPT_P = 1
# 128 * r * N is 16 MiB for these parameters; leave headroom over OpenSSL's 32 MiB default.
_SCRYPT_MAXMEM = 64 * 1024 * 1024

_BCRYPT_PREFIXES = ("$2a$", "$2b$", "$2y$")


def _derive(plain: bytes, salt: str) -> bytes:
    return hashlib.scrypt(
        plain,
        salt=salt.encode("utf-8"),
        n=_SCRYPT_N,
        r=_SCRYPT_R,
        p=_SCRYPT_P,
        maxmem=_SCRYPT_MAXMEM,
        dklen=_KEY_LENGTH,
    )


def hash_password(plain: str) -> str:
    """Return a salted scrypt hash of plain in "<salt>:<hex key>" form.

    A fresh salt is drawn on every call, so hashing the same password twice
    gives two different strings that both verify. No length policy is applied
    here; the empty string hashes like any other input.
    """
    salt = secrets.token_hex(_SALT_BYTES)
    return f"{salt}{_SEPARATOR}{_derive(plain.encode('utf-8'), salt).hex()}"


def verify_password(plain: str, stored: str | None) -> bool:
    """Return True if plain matches the stored hash.

    Malformed stored values (None, missing separator, empty salt, non-hex or
    wrong-length key) and plaintexts that cannot be encoded as UTF-8 return
    False. Never raises.
    """
    if not isinstance(stored, str) or not isinstance(plain, str):
        return False
    if stored.startswith(_BCRYPT_PREFIXES):
        return _verify_bcrypt(plain, stored)

    salt, sep, expected_hex = stored.partition(_SEPARATOR)
    if not sep or not salt or not expected_hex:
        return False
    try:
        encoded = plain.encode("utf-8")
        salt.encode("utf-8")
    except UnicodeEncodeError:
        # Lone surrogates cannot have been hashed, so they cannot match.
        return False
    try:
        expected = bytes.fromhex(expected_hex)
    except ValueError:
        return False
    if len(expected) != _KEY_LENGTH:
        return False
    return hmac.compare_digest(_derive(encoded, salt), expected)


def _verify_bcrypt(plain: str, stored: str) -> bool:
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), stored.encode("utf-8"))
    except ValueError:
        # bcrypt rejects malformed salts and >72-byte inputs with ValueError;
        # UnicodeEncodeError (lone surrogates) is a ValueError too.
        return False


def needs_rehash(stored: str | None) -> bool:
    """Return True when stored is a legacy hash that should be replaced."""
    return isinstance(stored, str) and stored.startswith(_BCRYPT_PREFIXES)


async def hash_password_async(plain: str) -> str:
    """hash_password() run in the worker thread pool."""
    return await run_in_threadpool(hash_password, plain)


async def verify_password_async(plain: str, stored: str | None) -> bool:
    """verify_password() run in the worker thread pool."""
    return await run_in_threadpool(verify_password, plain, stored)


# Timing equalization dummy hash [C1].
# Computed once at module load so the first login attempt is not measurably
# slower than later ones. authenticate() verifies against it when the username
# does not exist, so unknown and known usernames cost the same scrypt run.
DUMMY_HASH: str = hash_password("memberportal_timing_dummy")
