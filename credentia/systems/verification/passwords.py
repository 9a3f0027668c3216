"""
Credentia — Access Password Hashing

Certificates may be locked behind an access password chosen at approval
time. Only a salted scrypt hash is stored. Encoded as:

  scrypt$<n>$<r>$<p>$<salt b64>$<hash b64>

Cost parameters travel with the hash so they can be raised later without
invalidating existing certificates. Surrounding whitespace is not part of a
password, on either side of the check.
"""

from __future__ import annotations

import base64
import os

import structlog
from cryptography.exceptions import InvalidKey
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from credentia.config import VerificationConfig

logger = structlog.get_logger("credentia.verification.passwords")

_SCHEME = "scrypt"
_SALT_BYTES = 16
_KEY_BYTES = 32


def _b64(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def hash_password(password: str, config: VerificationConfig | None = None) -> str:
    """Hash an access password with a fresh random salt."""
    password = (password or "").strip()
    if not password:
        raise ValueError("Access password must be non-empty")
    cfg = config or VerificationConfig()
    salt = os.urandom(_SALT_BYTES)
    kdf = Scrypt(salt=salt, length=_KEY_BYTES, n=cfg.scrypt_n, r=cfg.scrypt_r, p=cfg.scrypt_p)
    derived = kdf.derive(password.encode("utf-8"))
    return f"{_SCHEME}${cfg.scrypt_n}${cfg.scrypt_r}${cfg.scrypt_p}${_b64(salt)}${_b64(derived)}"


def verify_password(password: str, encoded: str | None) -> bool:
    """
    Check a candidate password against a stored hash.

    Returns False for a missing or unparseable hash rather than raising;
    the caller reports a generic mismatch either way.
    """
    password = (password or "").strip()
    if not encoded or not password:
        return False

    try:
        scheme, n, r, p, salt_b64, hash_b64 = encoded.split("$")
        if scheme != _SCHEME:
            raise ValueError(f"unknown scheme {scheme}")
        salt = base64.b64decode(salt_b64)
        expected = base64.b64decode(hash_b64)
        kdf = Scrypt(salt=salt, length=len(expected), n=int(n), r=int(r), p=int(p))
    except ValueError as exc:
        logger.warning("password_hash_unreadable", error=str(exc))
        return False

    try:
        kdf.verify(password.encode("utf-8"), expected)
    except InvalidKey:
        return False
    return True
