"""
Credential digest for the realtime login.

The DDP login method accepts a SHA-256 hex digest in place of the raw password.
"""
import hashlib

DIGEST_ALGORITHM = "sha-256"


def sha256_hex(value: str) -> str:
    """Return the lowercase hex SHA-256 digest of a UTF-8 string."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()
