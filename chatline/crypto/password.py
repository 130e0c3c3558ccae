"""
Salted SHA-256 password hashing.

Algorithm: SHA-256 over (salt || UTF-8 password), Salt: random 16 bytes
Digest format: 64-char lowercase hex

Usage:
    salt = generate_salt()
    pwd_hash = hash_password(salt, "hunter2")
    ok = verify_password(salt, "hunter2", pwd_hash)
"""

import secrets
from cryptography.hazmat.primitives import hashes


# Per-account salt size (16 bytes = 128 bits)
SALT_SIZE = 16


def generate_salt() -> bytes:
    """Return a fresh random salt of SALT_SIZE bytes."""
    return secrets.token_bytes(SALT_SIZE)


def compute_sha256(data: bytes) -> bytes:
    """
    Compute the SHA-256 digest of data.

    Args:
        data: Input bytes to hash

    Returns:
        bytes: 32-byte SHA-256 digest

    Raises:
        TypeError: If data is not bytes

    Example:
        >>> compute_sha256(b"Hello, World!").hex()
        'dffd6021bb2bd5b0af676290809ec3a53191dd81c7f70a4b28688a362182986f'
    """
    if not isinstance(data, bytes):
        raise TypeError(f"data must be bytes, got {type(data)}")

    digest = hashes.Hash(hashes.SHA256())
    digest.update(data)
    return digest.finalize()


def hash_password(salt: bytes, password: str) -> str:
    """
    Compute SHA-256 hash of salt + password.

    Returns: 64-char hex digest
    Raises: TypeError
    """
    if not isinstance(salt, bytes):
        raise TypeError(f"salt must be bytes, got {type(salt)}")

    if not isinstance(password, str):
        raise TypeError(f"password must be str, got {type(password)}")

    return compute_sha256(salt + password.encode("utf-8")).hex()


def verify_password(salt: bytes, password: str, expected_hash: str) -> bool:
    """
    Recompute the hash for password and compare it to expected_hash.

    Uses secrets.compare_digest() so the comparison time does not depend on
    how many leading characters match.
    """
    computed_hash = hash_password(salt, password)
    return secrets.compare_digest(computed_hash, expected_hash.lower())
