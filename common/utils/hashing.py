"""Hash computation utilities using SHA-256."""

import hashlib
from typing import Union


def compute_hash(data: Union[bytes, str]) -> str:
    """
    Compute SHA-256 hash of data.

    Args:
        data: Data to hash (bytes or string)

    Returns:
        Hexadecimal hash string
    """
    if isinstance(data, str):
        data = data.encode("utf-8")

    sha256_hash = hashlib.sha256()
    sha256_hash.update(data)
    return sha256_hash.hexdigest()


def verify_hash(data: Union[bytes, str], expected_hash: str) -> bool:
    """
    Verify that data matches expected hash.

    Args:
        data: Data to verify (bytes or string)
        expected_hash: Expected hexadecimal hash string

    Returns:
        True if hash matches, False otherwise
    """
    computed_hash = compute_hash(data)
    return computed_hash.lower() == expected_hash.lower()
