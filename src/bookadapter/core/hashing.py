"""Content hashing for BookAdapter.

This module provides:
- hash_bytes: Fingerprint an in-memory buffer
- hash_file: Fingerprint a file, reading it in blocks
"""

from __future__ import annotations

import hashlib
from pathlib import Path

from bookadapter.core.types import FileHash, HashAlgorithm

# Read size used when hashing files
HASH_BLOCK_SIZE = 64 * 1024

DEFAULT_ALGORITHM = HashAlgorithm.SHA256


def _new_hasher(algorithm: HashAlgorithm) -> hashlib._Hash:
    if algorithm == HashAlgorithm.SHA256:
        return hashlib.sha256()
    if algorithm == HashAlgorithm.BLAKE2B:
        return hashlib.blake2b()
    raise ValueError(f"Unsupported hash algorithm: {algorithm}")


def hash_bytes(data: bytes, algorithm: HashAlgorithm = DEFAULT_ALGORITHM) -> FileHash:
    """Compute the content fingerprint of a byte buffer.

    Args:
        data: Raw bytes to hash.
        algorithm: Hash algorithm to use.

    Returns:
        FileHash tagged with the algorithm.
    """
    hasher = _new_hasher(algorithm)
    hasher.update(data)
    return FileHash(algorithm=algorithm, digest=hasher.digest())


def hash_file(path: Path, algorithm: HashAlgorithm = DEFAULT_ALGORITHM) -> FileHash:
    """Compute the content fingerprint of a file.

    Reads the file in blocks so large books are not loaded into memory.
    The result is identical to hash_bytes() over the file content.

    Args:
        path: Path to the file to hash.
        algorithm: Hash algorithm to use.

    Returns:
        FileHash tagged with the algorithm.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    hasher = _new_hasher(algorithm)
    with open(path, "rb") as f:
        for block in iter(lambda: f.read(HASH_BLOCK_SIZE), b""):
            hasher.update(block)
    return FileHash(algorithm=algorithm, digest=hasher.digest())
