"""Core module - Shared value types, hashing, and configuration."""

from bookadapter.core.config import BackendConfig
from bookadapter.core.hashing import DEFAULT_ALGORITHM, hash_bytes, hash_file
from bookadapter.core.types import FileHash, HashAlgorithm

__all__ = [
    # Config
    "BackendConfig",
    # Hashing
    "DEFAULT_ALGORITHM",
    "hash_bytes",
    "hash_file",
    # Types
    "FileHash",
    "HashAlgorithm",
]
