"""Shared types for bookadapter.

This module defines value types used by both the local stores and the
transfer layer.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class HashAlgorithm(str, Enum):
    """Algorithm used to fingerprint file content."""

    SHA256 = "sha256"
    BLAKE2B = "blake2b"


@dataclass(frozen=True)
class FileHash:
    """Content fingerprint of a local file.

    Attributes:
        algorithm: Algorithm that produced the digest.
        digest: Raw digest bytes.
    """

    algorithm: HashAlgorithm
    digest: bytes

    @property
    def hexdigest(self) -> str:
        """Return the digest as a hex string."""
        return self.digest.hex()

    def to_dict(self) -> dict[str, str]:
        """Serialize for persistence."""
        return {"algorithm": self.algorithm.value, "digest": self.hexdigest}

    @classmethod
    def from_dict(cls, data: dict[str, str]) -> FileHash:
        """Create from a dictionary produced by to_dict()."""
        return cls(
            algorithm=HashAlgorithm(data["algorithm"]),
            digest=bytes.fromhex(data["digest"]),
        )

    def __str__(self) -> str:
        return f"{self.algorithm.value}:{self.hexdigest}"
