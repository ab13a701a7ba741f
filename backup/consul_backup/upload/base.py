"""
Base protocol and types for upload targets.

This module defines the UploadTarget protocol that every provider
implements, and the UploadOutcome reported by the dispatcher.

Invariants:
    - Constructing a target performs no network I/O
    - put() sends the complete body or raises; it never consumes the caller's bytes
    - close() is safe to call whether or not put() was ever called

How to change safely:
    - New providers implement UploadTarget and get a ProviderKind member
    - Keep error_code() side-effect free; it only inspects an exception
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional, Protocol, runtime_checkable

from ..errors import UploadExhausted


@dataclass(frozen=True)
class UploadOutcome:
    """Result of an upload.

    Attributes:
        succeeded: Whether the object was stored
        attempts: Number of attempts made
        final_error: Set when the retry budget was exhausted
        remote_path: Fully qualified remote location (e.g. s3://bucket/key)
    """

    succeeded: bool
    attempts: int
    final_error: Optional[UploadExhausted] = None
    remote_path: Optional[str] = None


@runtime_checkable
class UploadTarget(Protocol):
    """Protocol for object-storage providers."""

    @abstractmethod
    async def put(self, key: str, body: bytes, metadata: Dict[str, str]) -> None:
        """Store ``body`` under ``key``.

        Raises:
            Exception: Any provider error; the dispatcher decides whether to retry
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release provider resources."""
        ...

    @abstractmethod
    def error_code(self, error: BaseException) -> Optional[str]:
        """Extract a provider error code from an exception, if there is one."""
        ...
