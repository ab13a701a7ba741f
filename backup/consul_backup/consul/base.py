"""
Base protocol and types for Consul store clients.

This module defines the StoreClient protocol that the live cluster client,
the ephemeral agent client and the in-memory test client all implement,
along with the KeyRecord projection and transport errors.

Invariants:
    - KeyRecord never carries the value itself, only its size
    - snapshot_save() returns the complete snapshot or raises
    - Transport errors are ConsulError subclasses, never raw httpx errors

How to change safely:
    - Protocol changes require updating all implementations
    - Keep listing cheap; add fields to KeyRecord only if they are small
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Protocol, runtime_checkable


class ConsulError(Exception):
    """Base exception for Consul API operations.

    Attributes:
        status_code: HTTP status returned by Consul, if any
    """

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ConsulConnectionError(ConsulError):
    """Consul agent could not be reached."""
    pass


@dataclass(frozen=True)
class KeyRecord:
    """Minimal projection of a KV entry used for comparison.

    Attributes:
        key: Full KV key
        value_size: Length of the value in bytes
    """
    key: str
    value_size: int


@runtime_checkable
class StoreClient(Protocol):
    """Protocol for Consul store clients.

    Example:
        >>> client = ConsulClient(ConsulConfig(address="http://localhost:8500"))
        >>> data = await client.snapshot_save()
        >>> records = await client.kv_list("")
    """

    @property
    @abstractmethod
    def address(self) -> str:
        """Address this client talks to, for logs."""
        ...

    @abstractmethod
    async def snapshot_save(self) -> bytes:
        """Fetch a full-state snapshot.

        Raises:
            ConsulError: If the snapshot cannot be fetched or fully read
        """
        ...

    @abstractmethod
    async def snapshot_restore(self, data: bytes) -> None:
        """Restore a snapshot into the cluster.

        Raises:
            ConsulError: If the restore is rejected
        """
        ...

    @abstractmethod
    async def kv_list(self, prefix: str = "") -> List[KeyRecord]:
        """List every key under a prefix with its value size.

        Raises:
            ConsulError: If the listing fails
        """
        ...

    @abstractmethod
    async def leader(self) -> str:
        """Return the raft leader address, empty if there is none yet."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the underlying connection pool."""
        ...
