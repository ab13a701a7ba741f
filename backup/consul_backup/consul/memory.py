"""
In-memory Consul store client for testing.

This module provides a StoreClient backed by a plain dict for:
- Unit tests of the acquirer, verifier and orchestrator
- Local dry runs without a Consul binary

Snapshots are JSON documents mapping keys to base64 values. They are only
meaningful to other InMemoryConsulClient instances.

Invariants:
    - All data is lost on process exit
    - snapshot_save() captures the KV space as of the call
    - snapshot_restore() replaces the whole KV space

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with StoreClient protocol
    - Add features to help with testing scenarios
"""

from __future__ import annotations

import base64
import json
import logging
from typing import Dict, Iterable, List, Optional

from .base import ConsulError, KeyRecord

logger = logging.getLogger(__name__)


class InMemoryConsulClient:
    """In-memory implementation of StoreClient.

    Attributes:
        kv: Current key space (key -> value bytes)

    Example:
        >>> live = InMemoryConsulClient({"a": b"x" * 10})
        >>> data = await live.snapshot_save()
        >>> restored = InMemoryConsulClient()
        >>> await restored.snapshot_restore(data)
    """

    def __init__(
        self,
        kv: Optional[Dict[str, bytes]] = None,
        address: str = "memory://consul",
        drop_on_restore: Iterable[str] = (),
    ) -> None:
        """Initialize the client.

        Args:
            kv: Initial key space
            address: Address reported for logs
            drop_on_restore: Keys silently discarded by snapshot_restore(),
                to simulate a lossy snapshot
        """
        self.kv: Dict[str, bytes] = dict(kv or {})
        self._address = address
        self._drop_on_restore = set(drop_on_restore)
        self._failures: Dict[str, Exception] = {}
        self.restore_count = 0
        self.closed = False

    @property
    def address(self) -> str:
        return self._address

    async def snapshot_save(self) -> bytes:
        self._maybe_fail("snapshot_save")
        document = {key: base64.b64encode(value).decode("ascii") for key, value in self.kv.items()}
        return json.dumps(document, sort_keys=True).encode("utf-8")

    async def snapshot_restore(self, data: bytes) -> None:
        self._maybe_fail("snapshot_restore")
        try:
            document = json.loads(data.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ConsulError(f"failed to decode snapshot: {e}", status_code=500) from e

        self.kv = {
            key: base64.b64decode(value)
            for key, value in document.items()
            if key not in self._drop_on_restore
        }
        self.restore_count += 1
        logger.debug("Snapshot restored to in-memory store", extra={"keys": len(self.kv)})

    async def kv_list(self, prefix: str = "") -> List[KeyRecord]:
        self._maybe_fail("kv_list")
        return [
            KeyRecord(key=key, value_size=len(value))
            for key, value in sorted(self.kv.items())
            if key.startswith(prefix)
        ]

    async def leader(self) -> str:
        self._maybe_fail("leader")
        return "127.0.0.1:8300"

    async def close(self) -> None:
        self.closed = True

    # Testing helpers

    def put(self, key: str, value: bytes) -> None:
        """Set a key directly (testing helper)."""
        self.kv[key] = value

    def inject_failure(self, operation: str, exception: Exception) -> None:
        """Make the next call to ``operation`` raise ``exception`` (testing helper)."""
        self._failures[operation] = exception

    def _maybe_fail(self, operation: str) -> None:
        exception = self._failures.pop(operation, None)
        if exception is not None:
            raise exception
