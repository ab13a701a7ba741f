"""
Snapshot acquisition for consul-backup.

The acquirer asks the live cluster for a full-state snapshot and keeps
the whole thing in memory as an opaque byte string. The same bytes are
later restored into the verification agent and uploaded.

Artifact naming:
    <unix_seconds>.snap   (time of acquisition)

Invariants:
    - Acquisition failure is fatal; re-capturing after a partial failure
      could observe the cluster at a different logical time
    - An empty snapshot is treated as a failed read
    - The blob is never mutated after creation

How to change safely:
    - Keep SnapshotBlob immutable; uploads re-read the same bytes on retry
    - Artifact names must stay unique per run
"""

from __future__ import annotations

import hashlib
import logging
import time
from dataclasses import dataclass, field

from ..consul.base import ConsulError, StoreClient
from ..errors import AcquireError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SnapshotBlob:
    """An acquired snapshot.

    Attributes:
        data: Raw snapshot bytes as returned by Consul
        captured_at: Acquisition time (Unix seconds)
    """

    data: bytes
    captured_at: float = field(default_factory=time.time)

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    @property
    def checksum(self) -> str:
        """SHA-256 of the snapshot bytes."""
        return f"sha256:{hashlib.sha256(self.data).hexdigest()}"

    @property
    def artifact_name(self) -> str:
        return f"{int(self.captured_at)}.snap"


async def acquire_snapshot(client: StoreClient) -> SnapshotBlob:
    """Fetch a snapshot from the live cluster.

    Args:
        client: Live cluster client

    Returns:
        SnapshotBlob holding the complete snapshot

    Raises:
        AcquireError: If the cluster is unreachable or the stream is incomplete
    """
    captured_at = time.time()
    try:
        data = await client.snapshot_save()
    except ConsulError as e:
        raise AcquireError(f"error fetching consul snapshot: {e}") from e

    if not data:
        raise AcquireError(f"error reading consul snapshot: {client.address} returned an empty snapshot")

    blob = SnapshotBlob(data=bytes(data), captured_at=captured_at)
    logger.info(
        f"got snapshot of {blob.size_bytes} bytes",
        extra={"size_bytes": blob.size_bytes, "checksum": blob.checksum},
    )
    return blob
