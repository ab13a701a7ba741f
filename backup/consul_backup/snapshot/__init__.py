"""
Snapshot module for consul-backup.

This module captures a full-state Consul snapshot into memory.

Invariants:
    - A snapshot is captured exactly once per run (no retry)
    - The captured bytes are immutable
    - Capturing never mutates the live cluster
"""

from .acquirer import SnapshotBlob, acquire_snapshot

__all__ = ["SnapshotBlob", "acquire_snapshot"]
