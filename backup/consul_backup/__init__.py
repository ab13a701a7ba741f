"""
consul-backup - Verified Consul snapshots shipped to object storage.

This package captures a point-in-time snapshot of a Consul cluster,
optionally proves it restorable, and uploads it to an object store:
- Snapshot acquisition from the live cluster (Consul HTTP API)
- Verification by restoring into a throwaway single-node agent
- Bounded-retry upload to the target addressed by a URI (s3://...)

Pipeline:
    ┌──────────────┐     ┌──────────────┐     ┌──────────────────┐
    │ Live Consul  │────▶│   Acquirer   │────▶│   SnapshotBlob   │
    │   cluster    │     │ GET snapshot │     │ (immutable bytes)│
    └──────┬───────┘     └──────────────┘     └────────┬─────────┘
           │                                           │
           │ KV listing           ┌────────────────────┤
           │                      ▼                    ▼
           │              ┌──────────────┐     ┌──────────────┐
           └─────────────▶│   Verifier   │────▶│  Dispatcher  │
                          │ dev agent +  │ ok  │ retry upload │
                          │  KV compare  │     └──────┬───────┘
                          └──────────────┘            ▼
                                                 ┌─────────┐
                                                 │   S3    │
                                                 └─────────┘

Invariants:
    - The live cluster is only ever read, never written
    - A snapshot is never uploaded when requested verification failed
    - The ephemeral agent is torn down on every exit path
    - The snapshot bytes are never mutated after acquisition

How to change safely:
    - New upload providers are added as ProviderKind members
    - Verification thresholds live in config, not in code
    - Keep the pipeline sequential; the blob is the only shared state
"""

from ._version import __version__

__all__ = ["__version__"]
