"""
Verification module for consul-backup.

This module proves a snapshot is restorable before it is uploaded:
- EphemeralAgent: throwaway single-node dev-mode Consul agent
- Verifier: restore + coverage check + approximate size check

Invariants:
    - A fresh agent per verification, torn down on every exit path
    - A failed verdict aborts the run before upload
"""

from .agent import EphemeralAgent, wait_for_leader
from .verifier import (
    VerificationVerdict,
    Verifier,
    VerifyState,
    compare_key_spaces,
)

__all__ = [
    "EphemeralAgent",
    "wait_for_leader",
    "Verifier",
    "VerifyState",
    "VerificationVerdict",
    "compare_key_spaces",
]
