"""
Snapshot verification for consul-backup.

The Verifier proves a snapshot is a usable reconstruction of the live
cluster before it is shipped anywhere:

    IDLE -> AGENT_STARTING -> AGENT_READY -> RESTORING -> COMPARING -> PASSED | FAILED

1. Start a fresh ephemeral agent (see agent.py)
2. Restore the snapshot into it
3. List keys (with value sizes) from both the agent and the live cluster
4. Run two independent checks:
   - coverage: every live key exists in the restored agent (zero tolerance)
   - size: total value bytes differ by at most size_tolerance_bytes

Both checks always run and either one fails the verdict. The live
cluster keeps taking writes while this runs, so the size check is only
approximate; the tolerance absorbs small drift.

Invariants:
    - The live cluster is only listed, never written
    - The agent is torn down before verify() returns or raises
    - Infrastructure failures raise; data findings return a FAILED verdict

How to change safely:
    - Add new checks to compare_key_spaces() and keep them independent
    - Keep thresholds in VerifyConfig
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncContextManager, Callable, Iterable, Optional

from ..config import VerifyConfig
from ..consul.base import ConsulError, KeyRecord, StoreClient
from ..errors import RestoreError, VerificationSetupError
from ..snapshot.acquirer import SnapshotBlob
from .agent import EphemeralAgent

logger = logging.getLogger(__name__)

MISSING_KEYS_REASON = "missing key(s) in restored snapshot"

AgentFactory = Callable[[], AsyncContextManager[StoreClient]]


class VerifyState(Enum):
    """Verification state machine states."""

    IDLE = "idle"
    AGENT_STARTING = "agent_starting"
    AGENT_READY = "agent_ready"
    RESTORING = "restoring"
    COMPARING = "comparing"
    PASSED = "passed"
    FAILED = "failed"


@dataclass(frozen=True)
class VerificationVerdict:
    """Outcome of one verification run.

    Attributes:
        passed: Whether both checks passed
        missing_keys: Live keys absent from the restored agent
        live_total_bytes: Sum of live value sizes
        restored_total_bytes: Sum of restored value sizes
        reason: Why the verdict failed, None when passed
        live_key_count: Number of live keys compared
        restored_key_count: Number of restored keys compared
    """

    passed: bool
    missing_keys: frozenset[str] = field(default_factory=frozenset)
    live_total_bytes: int = 0
    restored_total_bytes: int = 0
    reason: Optional[str] = None
    live_key_count: int = 0
    restored_key_count: int = 0


def compare_key_spaces(
    live: Iterable[KeyRecord],
    restored: Iterable[KeyRecord],
    size_tolerance_bytes: int = 1000,
) -> VerificationVerdict:
    """Compare live and restored key listings.

    Args:
        live: Listing from the live cluster
        restored: Listing from the restored agent
        size_tolerance_bytes: Allowed absolute difference in total value bytes

    Returns:
        VerificationVerdict
    """
    live = list(live)
    restored = list(restored)

    restored_keys = {record.key for record in restored}
    missing = frozenset(record.key for record in live if record.key not in restored_keys)
    live_total = sum(record.value_size for record in live)
    restored_total = sum(record.value_size for record in restored)

    reasons = []
    if missing:
        for key in sorted(missing):
            logger.error(f"key {key} was not found in the snapshot")
        reasons.append(MISSING_KEYS_REASON)
    if abs(live_total - restored_total) > size_tolerance_bytes:
        reasons.append(
            f"different snapshot kv size detected, got {restored_total} expected {live_total}"
        )

    return VerificationVerdict(
        passed=not reasons,
        missing_keys=missing,
        live_total_bytes=live_total,
        restored_total_bytes=restored_total,
        reason="; ".join(reasons) or None,
        live_key_count=len(live),
        restored_key_count=len(restored),
    )


class Verifier:
    """Restores a snapshot into an ephemeral agent and diffs it against live.

    Attributes:
        config: Verification configuration
        state: Current state machine state

    Example:
        >>> verifier = Verifier(VerifyConfig())
        >>> verdict = await verifier.verify(live_client, blob)
        >>> verdict.passed
        True
    """

    def __init__(
        self,
        config: VerifyConfig,
        tls_skip_verify: bool = False,
        agent_factory: Optional[AgentFactory] = None,
    ) -> None:
        """Initialize the verifier.

        Args:
            config: Verification configuration
            tls_skip_verify: Passed to the ephemeral agent client
            agent_factory: Returns an async context manager yielding a client
                for a fresh agent (defaults to EphemeralAgent)
        """
        self.config = config
        self.tls_skip_verify = tls_skip_verify
        self._agent_factory = agent_factory or (
            lambda: EphemeralAgent(self.config, tls_skip_verify=self.tls_skip_verify)
        )
        self.state = VerifyState.IDLE

    async def verify(self, live: StoreClient, snapshot: SnapshotBlob) -> VerificationVerdict:
        """Run one verification.

        Args:
            live: Live cluster client (read only)
            snapshot: Snapshot to verify

        Returns:
            VerificationVerdict (passed or failed)

        Raises:
            VerificationSetupError: If the agent cannot be started or listed
            RestoreError: If the agent rejects the snapshot
        """
        logger.info("verifying snapshot by restoring to dummy consul server")
        self._transition(VerifyState.AGENT_STARTING)

        try:
            async with self._agent_factory() as agent:
                self._transition(VerifyState.AGENT_READY)

                self._transition(VerifyState.RESTORING)
                try:
                    await agent.snapshot_restore(snapshot.data)
                except ConsulError as e:
                    raise RestoreError(f"error restoring snapshot to dummy consul agent: {e}") from e

                self._transition(VerifyState.COMPARING)
                restored_records = await self._list(agent, "restored agent")
                live_records = await self._list(live, "live cluster")
        except BaseException:
            self._transition(VerifyState.FAILED)
            raise

        verdict = compare_key_spaces(
            live_records,
            restored_records,
            size_tolerance_bytes=self.config.size_tolerance_bytes,
        )
        self._transition(VerifyState.PASSED if verdict.passed else VerifyState.FAILED)

        if verdict.passed:
            logger.info(
                f"verified all keys are contained within the snapshot, got {verdict.restored_key_count} keys",
                extra={
                    "live_total_bytes": verdict.live_total_bytes,
                    "restored_total_bytes": verdict.restored_total_bytes,
                },
            )
        else:
            logger.error(
                f"snapshot verification failed: {verdict.reason}",
                extra={
                    "missing_keys": len(verdict.missing_keys),
                    "live_total_bytes": verdict.live_total_bytes,
                    "restored_total_bytes": verdict.restored_total_bytes,
                },
            )
        return verdict

    async def _list(self, client: StoreClient, label: str) -> list[KeyRecord]:
        try:
            return await client.kv_list(self.config.kv_root)
        except ConsulError as e:
            raise VerificationSetupError(f"error listing keys from {label}: {e}") from e

    def _transition(self, state: VerifyState) -> None:
        logger.debug("Verification state change", extra={"from": self.state.value, "to": state.value})
        self.state = state
