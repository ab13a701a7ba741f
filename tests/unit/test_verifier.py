"""
Unit tests for snapshot verification.

Tests cover:
- Coverage and size checks in compare_key_spaces
- Verifier state machine with an in-memory agent
- Setup and restore failures
- Agent teardown on every path
"""

from contextlib import asynccontextmanager

import pytest

from backup.consul_backup.config import VerifyConfig
from backup.consul_backup.consul.base import ConsulConnectionError, ConsulError, KeyRecord
from backup.consul_backup.consul.memory import InMemoryConsulClient
from backup.consul_backup.errors import RestoreError, VerificationSetupError
from backup.consul_backup.snapshot.acquirer import SnapshotBlob
from backup.consul_backup.verify.verifier import (
    MISSING_KEYS_REASON,
    Verifier,
    VerifyState,
    compare_key_spaces,
)


def records(**sizes):
    return [KeyRecord(key=key, value_size=size) for key, size in sizes.items()]


async def make_blob(client):
    return SnapshotBlob(data=await client.snapshot_save(), captured_at=1700000000.0)


class TestCompareKeySpaces:
    """Tests for compare_key_spaces."""

    def test_identical(self):
        verdict = compare_key_spaces(records(a=10, b=20), records(a=10, b=20))

        assert verdict.passed
        assert verdict.missing_keys == frozenset()
        assert verdict.live_total_bytes == 30
        assert verdict.restored_total_bytes == 30
        assert verdict.reason is None

    def test_missing_key(self):
        verdict = compare_key_spaces(records(a=10, b=20), records(a=10))

        assert not verdict.passed
        assert verdict.missing_keys == frozenset({"b"})
        assert verdict.reason == MISSING_KEYS_REASON

    def test_missing_key_has_no_tolerance(self):
        """One tiny missing key fails even though sizes are within tolerance."""
        verdict = compare_key_spaces(records(a=10, b=0), records(a=10), size_tolerance_bytes=1000)

        assert not verdict.passed
        assert verdict.missing_keys == frozenset({"b"})

    def test_extra_restored_keys_are_allowed(self):
        """Keys deleted from live after the snapshot are not a failure."""
        verdict = compare_key_spaces(records(a=10), records(a=10, old=5))

        assert verdict.passed

    def test_size_mismatch_with_identical_keys(self):
        verdict = compare_key_spaces(records(a=10, b=2000), records(a=10, b=20))

        assert not verdict.passed
        assert verdict.missing_keys == frozenset()
        assert "different snapshot kv size detected" in verdict.reason

    def test_size_within_tolerance(self):
        verdict = compare_key_spaces(records(a=1010), records(a=10), size_tolerance_bytes=1000)
        assert verdict.passed

    def test_tolerance_is_configurable(self):
        verdict = compare_key_spaces(records(a=11), records(a=10), size_tolerance_bytes=0)
        assert not verdict.passed

    def test_both_checks_reported(self):
        verdict = compare_key_spaces(records(a=10, b=5000), records(a=10))

        assert not verdict.passed
        assert verdict.missing_keys == frozenset({"b"})
        assert MISSING_KEYS_REASON in verdict.reason
        assert "different snapshot kv size detected" in verdict.reason

    def test_empty_key_spaces(self):
        assert compare_key_spaces([], []).passed


class FakeAgent:
    """Agent factory yielding an in-memory client and recording teardown."""

    def __init__(self, client=None, start_error=None):
        self.client = client or InMemoryConsulClient(address="memory://agent")
        self.start_error = start_error
        self.started = 0
        self.stopped = 0

    @asynccontextmanager
    async def __call__(self):
        self.started += 1
        if self.start_error:
            raise self.start_error
        try:
            yield self.client
        finally:
            self.stopped += 1


class TestVerifier:
    """Tests for Verifier.verify."""

    @pytest.fixture
    def live(self):
        return InMemoryConsulClient({"a": b"x" * 10, "b": b"y" * 20}, address="memory://live")

    @pytest.mark.asyncio
    async def test_passes(self, live):
        blob = await make_blob(live)
        agent = FakeAgent()
        verifier = Verifier(VerifyConfig(), agent_factory=agent)

        verdict = await verifier.verify(live, blob)

        assert verdict.passed
        assert verdict.live_key_count == 2
        assert verdict.restored_key_count == 2
        assert verifier.state is VerifyState.PASSED
        assert agent.client.restore_count == 1
        assert (agent.started, agent.stopped) == (1, 1)

    @pytest.mark.asyncio
    async def test_missing_key_fails(self, live):
        blob = await make_blob(live)
        agent = FakeAgent(InMemoryConsulClient(drop_on_restore={"b"}))
        verifier = Verifier(VerifyConfig(), agent_factory=agent)

        verdict = await verifier.verify(live, blob)

        assert not verdict.passed
        assert verdict.missing_keys == frozenset({"b"})
        assert verifier.state is VerifyState.FAILED
        assert agent.stopped == 1

    @pytest.mark.asyncio
    async def test_live_store_not_mutated(self, live):
        blob = await make_blob(live)
        verifier = Verifier(VerifyConfig(), agent_factory=FakeAgent())

        await verifier.verify(live, blob)

        assert live.restore_count == 0
        assert live.kv == {"a": b"x" * 10, "b": b"y" * 20}

    @pytest.mark.asyncio
    async def test_fresh_agent_per_call(self, live):
        blob = await make_blob(live)
        agent = FakeAgent()
        verifier = Verifier(VerifyConfig(), agent_factory=agent)

        await verifier.verify(live, blob)
        await verifier.verify(live, blob)

        assert (agent.started, agent.stopped) == (2, 2)

    @pytest.mark.asyncio
    async def test_setup_error(self, live):
        blob = await make_blob(live)
        agent = FakeAgent(start_error=VerificationSetupError("consul not found"))
        verifier = Verifier(VerifyConfig(), agent_factory=agent)

        with pytest.raises(VerificationSetupError):
            await verifier.verify(live, blob)

        assert verifier.state is VerifyState.FAILED

    @pytest.mark.asyncio
    async def test_restore_error(self, live):
        blob = await make_blob(live)
        agent = FakeAgent()
        agent.client.inject_failure("snapshot_restore", ConsulError("bad snapshot", status_code=500))
        verifier = Verifier(VerifyConfig(), agent_factory=agent)

        with pytest.raises(RestoreError) as exc_info:
            await verifier.verify(live, blob)

        assert exc_info.value.code == "RESTORE_ERROR"
        assert agent.stopped == 1
        assert verifier.state is VerifyState.FAILED

    @pytest.mark.asyncio
    async def test_live_listing_error(self, live):
        blob = await make_blob(live)
        agent = FakeAgent()
        live.inject_failure("kv_list", ConsulConnectionError("connection reset"))
        verifier = Verifier(VerifyConfig(), agent_factory=agent)

        with pytest.raises(VerificationSetupError, match="live cluster"):
            await verifier.verify(live, blob)

        assert agent.stopped == 1

    @pytest.mark.asyncio
    async def test_kv_root(self):
        live = InMemoryConsulClient({"app/a": b"x", "other/b": b"y"})
        restored = InMemoryConsulClient(drop_on_restore={"other/b"})
        blob = SnapshotBlob(data=await live.snapshot_save(), captured_at=1.0)
        verifier = Verifier(VerifyConfig(kv_root="app/"), agent_factory=FakeAgent(restored))

        verdict = await verifier.verify(live, blob)

        assert verdict.passed
        assert verdict.live_key_count == 1
