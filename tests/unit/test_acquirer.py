"""
Unit tests for snapshot acquisition.
"""

import hashlib

import pytest

from backup.consul_backup.consul.base import ConsulConnectionError, ConsulError
from backup.consul_backup.consul.memory import InMemoryConsulClient
from backup.consul_backup.errors import AcquireError
from backup.consul_backup.snapshot.acquirer import SnapshotBlob, acquire_snapshot


class TestSnapshotBlob:
    """Tests for SnapshotBlob."""

    def test_derived_fields(self):
        blob = SnapshotBlob(data=b"abc", captured_at=1700000000.75)

        assert blob.size_bytes == 3
        assert blob.checksum == f"sha256:{hashlib.sha256(b'abc').hexdigest()}"
        assert blob.artifact_name == "1700000000.snap"

    def test_immutable(self):
        blob = SnapshotBlob(data=b"abc", captured_at=1.0)

        with pytest.raises(AttributeError):
            blob.data = b"other"


class TestAcquireSnapshot:
    """Tests for acquire_snapshot."""

    @pytest.mark.asyncio
    async def test_acquires_full_snapshot(self):
        live = InMemoryConsulClient({"a": b"x" * 10})

        blob = await acquire_snapshot(live)

        assert blob.data == await live.snapshot_save()
        assert blob.size_bytes > 0
        assert blob.captured_at > 0

    @pytest.mark.asyncio
    async def test_does_not_mutate_store(self):
        live = InMemoryConsulClient({"a": b"x" * 10})

        await acquire_snapshot(live)

        assert live.kv == {"a": b"x" * 10}
        assert live.restore_count == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [ConsulConnectionError("connection refused"), ConsulError("HTTP 500", status_code=500)],
    )
    async def test_store_errors_become_acquire_error(self, error):
        live = InMemoryConsulClient()
        live.inject_failure("snapshot_save", error)

        with pytest.raises(AcquireError) as exc_info:
            await acquire_snapshot(live)

        assert exc_info.value.code == "ACQUIRE_ERROR"
        assert exc_info.value.__cause__ is error

    @pytest.mark.asyncio
    async def test_empty_snapshot(self):
        class EmptyClient(InMemoryConsulClient):
            async def snapshot_save(self):
                return b""

        with pytest.raises(AcquireError, match="empty snapshot"):
            await acquire_snapshot(EmptyClient())
