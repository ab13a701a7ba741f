"""
Unit tests for the ephemeral verification agent.

Tests cover:
- Port allocation and agent config
- Readiness probing with a deadline
- Teardown when the agent cannot be started or never becomes ready
"""

import errno
import logging
import os
import sys

import pytest

from backup.consul_backup.config import VerifyConfig
from backup.consul_backup.consul.base import ConsulConnectionError, ConsulError
from backup.consul_backup.consul.memory import InMemoryConsulClient
from backup.consul_backup.errors import VerificationSetupError
from backup.consul_backup.verify import agent as agent_module
from backup.consul_backup.verify.agent import (
    EphemeralAgent,
    allocate_ports,
    build_agent_config,
    wait_for_leader,
)


class ScriptedLeader(InMemoryConsulClient):
    """Client whose leader() answers come from a script."""

    def __init__(self, answers):
        super().__init__(address="http://127.0.0.1:18500")
        self.answers = list(answers)
        self.calls = 0

    async def leader(self):
        self.calls += 1
        answer = self.answers.pop(0) if self.answers else ""
        if isinstance(answer, Exception):
            raise answer
        return answer


class ExitedProcess:
    returncode = 1


class TestAgentConfig:
    """Tests for port allocation and config generation."""

    def test_allocate_distinct_ports(self):
        ports = allocate_ports(4)

        assert len(ports) == 4
        assert len(set(ports)) == 4
        assert all(port > 0 for port in ports)

    def test_config_is_loopback_only(self, tmp_path):
        config = build_agent_config(
            {"http": 18500, "serf_lan": 18301, "serf_wan": 18302, "server": 18300},
            tmp_path / "agent.log",
        )

        assert config["bind_addr"] == "127.0.0.1"
        assert config["client_addr"] == "127.0.0.1"
        assert config["ports"]["http"] == 18500
        assert config["ports"]["dns"] == -1
        assert config["ports"]["grpc"] == -1
        assert config["ports"]["grpc_tls"] == -1
        assert "retry_join" not in config
        assert config["log_file"] == str(tmp_path / "agent.log")


class TestWaitForLeader:
    """Tests for the readiness probe."""

    @pytest.mark.asyncio
    async def test_returns_once_leader_elected(self):
        client = ScriptedLeader(
            [ConsulConnectionError("connection refused"), ConsulError("No cluster leader", 500), "", "127.0.0.1:18300"]
        )

        leader = await wait_for_leader(client, timeout=5, interval=0)

        assert leader == "127.0.0.1:18300"
        assert client.calls == 4

    @pytest.mark.asyncio
    async def test_deadline(self):
        client = ScriptedLeader([])

        with pytest.raises(VerificationSetupError, match="not ready"):
            await wait_for_leader(client, timeout=0.05, interval=0.01)

    @pytest.mark.asyncio
    async def test_deadline_reports_last_error(self):
        client = ScriptedLeader([ConsulConnectionError("connection refused")] * 100)

        with pytest.raises(VerificationSetupError, match="connection refused"):
            await wait_for_leader(client, timeout=0.05, interval=0.01)

    @pytest.mark.asyncio
    async def test_process_exit_aborts(self):
        client = ScriptedLeader([])

        with pytest.raises(VerificationSetupError, match="exited with code 1"):
            await wait_for_leader(client, timeout=5, interval=0, process=ExitedProcess())

        assert client.calls == 0


class TestEphemeralAgent:
    """Tests for EphemeralAgent lifecycle."""

    @pytest.mark.asyncio
    async def test_missing_binary_is_setup_error(self, tmp_path, monkeypatch):
        """Failure to spawn raises and still removes the workdir."""
        workdir = tmp_path / "agent"

        def fake_mkdtemp(prefix=None):
            workdir.mkdir()
            return str(workdir)

        monkeypatch.setattr(agent_module.tempfile, "mkdtemp", fake_mkdtemp)
        agent = EphemeralAgent(VerifyConfig(consul_binary=str(tmp_path / "no-such-consul")))

        with pytest.raises(VerificationSetupError, match="error starting dummy consul agent"):
            async with agent:
                pytest.fail("agent should not start")

        assert not workdir.exists()
        assert agent.workdir is None

    def test_construction_starts_nothing(self):
        agent = EphemeralAgent(VerifyConfig())

        assert agent.workdir is None
        assert agent.client is None

    @pytest.mark.asyncio
    async def test_workdir_failure_is_setup_error(self, monkeypatch):
        def full_disk(prefix=None):
            raise OSError(errno.ENOSPC, "No space left on device")

        monkeypatch.setattr(agent_module.tempfile, "mkdtemp", full_disk)
        agent = EphemeralAgent(VerifyConfig())

        with pytest.raises(VerificationSetupError, match="No space left on device"):
            async with agent:
                pytest.fail("agent should not start")

        assert agent.workdir is None


def write_stub_agent(tmp_path, body):
    """Write an executable stand-in for consul that records its pid and never answers."""
    pid_file = tmp_path / "agent.pid"
    script = tmp_path / "consul"
    script.write_text(f'#!/bin/sh\necho $$ > "{pid_file}"\n{body}\n')
    script.chmod(0o755)
    return script, pid_file


def assert_process_gone(pid):
    with pytest.raises(ProcessLookupError):
        os.kill(pid, 0)


@pytest.mark.skipif(sys.platform == "win32", reason="needs a POSIX shell")
class TestEphemeralAgentTeardown:
    """Teardown of a started agent that never becomes ready."""

    @pytest.fixture
    def workdir(self, tmp_path, monkeypatch):
        workdir = tmp_path / "agent"

        def fake_mkdtemp(prefix=None):
            workdir.mkdir()
            return str(workdir)

        monkeypatch.setattr(agent_module.tempfile, "mkdtemp", fake_mkdtemp)
        return workdir

    @staticmethod
    def stub_config(binary):
        return VerifyConfig(
            consul_binary=str(binary),
            ready_timeout_seconds=0.5,
            poll_interval_seconds=0.05,
            shutdown_timeout_seconds=0.5,
        )

    @pytest.mark.asyncio
    async def test_terminated_after_readiness_deadline(self, tmp_path, workdir, caplog):
        binary, pid_file = write_stub_agent(tmp_path, "exec sleep 30")
        agent = EphemeralAgent(self.stub_config(binary))

        with caplog.at_level(logging.WARNING):
            with pytest.raises(VerificationSetupError, match="not ready"):
                async with agent:
                    pytest.fail("agent should not become ready")

        assert_process_gone(int(pid_file.read_text()))
        assert not workdir.exists()
        assert agent.workdir is None
        assert agent.client is None
        assert "ignored SIGTERM" not in caplog.text

    @pytest.mark.asyncio
    async def test_killed_when_sigterm_ignored(self, tmp_path, workdir, caplog):
        binary, pid_file = write_stub_agent(
            tmp_path, "trap '' TERM\nwhile true; do sleep 0.1; done"
        )
        agent = EphemeralAgent(self.stub_config(binary))

        with caplog.at_level(logging.WARNING):
            with pytest.raises(VerificationSetupError, match="not ready"):
                async with agent:
                    pytest.fail("agent should not become ready")

        assert_process_gone(int(pid_file.read_text()))
        assert not workdir.exists()
        assert "ignored SIGTERM" in caplog.text
