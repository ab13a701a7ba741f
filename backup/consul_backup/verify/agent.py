"""
Ephemeral Consul agent used to prove a snapshot is restorable.

EphemeralAgent is an async context manager that:
1. Creates a private temporary directory
2. Writes a JSON agent config binding every listener to 127.0.0.1 on
   freshly allocated ports (DNS and gRPC disabled)
3. Spawns ``consul agent -dev`` with that config
4. Polls /v1/status/leader until the agent elects itself leader
5. Yields a ConsulClient pointed at the agent

On exit (normal, exception or cancellation) the process is terminated,
killed if it ignores SIGTERM, and the temporary directory is removed.

Invariants:
    - One agent per context; agents are never shared or reused
    - The agent never joins peers and never touches a persistent data dir
    - Teardown runs on every exit path, including failed startup
"""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
import socket
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

from ..config import ConsulConfig, VerifyConfig
from ..consul.base import ConsulError, StoreClient
from ..consul.client import ConsulClient
from ..errors import VerificationSetupError

logger = logging.getLogger(__name__)

LOOPBACK = "127.0.0.1"


def allocate_ports(count: int) -> list[int]:
    """Reserve ``count`` distinct free TCP ports on the loopback address."""
    sockets = []
    try:
        for _ in range(count):
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            sock.bind((LOOPBACK, 0))
            sockets.append(sock)
        return [sock.getsockname()[1] for sock in sockets]
    finally:
        for sock in sockets:
            sock.close()


def build_agent_config(ports: Dict[str, int], log_file: Path) -> Dict[str, Any]:
    """Build the JSON agent configuration for a dev-mode verification agent.

    Requires Consul 1.14 or newer; older agents reject the ``grpc_tls`` port key.
    """
    return {
        "node_name": "consul-backup-verify",
        "bind_addr": LOOPBACK,
        "client_addr": LOOPBACK,
        "advertise_addr": LOOPBACK,
        "disable_update_check": True,
        "log_file": str(log_file),
        "ports": {
            "http": ports["http"],
            "serf_lan": ports["serf_lan"],
            "serf_wan": ports["serf_wan"],
            "server": ports["server"],
            "dns": -1,
            "grpc": -1,
            "grpc_tls": -1,
        },
    }


async def wait_for_leader(
    client: StoreClient,
    timeout: float,
    interval: float,
    process: Optional[asyncio.subprocess.Process] = None,
) -> str:
    """Poll the agent until it reports a raft leader.

    Args:
        client: Client pointed at the agent
        timeout: Deadline in seconds
        interval: Delay between probes
        process: Agent process; an early exit aborts the wait

    Returns:
        The leader address

    Raises:
        VerificationSetupError: If the deadline passes or the process exits
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    last_error: Optional[Exception] = None

    while True:
        if process is not None and process.returncode is not None:
            raise VerificationSetupError(
                f"consul agent exited with code {process.returncode} before becoming ready"
            )

        try:
            leader = await client.leader()
            if leader:
                logger.debug("Ephemeral agent ready", extra={"leader": leader})
                return leader
        except ConsulError as e:
            last_error = e

        if loop.time() >= deadline:
            detail = f": {last_error}" if last_error else ""
            raise VerificationSetupError(
                f"consul agent at {client.address} not ready after {timeout}s{detail}"
            )
        await asyncio.sleep(interval)


class EphemeralAgent:
    """Scoped single-node dev-mode Consul agent.

    Example:
        >>> async with EphemeralAgent(VerifyConfig()) as agent_client:
        ...     await agent_client.snapshot_restore(data)
    """

    def __init__(self, config: VerifyConfig, tls_skip_verify: bool = False) -> None:
        """Initialize (nothing is started until the context is entered).

        Args:
            config: Verification configuration
            tls_skip_verify: Passed through to the agent client
        """
        self.config = config
        self.tls_skip_verify = tls_skip_verify
        self.workdir: Optional[Path] = None
        self.client: Optional[ConsulClient] = None
        self._process: Optional[asyncio.subprocess.Process] = None

    async def __aenter__(self) -> StoreClient:
        try:
            return await self._start()
        except BaseException:
            await self._teardown()
            raise

    async def __aexit__(self, *exc_info: Any) -> None:
        await self._teardown()

    async def _start(self) -> StoreClient:
        try:
            self.workdir = Path(tempfile.mkdtemp(prefix="consul-backup-verify-"))

            http_port, serf_lan, serf_wan, server = allocate_ports(4)
            config_path = self.workdir / "agent.json"
            config_path.write_text(
                json.dumps(
                    build_agent_config(
                        {"http": http_port, "serf_lan": serf_lan, "serf_wan": serf_wan, "server": server},
                        self.workdir / "agent.log",
                    ),
                    indent=2,
                )
            )

            self._process = await asyncio.create_subprocess_exec(
                self.config.consul_binary,
                "agent",
                "-dev",
                f"-config-file={config_path}",
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
                cwd=str(self.workdir),
            )
        except OSError as e:
            raise VerificationSetupError(
                f"error starting dummy consul agent to test snapshot: {e}"
            ) from e

        address = f"http://{LOOPBACK}:{http_port}"
        logger.info(
            "Started ephemeral consul agent",
            extra={"pid": self._process.pid, "address": address, "workdir": str(self.workdir)},
        )

        self.client = ConsulClient(
            ConsulConfig(address=address, tls_skip_verify=self.tls_skip_verify)
        )

        logger.info("waiting for consul server to become ready")
        await wait_for_leader(
            self.client,
            timeout=self.config.ready_timeout_seconds,
            interval=self.config.poll_interval_seconds,
            process=self._process,
        )
        return self.client

    async def _teardown(self) -> None:
        if self.client is not None:
            await self.client.close()
            self.client = None

        process, self._process = self._process, None
        if process is not None and process.returncode is None:
            try:
                process.terminate()
                try:
                    await asyncio.wait_for(process.wait(), timeout=self.config.shutdown_timeout_seconds)
                except asyncio.TimeoutError:
                    logger.warning("Ephemeral consul agent ignored SIGTERM, killing", extra={"pid": process.pid})
                    process.kill()
                    await process.wait()
            except ProcessLookupError:
                pass

        if self.workdir is not None:
            shutil.rmtree(self.workdir, ignore_errors=True)
            logger.debug("Removed ephemeral agent workdir", extra={"workdir": str(self.workdir)})
            self.workdir = None
