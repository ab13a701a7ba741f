"""
consul-backup - Main entry point.

This module runs one backup:
- Acquire a snapshot from the live cluster
- Verify it in an ephemeral agent (unless disabled)
- Upload it to the target with bounded retry

Usage:
    consul-backup --consul-addr https://consul:8501 --target s3://bucket/prefix?region=us-east-1
    python -m backup.consul_backup.main ...

Flags fall back to environment variables (CONSUL_ADDR, TARGET_URI, ...).
See config.py for all available settings.

Invariants:
    - Invalid input exits non-zero before any network activity
    - Steps run strictly in order; each finishes before the next starts
    - Exit status is 0 only if the snapshot was stored remotely

How to change safely:
    - New steps go into BackupRunner.run() and must raise BackupError subclasses
    - Keep logging configuration in setup_logging(); modules only use getLogger
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import signal
import sys
from typing import Optional, Sequence

import json_log_formatter

from .config import BackupConfig, ObservabilityConfig
from .consul.base import StoreClient
from .consul.client import ConsulClient
from .errors import BackupError, VerificationFailed
from .snapshot.acquirer import acquire_snapshot
from .target import TargetDescriptor
from .upload.base import UploadOutcome
from .upload.dispatcher import UploadDispatcher
from .verify.verifier import Verifier

PACKAGE_LOGGER = "backup.consul_backup"


def setup_logging(config: BackupConfig) -> logging.Logger:
    """Configure and return the package logger.

    Args:
        config: Backup configuration

    Returns:
        Logger that owns the handler for every consul-backup module
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    log = logging.getLogger(PACKAGE_LOGGER)
    log.setLevel(level)
    log.handlers = [handler]
    log.propagate = False

    # Reduce noise from libraries
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("aiobotocore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    return log


class BackupRunner:
    """Runs the acquire -> verify -> upload pipeline once.

    Attributes:
        config: Backup configuration
        target: Parsed upload target
        verifier: Snapshot verifier
        dispatcher: Upload dispatcher

    Example:
        >>> runner = BackupRunner(config, target, log=setup_logging(config))
        >>> outcome = await runner.run()
    """

    def __init__(
        self,
        config: BackupConfig,
        target: TargetDescriptor,
        live: Optional[StoreClient] = None,
        verifier: Optional[Verifier] = None,
        dispatcher: Optional[UploadDispatcher] = None,
        log: Optional[logging.Logger] = None,
    ) -> None:
        """Initialize the runner.

        Args:
            config: Validated backup configuration
            target: Parsed target descriptor
            live: Live cluster client (created from config if not provided)
            verifier: Verifier (created from config if not provided)
            dispatcher: Upload dispatcher (created from config if not provided)
            log: Logger handle (defaults to the package logger)
        """
        self.config = config
        self.target = target
        self.verifier = verifier or Verifier(
            config.verify, tls_skip_verify=config.consul.tls_skip_verify
        )
        self.dispatcher = dispatcher or UploadDispatcher(config.upload)
        self.log = log or logging.getLogger(PACKAGE_LOGGER)
        self._live = live

    async def run(self) -> UploadOutcome:
        """Run the pipeline.

        Returns:
            UploadOutcome of the successful upload

        Raises:
            BackupError: On any failure; nothing is asserted about the upload
        """
        live = self._live or ConsulClient(self.config.consul)
        try:
            blob = await acquire_snapshot(live)

            if self.config.verify.enabled:
                verdict = await self.verifier.verify(live, blob)
                if not verdict.passed:
                    raise VerificationFailed(verdict)
            else:
                self.log.warning("snapshot verification disabled, uploading unverified snapshot")

            outcome = await self.dispatcher.upload(self.target, blob.artifact_name, blob)
            if not outcome.succeeded:
                raise outcome.final_error

            self.log.info(
                "Backup completed",
                extra={
                    "remote_path": outcome.remote_path,
                    "attempts": outcome.attempts,
                    "size_bytes": blob.size_bytes,
                    "checksum": blob.checksum,
                },
            )
            return outcome
        finally:
            if self._live is None:
                await live.close()


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Snapshot a Consul cluster, verify the snapshot and upload it"
    )
    parser.add_argument(
        "--consul-addr",
        help="The address of the consul server, including protocol (http/https) [env CONSUL_ADDR]",
    )
    parser.add_argument(
        "--consul-tls-skip-verify",
        action="store_true",
        help="Skip verifying the consul tls connection",
    )
    parser.add_argument(
        "--target",
        help="The target to send the backup to. Format: {provider}://{path_on_provider} "
        "(eg, s3://my-bucket/consul-snapshots?region=us-east-1) [env TARGET_URI]",
    )
    parser.add_argument("--skip-verify", action="store_true", help="Upload without verifying")
    parser.add_argument("--consul-binary", help="Consul executable for the verification agent")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> BackupConfig:
    """Load config from the environment and apply command-line overrides."""
    config = BackupConfig.from_env()

    consul = config.consul
    if args.consul_addr:
        consul = dataclasses.replace(consul, address=args.consul_addr)
    if args.consul_tls_skip_verify:
        consul = dataclasses.replace(consul, tls_skip_verify=True)

    verify = config.verify
    if args.skip_verify:
        verify = dataclasses.replace(verify, enabled=False)
    if args.consul_binary:
        verify = dataclasses.replace(verify, consul_binary=args.consul_binary)

    observability = config.observability
    if args.verbose:
        observability = dataclasses.replace(observability, log_level="DEBUG")

    return dataclasses.replace(
        config,
        target_uri=args.target or config.target_uri,
        consul=consul,
        verify=verify,
        observability=observability,
    )


def run_cli(argv: Optional[Sequence[str]] = None) -> int:
    """Run one backup from the command line.

    Returns:
        Process exit status
    """
    args = parse_args(argv)
    try:
        config = build_config(args)
    except ValueError as e:
        log = setup_logging(BackupConfig(observability=ObservabilityConfig.from_env()))
        log.error(f"Configuration error: {e}", extra={"code": "INVALID_CONFIG"})
        return 1
    log = setup_logging(config)

    try:
        target = config.validate()
    except BackupError as e:
        log.error(e.message, extra={"code": e.code})
        return 1
    except ValueError as e:
        log.error(f"Configuration error: {e}", extra={"code": "INVALID_CONFIG"})
        return 1

    log.info(f"consul host: {config.consul.address}")
    log.info(f"target: {config.target_uri}")
    config.log_config(log)

    runner = BackupRunner(config, target, log=log)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    task = loop.create_task(runner.run())

    def handle_signal(sig: int) -> None:
        log.warning(f"Received signal {sig}, cancelling backup")
        task.cancel()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        loop.run_until_complete(task)
    except BackupError as e:
        log.error(e.message, extra={"code": e.code, **e.details})
        return 1
    except asyncio.CancelledError:
        log.error("Backup cancelled", extra={"code": "CANCELLED"})
        return 1
    finally:
        loop.close()
        asyncio.set_event_loop(None)

    return 0


def main() -> None:
    """Main entry point."""
    sys.exit(run_cli())


if __name__ == "__main__":
    main()
