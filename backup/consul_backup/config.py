"""
Configuration management for consul-backup.

Configuration comes from environment variables, optionally overridden by
command-line flags (see main.py). This module provides typed configuration
classes with validation.

Invariants:
    - All settings have sensible defaults except the Consul address and target
    - Validation happens before any network activity
    - Secrets (the ACL token) are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep verification thresholds configurable rather than hardcoded
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from urllib.parse import urlsplit

from .errors import InvalidStoreAddress, InvalidTargetURI
from .target import TargetDescriptor, parse_target

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class ConsulConfig:
    """Consul HTTP API client configuration.

    Attributes:
        address: Agent address including protocol (http/https)
        tls_skip_verify: Skip verifying the TLS certificate
        token: ACL token sent as X-Consul-Token (optional)
        timeout_seconds: Per-request timeout
    """

    address: str = ""
    tls_skip_verify: bool = False
    token: str | None = None
    timeout_seconds: float = 60.0

    @classmethod
    def from_env(cls) -> ConsulConfig:
        """Load configuration from environment variables."""
        return cls(
            address=os.getenv("CONSUL_ADDR", ""),
            tls_skip_verify=_env_bool("CONSUL_TLS_SKIP_VERIFY", False),
            token=os.getenv("CONSUL_HTTP_TOKEN") or None,
            timeout_seconds=float(os.getenv("CONSUL_TIMEOUT_SECONDS", "60")),
        )

    def validate(self) -> None:
        """Check the address has a scheme and a host.

        Raises:
            InvalidStoreAddress: If the address is unusable
        """
        try:
            parts = urlsplit(self.address)
            hostname = parts.hostname
        except ValueError:
            raise InvalidStoreAddress(self.address) from None
        if not parts.scheme or not hostname:
            raise InvalidStoreAddress(self.address)


@dataclass(frozen=True)
class VerifyConfig:
    """Snapshot verification configuration.

    Attributes:
        enabled: Restore into an ephemeral agent and compare before upload
        consul_binary: Consul executable used for the ephemeral agent
        kv_root: Key-space root compared on both sides ("" = everything)
        size_tolerance_bytes: Allowed difference in total value bytes
        ready_timeout_seconds: Deadline for the ephemeral agent to elect a leader
        poll_interval_seconds: Interval between readiness probes
        shutdown_timeout_seconds: Grace period before the agent is killed
    """

    enabled: bool = True
    consul_binary: str = "consul"
    kv_root: str = ""
    size_tolerance_bytes: int = 1000
    ready_timeout_seconds: float = 30.0
    poll_interval_seconds: float = 0.25
    shutdown_timeout_seconds: float = 10.0

    @classmethod
    def from_env(cls) -> VerifyConfig:
        """Load configuration from environment variables."""
        return cls(
            enabled=_env_bool("BACKUP_VERIFY", True),
            consul_binary=os.getenv("CONSUL_BINARY", "consul"),
            kv_root=os.getenv("VERIFY_KV_ROOT", ""),
            size_tolerance_bytes=int(os.getenv("VERIFY_SIZE_TOLERANCE_BYTES", "1000")),
            ready_timeout_seconds=float(os.getenv("VERIFY_READY_TIMEOUT_SECONDS", "30")),
            poll_interval_seconds=float(os.getenv("VERIFY_POLL_INTERVAL_SECONDS", "0.25")),
            shutdown_timeout_seconds=float(os.getenv("VERIFY_SHUTDOWN_TIMEOUT_SECONDS", "10")),
        )


@dataclass(frozen=True)
class UploadConfig:
    """Upload retry configuration.

    Attributes:
        max_retries: Retries after the first failed attempt
        retry_delay_seconds: Fixed delay between attempts
    """

    max_retries: int = 3
    retry_delay_seconds: float = 5.0

    @classmethod
    def from_env(cls) -> UploadConfig:
        """Load configuration from environment variables."""
        return cls(
            max_retries=int(os.getenv("UPLOAD_MAX_RETRIES", "3")),
            retry_delay_seconds=float(os.getenv("UPLOAD_RETRY_DELAY_SECONDS", "5")),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class BackupConfig:
    """Complete backup run configuration.

    Attributes:
        target_uri: Where to upload the snapshot (s3://bucket/prefix?region=...)
        consul: Live cluster client configuration
        verify: Verification configuration
        upload: Upload retry configuration
        observability: Logging configuration
    """

    target_uri: str = ""
    consul: ConsulConfig = field(default_factory=ConsulConfig)
    verify: VerifyConfig = field(default_factory=VerifyConfig)
    upload: UploadConfig = field(default_factory=UploadConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> BackupConfig:
        """Load complete configuration from environment variables.

        Validation is left to the caller so flags can be applied first.
        """
        return cls(
            target_uri=os.getenv("TARGET_URI", ""),
            consul=ConsulConfig.from_env(),
            verify=VerifyConfig.from_env(),
            upload=UploadConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

    def validate(self) -> TargetDescriptor:
        """Validate configuration consistency.

        Returns:
            The parsed target descriptor

        Raises:
            InvalidStoreAddress: If the Consul address is unusable
            InvalidTargetURI: If the target URI is unusable
            UnsupportedProviderError: If the target scheme has no provider
            ValueError: If a numeric setting is out of range
        """
        self.consul.validate()
        if not self.target_uri:
            raise InvalidTargetURI(self.target_uri)
        target = parse_target(self.target_uri)
        target.provider()

        if self.upload.max_retries < 0:
            raise ValueError("UPLOAD_MAX_RETRIES must be >= 0")
        if self.upload.retry_delay_seconds < 0:
            raise ValueError("UPLOAD_RETRY_DELAY_SECONDS must be >= 0")
        if self.verify.size_tolerance_bytes < 0:
            raise ValueError("VERIFY_SIZE_TOLERANCE_BYTES must be >= 0")
        if self.verify.ready_timeout_seconds <= 0:
            raise ValueError("VERIFY_READY_TIMEOUT_SECONDS must be > 0")

        return target

    def log_config(self, log: logging.Logger | None = None) -> None:
        """Log configuration (redacting secrets)."""
        (log or logger).info(
            "Backup configuration loaded",
            extra={
                "consul_addr": self.consul.address,
                "consul_tls_skip_verify": self.consul.tls_skip_verify,
                "consul_token_set": self.consul.token is not None,
                "target": self.target_uri,
                "verify_enabled": self.verify.enabled,
                "size_tolerance_bytes": self.verify.size_tolerance_bytes,
                "upload_max_retries": self.upload.max_retries,
                "log_level": self.observability.log_level,
            },
        )
