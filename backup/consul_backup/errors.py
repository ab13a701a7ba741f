"""
Error types for consul-backup.

This module defines every error that terminates a backup run:
- BackupError: Base exception
- InvalidTargetURI / InvalidStoreAddress: Bad input, raised before any I/O
- AcquireError: Snapshot could not be fetched from the live cluster
- VerificationSetupError / RestoreError: Ephemeral agent infrastructure failed
- VerificationFailed: Restored snapshot does not match the live cluster
- UnsupportedProviderError: Target scheme has no upload provider
- UploadExhausted: Upload failed after all retries

Invariants:
    - All errors inherit from BackupError
    - Every error carries a stable code for logs
    - Infrastructure faults and data-integrity findings are distinct types
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from .verify.verifier import VerificationVerdict


class BackupError(Exception):
    """Base exception for all consul-backup errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "BACKUP_ERROR"
        self.details = details or {}


class InvalidTargetURI(BackupError):
    """Target URI is not an absolute scheme://host/... URI."""

    def __init__(self, uri: str) -> None:
        super().__init__(
            f"provided target url is invalid, got '{uri}'",
            code="INVALID_TARGET_URI",
            details={"uri": uri},
        )
        self.uri = uri


class InvalidStoreAddress(BackupError):
    """Consul address is missing a scheme or host."""

    def __init__(self, address: str) -> None:
        super().__init__(
            f"provided consul url is invalid, got '{address}'",
            code="INVALID_STORE_ADDRESS",
            details={"address": address},
        )
        self.address = address


class AcquireError(BackupError):
    """Snapshot could not be fetched or fully read from the live cluster."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="ACQUIRE_ERROR")


class VerificationSetupError(BackupError):
    """The ephemeral verification agent could not be started or queried.

    This is an infrastructure failure, not a finding about the snapshot.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message, code="VERIFICATION_SETUP_ERROR")


class RestoreError(BackupError):
    """The ephemeral agent rejected the snapshot restore."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="RESTORE_ERROR")


class VerificationFailed(BackupError):
    """Restored snapshot does not cover the live key space.

    Raised when:
    - Live keys are missing from the restored agent
    - Total value sizes differ by more than the tolerance
    """

    def __init__(self, verdict: VerificationVerdict) -> None:
        super().__init__(
            f"snapshot verification failed: {verdict.reason}",
            code="VERIFICATION_FAILED",
            details={
                "missing_keys": sorted(verdict.missing_keys),
                "live_total_bytes": verdict.live_total_bytes,
                "restored_total_bytes": verdict.restored_total_bytes,
            },
        )
        self.verdict = verdict


class UnsupportedProviderError(BackupError):
    """Target scheme has no upload provider."""

    def __init__(self, provider_kind: str) -> None:
        super().__init__(
            f"target type of {provider_kind} is not supported",
            code="UNSUPPORTED_PROVIDER",
            details={"provider_kind": provider_kind},
        )
        self.provider_kind = provider_kind


class UploadExhausted(BackupError):
    """Upload still failing after the retry budget was spent.

    Attributes:
        attempts: Number of attempts made
        cause: Last error raised by the provider
        cause_code: Provider error code when one could be extracted
    """

    def __init__(
        self,
        remote_path: str,
        attempts: int,
        cause: BaseException,
        cause_code: Optional[str] = None,
    ) -> None:
        super().__init__(
            f"error uploading to {remote_path} after {attempts} attempts: {cause}",
            code="UPLOAD_EXHAUSTED",
            details={
                "remote_path": remote_path,
                "attempts": attempts,
                "cause_code": cause_code,
            },
        )
        self.remote_path = remote_path
        self.attempts = attempts
        self.cause = cause
        self.cause_code = cause_code
