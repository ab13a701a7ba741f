"""
Upload dispatcher for consul-backup.

Delivers a snapshot blob to the target named by a TargetDescriptor with
a simple fixed-interval bounded retry:

    attempt 1 -> fail -> sleep -> attempt 2 -> ... -> attempt max_retries + 1

Every failure before the last is a warning. After the last one the
outcome carries an UploadExhausted error and the caller fails the run.

Invariants:
    - Unsupported providers are rejected before any client is built
    - Every attempt sends the same immutable bytes
    - The provider client is closed whatever the outcome

How to change safely:
    - Add providers to create_upload_target() via ProviderKind
    - Keep the delay injectable so tests never really sleep
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from ..config import UploadConfig
from ..errors import UnsupportedProviderError, UploadExhausted
from ..snapshot.acquirer import SnapshotBlob
from ..target import ProviderKind, TargetDescriptor
from .base import UploadOutcome, UploadTarget
from .s3 import S3UploadTarget

logger = logging.getLogger(__name__)


def create_upload_target(target: TargetDescriptor) -> UploadTarget:
    """Factory function to create an upload target from a descriptor.

    Args:
        target: Parsed target descriptor

    Returns:
        Appropriate UploadTarget implementation

    Raises:
        UnsupportedProviderError: If the provider kind is not supported
    """
    kind = target.provider()
    if kind is ProviderKind.S3:
        return S3UploadTarget(target)
    raise UnsupportedProviderError(target.provider_kind)


class UploadDispatcher:
    """Uploads snapshot artifacts with bounded retry.

    Example:
        >>> dispatcher = UploadDispatcher(UploadConfig())
        >>> outcome = await dispatcher.upload(target, blob.artifact_name, blob)
        >>> outcome.succeeded, outcome.attempts
        (True, 1)
    """

    def __init__(
        self,
        config: UploadConfig,
        target_factory: Callable[[TargetDescriptor], UploadTarget] = create_upload_target,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            config: Retry configuration
            target_factory: Builds the provider client for a descriptor
            sleep: Delay function used between attempts
        """
        self.config = config
        self._target_factory = target_factory
        self._sleep = sleep

    async def upload(
        self,
        target: TargetDescriptor,
        artifact_name: str,
        blob: SnapshotBlob,
    ) -> UploadOutcome:
        """Upload a snapshot.

        Args:
            target: Where to upload
            artifact_name: Object name appended to the target path
            blob: Snapshot to upload

        Returns:
            UploadOutcome

        Raises:
            UnsupportedProviderError: If the target's provider is unsupported
        """
        kind = target.provider()
        uploader = self._target_factory(target)
        key = target.object_key(artifact_name)
        remote_path = target.remote_path(artifact_name)
        max_retries = self.config.max_retries

        logger.info(f"uploading snapshot to {kind.value}", extra={"remote_path": remote_path})

        attempts = 0
        last_error: Optional[Exception] = None
        try:
            while True:
                attempts += 1
                try:
                    await uploader.put(key, blob.data, {"checksum": blob.checksum})
                except Exception as e:
                    last_error = e
                    if attempts > max_retries:
                        break
                    logger.warning(
                        f"error uploading to {kind.value}, retrying in "
                        f"{self.config.retry_delay_seconds:g} seconds for retry {attempts}/{max_retries}",
                        extra={"error": str(e), "error_code": uploader.error_code(e)},
                    )
                    await self._sleep(self.config.retry_delay_seconds)
                    continue

                logger.info(
                    "Snapshot uploaded",
                    extra={"remote_path": remote_path, "attempts": attempts, "size_bytes": blob.size_bytes},
                )
                return UploadOutcome(succeeded=True, attempts=attempts, remote_path=remote_path)
        finally:
            await uploader.close()

        exhausted = UploadExhausted(
            remote_path=remote_path,
            attempts=attempts,
            cause=last_error,
            cause_code=uploader.error_code(last_error),
        )
        logger.error(exhausted.message, extra={"error_code": exhausted.cause_code})
        return UploadOutcome(
            succeeded=False,
            attempts=attempts,
            final_error=exhausted,
            remote_path=remote_path,
        )
