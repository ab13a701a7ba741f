"""
S3 upload target.

Uploads snapshot artifacts with aiobotocore. The target descriptor is the
only source of settings:
    s3://<bucket>/<prefix>?region=<region>&endpoint=<url>

Credentials come from the standard AWS chain (env, profile, instance role).

Invariants:
    - The client is created lazily on first put(); construction is offline
    - Each put() sends the full body in a single PutObject call
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from aiobotocore.session import get_session
from botocore.exceptions import BotoCoreError, ClientError

from ..target import TargetDescriptor

logger = logging.getLogger(__name__)


class S3UploadTarget:
    """S3 implementation of UploadTarget.

    Example:
        >>> target = S3UploadTarget(parse_target("s3://bucket/snaps?region=us-east-1"))
        >>> await target.put("snaps/1700000000.snap", data, {"checksum": "sha256:..."})
        >>> await target.close()
    """

    def __init__(self, target: TargetDescriptor) -> None:
        self.target = target
        self._session = None
        self._s3_ctx = None
        self._s3_client = None

    def client_kwargs(self) -> Dict[str, Any]:
        """Build keyword arguments for ``create_client("s3", ...)``."""
        client_kwargs: Dict[str, Any] = {}

        region = self.target.option("region")
        if region:
            client_kwargs["region_name"] = region

        endpoint = self.target.option("endpoint")
        if endpoint:
            client_kwargs["endpoint_url"] = endpoint

        return client_kwargs

    async def put(self, key: str, body: bytes, metadata: Dict[str, str]) -> None:
        if self._s3_client is None:
            await self._init_s3_client()

        await self._s3_client.put_object(
            Bucket=self.target.base,
            Key=key,
            Body=body,
            ContentType="application/octet-stream",
            Metadata=metadata,
        )
        logger.info(f"saved snapshot to bucket {self.target.base} at path {key}")

    async def close(self) -> None:
        """Close S3 client."""
        if self._s3_client:
            await self._s3_ctx.__aexit__(None, None, None)
            self._s3_client = None
            self._s3_ctx = None

    def error_code(self, error: BaseException) -> Optional[str]:
        if isinstance(error, ClientError):
            return error.response.get("Error", {}).get("Code")
        if isinstance(error, BotoCoreError):
            return type(error).__name__
        return None

    async def _init_s3_client(self) -> None:
        """Initialize S3 client."""
        self._session = get_session()
        self._s3_ctx = self._session.create_client("s3", **self.client_kwargs())
        self._s3_client = await self._s3_ctx.__aenter__()
