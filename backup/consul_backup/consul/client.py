"""
Consul HTTP API client.

A thin async client over the three Consul endpoints the backup needs:
- GET  /v1/snapshot          (save)
- PUT  /v1/snapshot          (restore)
- GET  /v1/kv/<prefix>?recurse  (listing, value sizes only)
plus GET /v1/status/leader for readiness probing.

This is intentionally not a general Consul SDK. It only implements the
StoreClient protocol.

Invariants:
    - Snapshots are streamed and fully drained before being returned
    - Values are decoded only to measure their size
    - httpx errors never leak; they are mapped to ConsulError
"""

from __future__ import annotations

import base64
import logging
from typing import Any, List, Optional

import httpx

from ..config import ConsulConfig
from .base import ConsulConnectionError, ConsulError, KeyRecord

logger = logging.getLogger(__name__)


class ConsulClient:
    """Async Consul client implementing StoreClient.

    Example:
        >>> client = ConsulClient(ConsulConfig(address="https://consul:8501"))
        >>> data = await client.snapshot_save()
        >>> await client.close()
    """

    def __init__(
        self,
        config: ConsulConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Initialize the client.

        No connection is made until the first request.

        Args:
            config: Consul configuration
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.config = config
        headers = {}
        if config.token:
            headers["X-Consul-Token"] = config.token

        self._http = httpx.AsyncClient(
            base_url=config.address.rstrip("/"),
            headers=headers,
            verify=not config.tls_skip_verify,
            timeout=config.timeout_seconds,
            transport=transport,
        )

    @property
    def address(self) -> str:
        return self.config.address

    async def __aenter__(self) -> ConsulClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self._http.aclose()

    async def snapshot_save(self) -> bytes:
        """Stream a snapshot from the cluster and return all of it."""
        try:
            async with self._http.stream("GET", "/v1/snapshot") as response:
                if response.status_code != 200:
                    body = await response.aread()
                    raise self._status_error("snapshot save", response.status_code, body)
                data = await response.aread()
        except httpx.TransportError as e:
            raise ConsulConnectionError(f"error fetching consul snapshot from {self.address}: {e}") from e

        logger.debug("Snapshot downloaded", extra={"address": self.address, "size_bytes": len(data)})
        return data

    async def snapshot_restore(self, data: bytes) -> None:
        """Restore a snapshot into the cluster."""
        try:
            response = await self._http.put(
                "/v1/snapshot",
                content=data,
                headers={"Content-Type": "application/octet-stream"},
            )
        except httpx.TransportError as e:
            raise ConsulConnectionError(f"error restoring snapshot to {self.address}: {e}") from e

        if response.status_code != 200:
            raise self._status_error("snapshot restore", response.status_code, response.content)

    async def kv_list(self, prefix: str = "") -> List[KeyRecord]:
        """List all keys under ``prefix`` with their value sizes."""
        try:
            response = await self._http.get(
                f"/v1/kv/{prefix.lstrip('/')}",
                params={"recurse": "true"},
            )
        except httpx.TransportError as e:
            raise ConsulConnectionError(f"error listing keys from {self.address}: {e}") from e

        # Consul answers 404 for an empty prefix
        if response.status_code == 404:
            return []
        if response.status_code != 200:
            raise self._status_error("kv list", response.status_code, response.content)

        records = []
        for entry in response.json() or []:
            value = entry.get("Value")
            size = len(base64.b64decode(value)) if value else 0
            records.append(KeyRecord(key=entry["Key"], value_size=size))
        return records

    async def leader(self) -> str:
        try:
            response = await self._http.get("/v1/status/leader")
        except httpx.TransportError as e:
            raise ConsulConnectionError(f"error reaching {self.address}: {e}") from e

        if response.status_code != 200:
            raise self._status_error("leader status", response.status_code, response.content)
        return response.json() or ""

    def _status_error(self, operation: str, status_code: int, body: bytes) -> ConsulError:
        detail = body.decode("utf-8", errors="replace").strip()
        return ConsulError(
            f"{operation} failed on {self.address}: HTTP {status_code}: {detail}",
            status_code=status_code,
        )
