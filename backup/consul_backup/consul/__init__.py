"""
Consul store clients.

This module provides the StoreClient protocol and its implementations:
- ConsulClient: Consul HTTP API (live cluster and ephemeral agent)
- InMemoryConsulClient: dict-backed client for testing

Invariants:
    - Clients only read the live cluster; restore is only issued to ephemeral agents
    - Listings carry value sizes, never values
"""

from .base import ConsulConnectionError, ConsulError, KeyRecord, StoreClient
from .client import ConsulClient
from .memory import InMemoryConsulClient

__all__ = [
    # Protocol and types
    "StoreClient",
    "KeyRecord",
    "ConsulError",
    "ConsulConnectionError",
    # Implementations
    "ConsulClient",
    "InMemoryConsulClient",
]
