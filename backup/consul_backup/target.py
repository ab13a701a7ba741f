"""
Upload target descriptors.

A target is addressed by a generic URI:
    {provider}://{base}{/path}?{options}

For example ``s3://my-bucket/consul-snapshots?region=us-east-1`` names
the ``my-bucket`` bucket, the ``/consul-snapshots`` prefix and a single
``region`` option.

Invariants:
    - Parsing is pure (no I/O) and deterministic
    - Descriptors are immutable once parsed
    - Unknown schemes parse; they are rejected by the upload dispatcher

How to change safely:
    - Add providers as ProviderKind members, never as string comparisons
    - Options are read leniently; a missing option is never a parse error
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from .errors import InvalidTargetURI, UnsupportedProviderError


class ProviderKind(Enum):
    """Supported upload providers."""

    S3 = "s3"


@dataclass(frozen=True)
class TargetDescriptor:
    """Parsed upload destination.

    Attributes:
        provider_kind: URI scheme, lower-cased
        base: Bucket/container name (URI host)
        path: Path prefix inside the bucket, as written in the URI
        options: Query parameters, each key mapped to all its values in order

    Options take part in equality but not in the hash, so descriptors
    can be used as dict keys.
    """

    provider_kind: str
    base: str
    path: str = ""
    options: Mapping[str, tuple[str, ...]] = field(
        default_factory=lambda: MappingProxyType({}), hash=False
    )

    def option(self, name: str, default: str | None = None) -> str | None:
        """Return the first value of an option, or ``default`` if absent."""
        values = self.options.get(name)
        if not values:
            return default
        return values[0]

    def provider(self) -> ProviderKind:
        """Resolve the provider kind.

        Raises:
            UnsupportedProviderError: If the scheme has no provider
        """
        try:
            return ProviderKind(self.provider_kind)
        except ValueError:
            raise UnsupportedProviderError(self.provider_kind) from None

    def object_key(self, artifact_name: str) -> str:
        """Compose the remote object key for an artifact under this prefix."""
        return f"{self.path}/{artifact_name}".lstrip("/")

    def remote_path(self, artifact_name: str) -> str:
        return f"{self.provider_kind}://{self.base}/{self.object_key(artifact_name)}"

    def to_uri(self) -> str:
        """Rebuild an equivalent target URI."""
        query = urlencode(
            [(key, value) for key, values in self.options.items() for value in values]
        )
        return urlunsplit((self.provider_kind, self.base, self.path, query, ""))


def parse_target(uri: str) -> TargetDescriptor:
    """Parse a target URI into a descriptor.

    Args:
        uri: Target URI, e.g. ``s3://bucket/prefix?region=us-east-1``

    Returns:
        TargetDescriptor

    Raises:
        InvalidTargetURI: If the URI has no scheme or no host
    """
    try:
        parts = urlsplit(uri.strip())
    except ValueError:
        raise InvalidTargetURI(uri) from None

    if not parts.scheme or not parts.netloc:
        raise InvalidTargetURI(uri)

    options: dict[str, list[str]] = {}
    for key, value in parse_qsl(parts.query, keep_blank_values=True):
        options.setdefault(key, []).append(value)

    return TargetDescriptor(
        provider_kind=parts.scheme.lower(),
        base=parts.netloc,
        path=parts.path.rstrip("/"),
        options=MappingProxyType({key: tuple(values) for key, values in options.items()}),
    )
