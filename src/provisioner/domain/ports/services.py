"""Service port interfaces (hexagonal architecture)."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from provisioner.domain.models.artifact import GrantPermission
from provisioner.domain.models.membership import ProbeConfig
from provisioner.domain.models.resource import (
    ExistingResource,
    ProviderHandle,
    ResourceDescriptor,
)


class ProviderAdapter(ABC):
    """Port for the cloud provider's resource API.

    Provider-specific resource shapes stay inside ``descriptor.config``;
    the provisioner never interprets them.
    """

    @abstractmethod
    async def describe(self, descriptor: ResourceDescriptor) -> ExistingResource | None:
        """Return the existing resource for a descriptor, or None."""

    async def exists(self, descriptor: ResourceDescriptor) -> bool:
        return await self.describe(descriptor) is not None

    @abstractmethod
    async def create(self, descriptor: ResourceDescriptor) -> ProviderHandle:
        """Create a resource.

        Raises TransientProviderError, PermanentProviderError or
        ResourceAlreadyExistsError.
        """

    @abstractmethod
    async def delete(self, handle: ProviderHandle) -> None:
        """Delete a resource. Raises TransientProviderError or PermanentProviderError."""

    @abstractmethod
    async def probe(
        self, handle: ProviderHandle, address: str, probe: ProbeConfig
    ) -> bool:
        """Probe one instance address once. Returns True on success."""

    @abstractmethod
    async def add_to_pool(self, pool_id: str, member_address: str) -> None:
        """Add an address to a backend pool. Adding a present member is a no-op."""


class ContentStore(ABC):
    """Port for the blob store that carries bootstrap payloads."""

    @abstractmethod
    async def put(
        self, container_id: str, name: str, data: bytes, overwrite: bool = False
    ) -> str:
        """Store a payload and return its locator.

        Storing identical bytes again is a no-op. Different bytes raise
        ArtifactAlreadyExistsError unless overwrite is set.
        """

    @abstractmethod
    async def signed_url(
        self,
        locator: str,
        permissions: frozenset[GrantPermission],
        expires_at: datetime,
    ) -> str:
        """Mint a signed URL that stops working at ``expires_at``."""

    @abstractmethod
    async def fetch(self, uri: str) -> bytes:
        """Read a payload through a signed URL.

        Raises GrantExpiredError past expiry and UnknownArtifactError for
        a locator or signature the store does not recognize.
        """


class EventPublisher(ABC):
    """Port for publishing domain events."""

    @abstractmethod
    async def publish(self, event_type: str, payload: dict[str, Any]) -> None:
        """Publish an event."""

    @abstractmethod
    async def publish_batch(self, events: list[tuple[str, dict[str, Any]]]) -> None:
        """Publish a batch of events."""


class ProviderError(Exception):
    """Base class for errors raised by a provider adapter."""


class TransientProviderError(ProviderError):
    """Throttling, timeouts and other failures worth retrying."""


class PermanentProviderError(ProviderError):
    """Failures that will not succeed on retry."""


class ResourceAlreadyExistsError(ProviderError):
    """Raised by create when the resource is already present."""


class ArtifactAlreadyExistsError(Exception):
    """Raised when publishing over an existing payload without overwrite."""


class UnknownArtifactError(Exception):
    """Raised when a payload or signed URL is not known."""


class GrantExpiredError(Exception):
    """Raised when a grant is used at or past its expiry."""
