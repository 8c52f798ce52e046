"""Simulated provider adapter for development and testing."""

from __future__ import annotations

import asyncio
import re
from collections import defaultdict, deque
from typing import Any

import structlog

from provisioner.domain.models.membership import ProbeConfig
from provisioner.domain.models.resource import (
    ExistingResource,
    ProviderHandle,
    ResourceDescriptor,
    ResourceKind,
)
from provisioner.domain.ports.services import (
    GrantExpiredError,
    PermanentProviderError,
    ProviderAdapter,
    ResourceAlreadyExistsError,
    UnknownArtifactError,
)
from provisioner.infrastructure.storage.content_store import InMemoryContentStore


logger = structlog.get_logger(__name__)

URL_PATTERN = re.compile(r"https?://[^\s'\"]+")

# Azure-style resource type names, used only to build realistic ids.
RESOURCE_TYPE_NAMES: dict[ResourceKind, str] = {
    ResourceKind.NETWORK: "Microsoft.Network/virtualNetworks",
    ResourceKind.SUBNET: "Microsoft.Network/virtualNetworks/subnets",
    ResourceKind.SECURITY_GROUP: "Microsoft.Network/networkSecurityGroups",
    ResourceKind.SECURITY_RULE: "Microsoft.Network/networkSecurityGroups/securityRules",
    ResourceKind.STORAGE_ACCOUNT: "Microsoft.Storage/storageAccounts",
    ResourceKind.BLOB_CONTAINER: "Microsoft.Storage/storageAccounts/blobServices/containers",
    ResourceKind.BLOB: "Microsoft.Storage/blobs",
    ResourceKind.COMPUTE_INSTANCE: "Microsoft.Compute/virtualMachines",
    ResourceKind.INSTANCE_SET: "Microsoft.Compute/virtualMachineScaleSets",
    ResourceKind.LOAD_BALANCER: "Microsoft.Network/loadBalancers",
    ResourceKind.BACKEND_POOL: "Microsoft.Network/loadBalancers/backendAddressPools",
    ResourceKind.HEALTH_PROBE: "Microsoft.Network/loadBalancers/probes",
    ResourceKind.LB_RULE: "Microsoft.Network/loadBalancers/loadBalancingRules",
}


class SimulatedProviderAdapter(ProviderAdapter):
    """In-memory provider that records every call.

    Failures and probe results can be scripted per descriptor or address
    so that retries, rollback and health gating can be exercised. When a
    content store is attached, compute resources "boot" by fetching every
    signed URL in their config, so an expired grant surfaces as a
    permanent bootstrap failure just as it would on a real instance.
    """

    def __init__(
        self,
        resource_group: str = "provisioner-rg",
        content_store: InMemoryContentStore | None = None,
        latency_seconds: float = 0.0,
    ) -> None:
        self._resource_group = resource_group
        self._content_store = content_store
        self._latency = latency_seconds
        self._resources: dict[str, ExistingResource] = {}
        self._kinds: dict[str, ResourceKind] = {}
        self._create_failures: dict[str, deque[Exception]] = defaultdict(deque)
        self._delete_failures: dict[str, deque[Exception]] = defaultdict(deque)
        self._probe_script: dict[str, deque[bool]] = defaultdict(deque)
        self._describe_delays: dict[str, float] = {}
        self._next_address = 4
        self._in_flight = 0
        self.max_in_flight = 0
        self.calls: list[tuple[str, str]] = []
        self.pools: dict[str, set[str]] = defaultdict(set)
        self.bootstrapped: dict[str, dict[str, bytes]] = {}

    # ------------------------------------------------------------------
    # Scripting
    # ------------------------------------------------------------------

    def fail_create(self, descriptor_id: str, *errors: Exception) -> None:
        """Queue errors raised by the next create calls for a descriptor."""
        self._create_failures[descriptor_id].extend(errors)

    def fail_delete(self, descriptor_id: str, *errors: Exception) -> None:
        self._delete_failures[descriptor_id].extend(errors)

    def script_probes(self, address: str, *results: bool) -> None:
        """Queue probe results for an address. Unscripted probes succeed."""
        self._probe_script[address].extend(results)

    def delay_describe(self, descriptor_id: str, seconds: float) -> None:
        """Make every describe call for a descriptor take ``seconds``."""
        self._describe_delays[descriptor_id] = seconds

    def seed(
        self, descriptor: ResourceDescriptor, config: dict[str, Any] | None = None
    ) -> ProviderHandle:
        """Pretend a resource already exists outside of any run."""
        handle = self._handle_for(descriptor)
        self._resources[descriptor.id] = ExistingResource(
            handle=handle, config=dict(config if config is not None else descriptor.config)
        )
        self._kinds[descriptor.id] = descriptor.kind
        return handle

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def calls_to(self, operation: str) -> list[str]:
        return [target for name, target in self.calls if name == operation]

    def has(self, descriptor_id: str) -> bool:
        return descriptor_id in self._resources

    @property
    def resource_ids(self) -> list[str]:
        return sorted(self._resources)

    # ------------------------------------------------------------------
    # ProviderAdapter
    # ------------------------------------------------------------------

    async def describe(self, descriptor: ResourceDescriptor) -> ExistingResource | None:
        self.calls.append(("describe", descriptor.id))
        delay = self._describe_delays.get(descriptor.id)
        if delay:
            await asyncio.sleep(delay)
        return self._resources.get(descriptor.id)

    async def create(self, descriptor: ResourceDescriptor) -> ProviderHandle:
        self.calls.append(("create", descriptor.id))
        self._in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self._in_flight)
        try:
            if self._latency:
                await asyncio.sleep(self._latency)
            failures = self._create_failures.get(descriptor.id)
            if failures:
                raise failures.popleft()
            if descriptor.id in self._resources:
                raise ResourceAlreadyExistsError(f"{descriptor.id} already exists")

            handle = self._handle_for(descriptor)
            if descriptor.kind.is_compute:
                await self._bootstrap(descriptor)
            self._resources[descriptor.id] = ExistingResource(
                handle=handle, config=dict(descriptor.config)
            )
            self._kinds[descriptor.id] = descriptor.kind
            logger.debug("simulated_resource_created", resource_id=handle.resource_id)
            return handle
        finally:
            self._in_flight -= 1

    async def delete(self, handle: ProviderHandle) -> None:
        descriptor_id = self._descriptor_id(handle)
        self.calls.append(("delete", descriptor_id))
        failures = self._delete_failures.get(descriptor_id)
        if failures:
            raise failures.popleft()
        self._resources.pop(descriptor_id, None)
        self._kinds.pop(descriptor_id, None)
        for members in self.pools.values():
            members.difference_update(handle.addresses)
        logger.debug("simulated_resource_deleted", resource_id=handle.resource_id)

    async def probe(self, handle: ProviderHandle, address: str, probe: ProbeConfig) -> bool:
        self.calls.append(("probe", address))
        script = self._probe_script.get(address)
        if script:
            return script.popleft()
        return True

    async def add_to_pool(self, pool_id: str, member_address: str) -> None:
        self.calls.append(("add_to_pool", f"{pool_id}:{member_address}"))
        self.pools[pool_id].add(member_address)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _handle_for(self, descriptor: ResourceDescriptor) -> ProviderHandle:
        existing = self._resources.get(descriptor.id)
        if existing is not None:
            return existing.handle
        resource_id = (
            f"/resourceGroups/{self._resource_group}/providers/"
            f"{RESOURCE_TYPE_NAMES[descriptor.kind]}/{descriptor.id}"
        )
        return ProviderHandle(resource_id=resource_id, addresses=self._addresses_for(descriptor))

    def _addresses_for(self, descriptor: ResourceDescriptor) -> tuple[str, ...]:
        if descriptor.kind == ResourceKind.COMPUTE_INSTANCE:
            count = 1
        elif descriptor.kind == ResourceKind.INSTANCE_SET:
            capacity = descriptor.config.get("capacity") or {}
            count = int(capacity.get("default", 1))
        else:
            return ()
        addresses = tuple(f"10.0.0.{self._next_address + i}" for i in range(count))
        self._next_address += count
        return addresses

    @staticmethod
    def _descriptor_id(handle: ProviderHandle) -> str:
        return handle.resource_id.rsplit("/", 1)[-1]

    async def _bootstrap(self, descriptor: ResourceDescriptor) -> None:
        if self._content_store is None:
            return
        fetched: dict[str, bytes] = {}
        for path, uri in _signed_urls(descriptor.config):
            if not self._content_store.owns(uri):
                continue
            try:
                fetched[path] = await self._content_store.fetch(uri)
            except (GrantExpiredError, UnknownArtifactError) as e:
                raise PermanentProviderError(f"bootstrap of {descriptor.id} failed: {e}") from e
        self.bootstrapped[descriptor.id] = fetched


def _signed_urls(value: Any, path: str = "") -> list[tuple[str, str]]:
    """Every URL in a config value, keyed by its dotted path."""
    if isinstance(value, str):
        return [(path, match.group(0)) for match in URL_PATTERN.finditer(value)]
    if isinstance(value, dict):
        items = [(str(key), item) for key, item in value.items()]
    elif isinstance(value, (list, tuple)):
        items = [(str(index), item) for index, item in enumerate(value)]
    else:
        return []
    found: list[tuple[str, str]] = []
    for key, item in items:
        found.extend(_signed_urls(item, f"{path}.{key}" if path else key))
    return found
