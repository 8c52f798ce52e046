"""Unit tests for the simulated provider adapter."""

from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import FakeClock, make_descriptor
from provisioner.domain.models.artifact import GrantPermission
from provisioner.domain.models.membership import ProbeConfig
from provisioner.domain.models.resource import ResourceKind
from provisioner.domain.ports.services import (
    PermanentProviderError,
    ResourceAlreadyExistsError,
    TransientProviderError,
)
from provisioner.infrastructure.provider.simulated import SimulatedProviderAdapter
from provisioner.infrastructure.storage.content_store import InMemoryContentStore


READ = frozenset({GrantPermission.READ})


class TestSimulatedProviderAdapter:
    @pytest.mark.asyncio
    async def test_create_and_describe(self, provider: SimulatedProviderAdapter) -> None:
        descriptor = make_descriptor("net", address_space="10.0.0.0/16")
        handle = await provider.create(descriptor)

        assert handle.resource_id.endswith("/Microsoft.Network/virtualNetworks/net")
        existing = await provider.describe(descriptor)
        assert existing is not None
        assert existing.handle == handle
        assert existing.config == {"address_space": "10.0.0.0/16"}
        assert await provider.exists(descriptor)

    @pytest.mark.asyncio
    async def test_create_twice_raises(self, provider: SimulatedProviderAdapter) -> None:
        descriptor = make_descriptor("net")
        await provider.create(descriptor)
        with pytest.raises(ResourceAlreadyExistsError):
            await provider.create(descriptor)

    @pytest.mark.asyncio
    async def test_scripted_failures_are_consumed_in_order(
        self, provider: SimulatedProviderAdapter
    ) -> None:
        descriptor = make_descriptor("net")
        provider.fail_create("net", TransientProviderError("throttled"), PermanentProviderError("no"))
        with pytest.raises(TransientProviderError):
            await provider.create(descriptor)
        with pytest.raises(PermanentProviderError):
            await provider.create(descriptor)
        await provider.create(descriptor)
        assert provider.calls_to("create") == ["net", "net", "net"]

    @pytest.mark.asyncio
    async def test_instance_set_gets_one_address_per_instance(
        self, provider: SimulatedProviderAdapter
    ) -> None:
        vm = await provider.create(make_descriptor("vm", ResourceKind.COMPUTE_INSTANCE))
        vmss = await provider.create(make_descriptor(
            "vmss", ResourceKind.INSTANCE_SET, capacity={"minimum": 1, "default": 3, "maximum": 5}
        ))
        assert vm.addresses == ("10.0.0.4",)
        assert vmss.addresses == ("10.0.0.5", "10.0.0.6", "10.0.0.7")

    @pytest.mark.asyncio
    async def test_delete_removes_resource_and_pool_members(
        self, provider: SimulatedProviderAdapter
    ) -> None:
        handle = await provider.create(make_descriptor("vm", ResourceKind.COMPUTE_INSTANCE))
        await provider.add_to_pool("pool", "10.0.0.4")
        await provider.delete(handle)

        assert not provider.has("vm")
        assert provider.pools["pool"] == set()

    @pytest.mark.asyncio
    async def test_probe_script(self, provider: SimulatedProviderAdapter) -> None:
        handle = await provider.create(make_descriptor("vm", ResourceKind.COMPUTE_INSTANCE))
        provider.script_probes("10.0.0.4", False)
        probe = ProbeConfig()
        assert await provider.probe(handle, "10.0.0.4", probe) is False
        assert await provider.probe(handle, "10.0.0.4", probe) is True

    @pytest.mark.asyncio
    async def test_compute_boot_fetches_signed_urls(
        self,
        provider: SimulatedProviderAdapter,
        content_store: InMemoryContentStore,
        clock: FakeClock,
    ) -> None:
        locator = await content_store.put("scripts", "boot.sh", b"echo hi")
        uri = await content_store.signed_url(locator, READ, clock.now + timedelta(hours=1))
        await provider.create(make_descriptor("vm", ResourceKind.COMPUTE_INSTANCE, custom_data=uri))
        assert provider.bootstrapped["vm"] == {"custom_data": b"echo hi"}

    @pytest.mark.asyncio
    async def test_boot_with_expired_url_is_permanent(
        self,
        provider: SimulatedProviderAdapter,
        content_store: InMemoryContentStore,
        clock: FakeClock,
    ) -> None:
        locator = await content_store.put("scripts", "boot.sh", b"echo hi")
        uri = await content_store.signed_url(locator, READ, clock.now + timedelta(minutes=5))
        clock.advance(minutes=5)
        with pytest.raises(PermanentProviderError, match="bootstrap of vm failed"):
            await provider.create(
                make_descriptor("vm", ResourceKind.COMPUTE_INSTANCE, custom_data=uri)
            )
        assert not provider.has("vm")

    @pytest.mark.asyncio
    async def test_seed_is_visible_to_describe(self, provider: SimulatedProviderAdapter) -> None:
        descriptor = make_descriptor("net", address_space="10.0.0.0/16")
        handle = provider.seed(descriptor, config={"address_space": "10.1.0.0/16"})
        existing = await provider.describe(descriptor)
        assert existing is not None
        assert existing.handle == handle
        assert not descriptor.matches(existing.config)

    @pytest.mark.asyncio
    async def test_boot_fetches_nested_and_embedded_urls(
        self,
        provider: SimulatedProviderAdapter,
        content_store: InMemoryContentStore,
        clock: FakeClock,
    ) -> None:
        locator = await content_store.put("scripts", "boot.sh", b"echo hi")
        uri = await content_store.signed_url(locator, READ, clock.now + timedelta(hours=1))
        await provider.create(make_descriptor(
            "vm",
            ResourceKind.COMPUTE_INSTANCE,
            extensions=[{"commandToExecute": f"curl -s '{uri}' | sh"}],
        ))
        assert provider.bootstrapped["vm"] == {"extensions.0.commandToExecute": b"echo hi"}

    @pytest.mark.asyncio
    async def test_boot_with_nested_expired_url_is_permanent(
        self,
        provider: SimulatedProviderAdapter,
        content_store: InMemoryContentStore,
        clock: FakeClock,
    ) -> None:
        locator = await content_store.put("scripts", "boot.sh", b"echo hi")
        uri = await content_store.signed_url(locator, READ, clock.now + timedelta(minutes=5))
        clock.advance(minutes=5)
        with pytest.raises(PermanentProviderError, match="bootstrap of vm failed"):
            await provider.create(make_descriptor(
                "vm", ResourceKind.COMPUTE_INSTANCE, os_profile={"custom_data": uri}
            ))
        assert not provider.has("vm")
