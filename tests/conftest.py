"""Shared test fixtures."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from provisioner.config import (
    Environment,
    ExecutorSettings,
    HealthProbeSettings,
    Settings,
)
from provisioner.domain.models.membership import ProbeConfig
from provisioner.domain.models.resource import ResourceDescriptor, ResourceKind
from provisioner.domain.services.retry import ProviderCallPolicy
from provisioner.infrastructure.messaging.event_publisher import InMemoryEventPublisher
from provisioner.infrastructure.provider.simulated import SimulatedProviderAdapter
from provisioner.infrastructure.storage.content_store import InMemoryContentStore


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


async def no_sleep(_seconds: float) -> None:
    return None


def make_descriptor(
    descriptor_id: str,
    kind: ResourceKind = ResourceKind.NETWORK,
    deps: list[str] | None = None,
    **config: object,
) -> ResourceDescriptor:
    return ResourceDescriptor(
        id=descriptor_id,
        kind=kind,
        config=dict(config),
        depends_on=frozenset(deps or []),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def executor_settings() -> ExecutorSettings:
    return ExecutorSettings(
        max_concurrency=4,
        max_attempts=3,
        backoff_base_seconds=0,
        backoff_max_seconds=0,
        call_timeout_seconds=5,
    )


@pytest.fixture
def probe_config() -> ProbeConfig:
    return ProbeConfig(interval_seconds=0, healthy_threshold=2, unhealthy_threshold=3, max_probes=10)


@pytest.fixture
def settings(executor_settings: ExecutorSettings) -> Settings:
    return Settings(
        environment=Environment.TESTING,
        executor=executor_settings,
        probe=HealthProbeSettings(
            interval_seconds=0, healthy_threshold=2, unhealthy_threshold=3, max_probes=10
        ),
    )


@pytest.fixture
def policy(executor_settings: ExecutorSettings) -> ProviderCallPolicy:
    return ProviderCallPolicy(executor_settings)


@pytest.fixture
def content_store(clock: FakeClock) -> InMemoryContentStore:
    return InMemoryContentStore(clock=clock, signing_key=b"test-key")


@pytest.fixture
def provider(content_store: InMemoryContentStore) -> SimulatedProviderAdapter:
    return SimulatedProviderAdapter(content_store=content_store)


@pytest.fixture
def event_publisher() -> InMemoryEventPublisher:
    return InMemoryEventPublisher()


@pytest.fixture
def network_stack() -> list[ResourceDescriptor]:
    """network -> subnet -> instance, plus a standalone backend pool."""
    return [
        make_descriptor("net", ResourceKind.NETWORK, address_space="10.0.0.0/16"),
        make_descriptor("subnet", ResourceKind.SUBNET, ["net"], prefix="10.0.0.0/24"),
        make_descriptor(
            "vm",
            ResourceKind.COMPUTE_INSTANCE,
            ["subnet"],
            size="Standard_B1s",
            backend_pool="pool",
        ),
        make_descriptor("pool", ResourceKind.BACKEND_POOL),
    ]
