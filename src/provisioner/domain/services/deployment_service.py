"""Deployment service: the single entry point that drives a full run."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime
from typing import Any

import structlog

from provisioner.config import Settings
from provisioner.domain.events.deployment_events import DeploymentFinished, DeploymentPlanned
from provisioner.domain.models.artifact import ArtifactSpec
from provisioner.domain.models.base import DomainEvent, utc_now
from provisioner.domain.models.membership import MemberPhase, ProbeProtocol
from provisioner.domain.models.plan import DeploymentPlan
from provisioner.domain.models.resource import ResourceDescriptor, ResourceKind
from provisioner.domain.models.result import DeploymentOutcome, DeploymentResult
from provisioner.domain.ports.services import (
    ContentStore,
    EventPublisher,
    ProviderAdapter,
    UnknownArtifactError,
)
from provisioner.domain.services.artifacts import ArtifactDistributor
from provisioner.domain.services.executor import ProvisioningExecutor
from provisioner.domain.services.membership import MembershipManager
from provisioner.domain.services.planner import DependencyPlanner
from provisioner.domain.services.retry import ProviderCallPolicy
from provisioner.domain.services.rollback import RollbackController
from provisioner.infrastructure.observability.logging import (
    bind_deployment_context,
    clear_deployment_context,
)
from provisioner.infrastructure.observability.metrics import (
    DEPLOYMENT_DURATION,
    DEPLOYMENTS_TOTAL,
)
from provisioner.infrastructure.observability.tracing import get_tracer


logger = structlog.get_logger(__name__)


class DeploymentService:
    """Coordinates planner, distributor, executor and membership manager.

    Configuration defaults are injected here, at the boundary, rather
    than living in descriptors: admin credentials for compute, capacity
    bounds for instance sets and probe parameters for health probes.
    Declared values always win over defaults.
    """

    def __init__(
        self,
        settings: Settings,
        provider: ProviderAdapter,
        content_store: ContentStore,
        event_publisher: EventPublisher | None = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._provider = provider
        self._event_publisher = event_publisher
        self._planner = DependencyPlanner()
        self._distributor = ArtifactDistributor(content_store, clock=clock)
        policy = ProviderCallPolicy(settings.executor)
        self._executor = ProvisioningExecutor(
            provider,
            distributor=self._distributor,
            settings=settings.executor,
            rollback=RollbackController(provider, policy, event_publisher=event_publisher),
            event_publisher=event_publisher,
        )
        self._membership = MembershipManager(
            provider,
            settings.probe.to_probe_config(),
            policy=policy,
            event_publisher=event_publisher,
            sleep=sleep,
        )
        self._tracer = get_tracer(__name__)

    @property
    def distributor(self) -> ArtifactDistributor:
        return self._distributor

    def plan(
        self,
        descriptors: Iterable[ResourceDescriptor],
        artifacts: Iterable[ArtifactSpec] = (),
    ) -> DeploymentPlan:
        """Apply defaults and plan without touching the provider."""
        prepared = [self.apply_defaults(d) for d in descriptors]
        declared = {spec.payload_id for spec in artifacts}
        for descriptor in prepared:
            missing = sorted(descriptor.artifact_references - declared)
            if missing:
                raise UnknownArtifactError(
                    f"Descriptor {descriptor.id} references undeclared artifacts: {missing}"
                )
        return self._planner.plan(prepared)

    async def deploy(
        self,
        descriptors: Iterable[ResourceDescriptor],
        artifacts: Iterable[ArtifactSpec] = (),
        cancel_event: asyncio.Event | None = None,
    ) -> DeploymentResult:
        artifacts = list(artifacts)
        plan = self.plan(descriptors, artifacts)
        started = time.monotonic()

        bind_deployment_context(plan.plan_id, self._settings.environment.value)
        try:
            await self._publish(DeploymentPlanned(
                plan_id=plan.plan_id,
                tier_count=plan.tier_count,
                resource_count=len(plan.order),
                correlation_id=plan.plan_id,
            ))

            with self._tracer.start_as_current_span(
                "provisioner.deploy", attributes={"plan_id": plan.plan_id}
            ):
                for spec in artifacts:
                    payload_id = await self._distributor.publish_spec(spec)
                    await self._distributor.grant(payload_id, self._settings.artifacts.ttl)

                result = await self._executor.apply(plan, cancel_event)
                if result.outcome == DeploymentOutcome.SUCCEEDED:
                    await self._membership.activate(result, {d.id: d for d in plan.order})
                    if any(m.phase != MemberPhase.REGISTERED for m in result.memberships):
                        result.finish(DeploymentOutcome.DEGRADED)
                result.grants = self._distributor.grants

            elapsed = time.monotonic() - started
            DEPLOYMENTS_TOTAL.labels(outcome=result.outcome.value).inc()
            DEPLOYMENT_DURATION.labels(outcome=result.outcome.value).observe(elapsed)
            logger.info(
                "deployment_finished",
                outcome=result.outcome.value,
                rolled_back=result.rolled_back,
                duration_seconds=round(elapsed, 3),
                failures=sorted(result.failures),
            )
            await self._publish(DeploymentFinished(
                plan_id=plan.plan_id,
                outcome=result.outcome.value,
                rolled_back=result.rolled_back,
                correlation_id=plan.plan_id,
            ))
            return result
        finally:
            clear_deployment_context()

    def apply_defaults(self, descriptor: ResourceDescriptor) -> ResourceDescriptor:
        config: dict[str, Any] = dict(descriptor.config)
        if descriptor.kind.is_compute:
            instance = self._settings.instance
            config.setdefault("admin_username", instance.admin_username)
            if instance.admin_password.get_secret_value():
                config.setdefault("admin_password", instance.admin_password.get_secret_value())
            if instance.ssh_public_key:
                config.setdefault("ssh_public_key", instance.ssh_public_key)
        if descriptor.kind == ResourceKind.INSTANCE_SET:
            scale = self._settings.scale_set
            config.setdefault("capacity", {
                "minimum": scale.min_instances,
                "default": scale.default_instances,
                "maximum": scale.max_instances,
            })
        if descriptor.kind == ResourceKind.HEALTH_PROBE:
            probe = self._settings.probe
            config.setdefault("protocol", probe.protocol.value)
            config.setdefault("port", probe.port)
            if probe.protocol != ProbeProtocol.TCP:
                config.setdefault("path", probe.path)
            config.setdefault("interval_seconds", probe.interval_seconds)
            config.setdefault("threshold", probe.healthy_threshold)
        if config == descriptor.config:
            return descriptor
        return descriptor.with_config(config)

    async def _publish(self, event: DomainEvent) -> None:
        if self._event_publisher:
            await self._event_publisher.publish(event.event_type, event.model_dump())


async def deploy(
    descriptors: Iterable[ResourceDescriptor],
    settings: Settings,
    provider: ProviderAdapter,
    content_store: ContentStore,
    artifacts: Iterable[ArtifactSpec] = (),
    cancel_event: asyncio.Event | None = None,
    event_publisher: EventPublisher | None = None,
) -> DeploymentResult:
    """Drive a descriptor set to its running state, or roll it back."""
    service = DeploymentService(
        settings, provider, content_store, event_publisher=event_publisher
    )
    return await service.deploy(descriptors, artifacts, cancel_event)
