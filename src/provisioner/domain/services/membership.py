"""Health and membership manager: gates pool registration on observed health."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping

import structlog

from provisioner.domain.events.deployment_events import MemberRegistered, MemberUnhealthy
from provisioner.domain.models.membership import BackendPoolMembership, ProbeConfig
from provisioner.domain.models.resource import (
    ProviderHandle,
    ResourceDescriptor,
    ResourceStatus,
)
from provisioner.domain.models.result import DeploymentResult
from provisioner.domain.ports.services import (
    EventPublisher,
    ProviderAdapter,
    ResourceAlreadyExistsError,
)
from provisioner.domain.services.retry import ProviderCallPolicy
from provisioner.infrastructure.observability.metrics import (
    HEALTH_PROBES_TOTAL,
    POOL_REGISTRATIONS_TOTAL,
)


logger = structlog.get_logger(__name__)


class MembershipManager:
    """Probes created compute members and registers the healthy ones.

    A member is registered only after ``healthy_threshold`` consecutive
    successful probes. Failures before the first success count as boot
    time; once a member has answered, ``unhealthy_threshold`` consecutive
    failures mark it unhealthy. A member that never reaches the threshold
    within ``max_probes`` is unhealthy too. Unhealthy is terminal for the
    run: it is surfaced, not remediated.
    """

    def __init__(
        self,
        provider: ProviderAdapter,
        probe: ProbeConfig,
        policy: ProviderCallPolicy | None = None,
        event_publisher: EventPublisher | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._provider = provider
        self._probe = probe
        self._policy = policy or ProviderCallPolicy()
        self._event_publisher = event_publisher
        self._sleep = sleep
        self._registered: set[tuple[str, str]] = set()

    async def activate(
        self,
        result: DeploymentResult,
        descriptors: Mapping[str, ResourceDescriptor],
    ) -> list[BackendPoolMembership]:
        """Watch every created compute member that names a backend pool."""
        watches: list[tuple[ProviderHandle, BackendPoolMembership]] = []
        for descriptor_id in result.execution_order:
            descriptor = descriptors.get(descriptor_id)
            state = result.states[descriptor_id]
            if (
                descriptor is None
                or not descriptor.kind.is_compute
                or descriptor.backend_pool is None
                or state.status != ResourceStatus.CREATED
                or state.provider_handle is None
            ):
                continue

            pool_id = self._pool_id(descriptor.backend_pool, result)
            handle = state.provider_handle
            if not handle.addresses:
                member = BackendPoolMembership(
                    pool_id=pool_id, member_address="", instance_id=descriptor_id
                )
                member.await_health()
                member.mark_unhealthy("provider reported no member address")
                result.memberships.append(member)
                continue

            for address in handle.addresses:
                member = BackendPoolMembership(
                    pool_id=pool_id, member_address=address, instance_id=descriptor_id
                )
                result.memberships.append(member)
                watches.append((handle, member))

        logger.info("membership_activated", members=len(watches))
        await asyncio.gather(*(self.watch(handle, member) for handle, member in watches))
        return [member for _, member in watches]

    @staticmethod
    def _pool_id(backend_pool: str, result: DeploymentResult) -> str:
        """Resolve a pool reference to the provider's id when the pool is in this run."""
        state = result.states.get(backend_pool)
        if state is not None and state.provider_handle is not None:
            return state.provider_handle.resource_id
        return backend_pool

    async def watch(self, handle: ProviderHandle, member: BackendPoolMembership) -> None:
        member.await_health()
        answered = False
        while member.probes_sent < self._probe.max_probes:
            healthy = await self._probe_once(handle, member)
            member.record_probe(healthy)
            answered = answered or healthy

            if member.consecutive_successes >= self._probe.healthy_threshold:
                member.mark_healthy()
                logger.info(
                    "member_healthy",
                    instance_id=member.instance_id,
                    address=member.member_address,
                    probes=member.probes_sent,
                )
                await self.register(member)
                return
            if answered and member.consecutive_failures >= self._probe.unhealthy_threshold:
                await self._surface_unhealthy(
                    member,
                    f"{member.consecutive_failures} consecutive failed probes after responding",
                )
                return
            await self._sleep(self._probe.interval_seconds)

        await self._surface_unhealthy(
            member, f"not healthy after {member.probes_sent} probes"
        )

    async def register(self, member: BackendPoolMembership) -> None:
        """Add a healthy member to its pool. Already-registered members are a no-op."""
        if member.key not in self._registered:
            try:
                await self._policy.run(
                    "add_to_pool",
                    lambda: self._provider.add_to_pool(member.pool_id, member.member_address),
                )
            except ResourceAlreadyExistsError:
                logger.info("member_already_in_pool", pool_id=member.pool_id)
            except Exception as e:
                member.last_error = f"pool registration failed: {e}"
                POOL_REGISTRATIONS_TOTAL.labels(result="failed").inc()
                logger.exception(
                    "member_registration_failed",
                    pool_id=member.pool_id,
                    address=member.member_address,
                    error=str(e),
                )
                return
            self._registered.add(member.key)

        member.mark_registered()
        POOL_REGISTRATIONS_TOTAL.labels(result="registered").inc()
        logger.info(
            "member_registered",
            pool_id=member.pool_id,
            address=member.member_address,
            instance_id=member.instance_id,
        )
        await self._publish(MemberRegistered(
            pool_id=member.pool_id,
            member_address=member.member_address,
            instance_id=member.instance_id,
        ))

    async def _probe_once(self, handle: ProviderHandle, member: BackendPoolMembership) -> bool:
        try:
            healthy = await self._provider.probe(handle, member.member_address, self._probe)
        except Exception as e:
            HEALTH_PROBES_TOTAL.labels(result="error").inc()
            logger.warning(
                "health_probe_error",
                instance_id=member.instance_id,
                address=member.member_address,
                error=str(e),
            )
            return False
        HEALTH_PROBES_TOTAL.labels(result="success" if healthy else "failure").inc()
        return healthy

    async def _surface_unhealthy(self, member: BackendPoolMembership, reason: str) -> None:
        member.mark_unhealthy(reason)
        logger.warning(
            "member_unhealthy",
            instance_id=member.instance_id,
            address=member.member_address,
            reason=reason,
        )
        await self._publish(MemberUnhealthy(
            pool_id=member.pool_id,
            member_address=member.member_address,
            instance_id=member.instance_id,
            reason=reason,
        ))

    async def _publish(self, event: MemberRegistered | MemberUnhealthy) -> None:
        if self._event_publisher:
            await self._event_publisher.publish(event.event_type, event.model_dump())
