"""Provisioning executor: realizes a deployment plan tier by tier."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Iterable

import structlog

from provisioner.config import ExecutorSettings
from provisioner.domain.events.deployment_events import ResourceCreated, ResourceFailed
from provisioner.domain.models.resource import (
    ProviderHandle,
    ResourceDescriptor,
    ResourceState,
    ResourceStatus,
)
from provisioner.domain.models.plan import DeploymentPlan
from provisioner.domain.models.result import DeploymentOutcome, DeploymentResult
from provisioner.domain.ports.services import (
    EventPublisher,
    ProviderAdapter,
    ResourceAlreadyExistsError,
    TransientProviderError,
)
from provisioner.domain.services.artifacts import ArtifactDistributor
from provisioner.domain.services.retry import ProviderCallPolicy
from provisioner.domain.services.rollback import RollbackController
from provisioner.infrastructure.observability.metrics import (
    RESOURCE_CREATE_DURATION,
    RESOURCES_TOTAL,
)
from provisioner.infrastructure.observability.tracing import get_tracer


logger = structlog.get_logger(__name__)


class ProvisioningExecutor:
    """Walks a plan against the provider.

    Tiers run strictly in order. Inside a tier descriptors are realized
    concurrently, bounded by ``max_concurrency``. Each ResourceState is
    written only by the coroutine realizing that descriptor; the
    execution order is merged by ``apply`` once the tier has settled.
    """

    def __init__(
        self,
        provider: ProviderAdapter,
        distributor: ArtifactDistributor | None = None,
        settings: ExecutorSettings | None = None,
        rollback: RollbackController | None = None,
        event_publisher: EventPublisher | None = None,
    ) -> None:
        self._provider = provider
        self._distributor = distributor
        self._settings = settings or ExecutorSettings()
        self._policy = ProviderCallPolicy(self._settings)
        self._event_publisher = event_publisher
        self._rollback = rollback or RollbackController(
            provider, self._policy, event_publisher=event_publisher
        )
        self._tracer = get_tracer(__name__)

    async def apply(
        self,
        plan: DeploymentPlan,
        cancel_event: asyncio.Event | None = None,
    ) -> DeploymentResult:
        cancel_event = cancel_event or asyncio.Event()
        semaphore = asyncio.Semaphore(self._settings.max_concurrency)
        result = DeploymentResult(
            plan_id=plan.plan_id,
            states={
                d.id: ResourceState(descriptor_id=d.id, kind=d.kind) for d in plan.order
            },
            grants=self._distributor.grants if self._distributor else {},
        )
        descriptors = {d.id: d for d in plan.order}

        logger.info("apply_started", plan_id=plan.plan_id, tier_count=plan.tier_count)
        failed: list[str] = []
        try:
            for index, tier in enumerate(plan.tiers):
                if cancel_event.is_set():
                    result.cancelled = True
                    break

                with self._tracer.start_as_current_span(
                    "provisioner.tier",
                    attributes={"plan_id": plan.plan_id, "tier": index, "size": len(tier)},
                ):
                    await asyncio.gather(*(
                        self._realize(
                            plan.plan_id, d, result.states[d.id], semaphore, cancel_event
                        )
                        for d in tier
                    ))
                self._merge_tier(result, tier)

                failed = [
                    d.id for d in tier if result.states[d.id].status == ResourceStatus.FAILED
                ]
                if failed:
                    logger.error("tier_failed", plan_id=plan.plan_id, tier=index, failed=failed)
                    break
                if cancel_event.is_set():
                    result.cancelled = True
                    break
        except asyncio.CancelledError:
            logger.warning("apply_cancelled", plan_id=plan.plan_id)
            result.cancelled = True
            self._merge_tier(result, plan.order)
            await self._rollback.rollback(result, descriptors)
            raise

        if failed or result.cancelled:
            await self._rollback.rollback(result, descriptors)
        else:
            result.finish(DeploymentOutcome.SUCCEEDED)

        logger.info(
            "apply_finished",
            plan_id=plan.plan_id,
            outcome=result.outcome.value,
            cancelled=result.cancelled,
        )
        return result

    @staticmethod
    def _merge_tier(
        result: DeploymentResult, descriptors: Iterable[ResourceDescriptor]
    ) -> None:
        for descriptor in descriptors:
            if (
                result.states[descriptor.id].status != ResourceStatus.PENDING
                and descriptor.id not in result.execution_order
            ):
                result.execution_order.append(descriptor.id)

    async def _realize(
        self,
        plan_id: str,
        descriptor: ResourceDescriptor,
        state: ResourceState,
        semaphore: asyncio.Semaphore,
        cancel_event: asyncio.Event,
    ) -> None:
        async with semaphore:
            if cancel_event.is_set():
                return

            started = time.monotonic()
            state.start()
            logger.info("resource_started", descriptor_id=descriptor.id, kind=descriptor.kind.value)

            try:
                handle, adopted = await self._ensure(descriptor, state)
            except TransientProviderError as e:
                reason = f"still failing after {self._policy.max_attempts} attempts: {e}"
                await self._fail(plan_id, descriptor, state, reason)
                return
            except Exception as e:
                await self._fail(plan_id, descriptor, state, str(e))
                return

            state.mark_created(handle, adopted=adopted)
            RESOURCES_TOTAL.labels(
                kind=descriptor.kind.value, result="adopted" if adopted else "created"
            ).inc()
            RESOURCE_CREATE_DURATION.labels(kind=descriptor.kind.value).observe(
                time.monotonic() - started
            )
            logger.info(
                "resource_created",
                descriptor_id=descriptor.id,
                resource_id=handle.resource_id,
                adopted=adopted,
                attempts=state.attempts,
            )
            await self._publish(ResourceCreated(
                plan_id=plan_id,
                descriptor_id=descriptor.id,
                kind=descriptor.kind.value,
                adopted=adopted,
            ))

    async def _ensure(
        self, descriptor: ResourceDescriptor, state: ResourceState
    ) -> tuple[ProviderHandle, bool]:
        """Return (handle, adopted) for a descriptor, creating it if needed."""
        adopted = await self._adopt(descriptor)
        if adopted is not None:
            return adopted, True

        prepared = descriptor
        if descriptor.artifact_references:
            if self._distributor is None:
                raise ArtifactUnavailableError(
                    f"Descriptor {descriptor.id} references artifacts but no distributor is configured"
                )
            prepared = descriptor.with_config(self._distributor.resolve(descriptor.config))

        def record_attempt(attempt: int) -> None:
            state.attempts = attempt

        state.create_issued = True
        try:
            handle = await self._policy.run(
                "create", lambda: self._provider.create(prepared), on_attempt=record_attempt
            )
        except ResourceAlreadyExistsError:
            # A first-attempt conflict means the resource predates this run.
            state.create_issued = state.attempts > 1
            existing = await self._adopt(descriptor)
            if existing is None:
                raise
            # On a retried create the earlier attempt most likely made it.
            return existing, state.attempts <= 1
        return handle, False

    async def _adopt(self, descriptor: ResourceDescriptor) -> ProviderHandle | None:
        """Return the handle of a matching existing resource, if there is one."""
        existing = await self._policy.run(
            "describe", lambda: self._provider.describe(descriptor)
        )
        if existing is None:
            return None
        if not descriptor.matches(existing.config):
            raise ResourceConflictError(
                f"Resource {descriptor.id} already exists with a different configuration"
            )
        return existing.handle

    async def _fail(
        self, plan_id: str, descriptor: ResourceDescriptor, state: ResourceState, reason: str
    ) -> None:
        state.fail(reason)
        RESOURCES_TOTAL.labels(kind=descriptor.kind.value, result="failed").inc()
        logger.error("resource_failed", descriptor_id=descriptor.id, error=reason)
        await self._publish(ResourceFailed(
            plan_id=plan_id,
            descriptor_id=descriptor.id,
            error_message=reason,
        ))

    async def _publish(self, event: ResourceCreated | ResourceFailed) -> None:
        if self._event_publisher:
            await self._event_publisher.publish(event.event_type, event.model_dump())


class ResourceConflictError(Exception):
    """Raised when an existing resource does not match its descriptor."""


class ArtifactUnavailableError(Exception):
    """Raised when a descriptor references artifacts that cannot be resolved."""
