"""Rollback controller: best-effort teardown in reverse realization order."""

from __future__ import annotations

from collections.abc import Mapping

import structlog

from provisioner.domain.events.deployment_events import RollbackCompleted, RollbackStarted
from provisioner.domain.models.resource import ProviderHandle, ResourceDescriptor, ResourceState
from provisioner.domain.models.result import DeploymentOutcome, DeploymentResult
from provisioner.domain.ports.services import EventPublisher, ProviderAdapter
from provisioner.domain.services.retry import ProviderCallPolicy
from provisioner.infrastructure.observability.metrics import ROLLBACK_DELETES_TOTAL


logger = structlog.get_logger(__name__)


class RollbackController:
    """Deletes what a failed run created, dependents before dependencies.

    Only resources this run created are deleted; adopted resources are
    left alone. A failed delete is logged and recorded on the resource
    state, and the pass carries on with the rest.
    """

    def __init__(
        self,
        provider: ProviderAdapter,
        policy: ProviderCallPolicy | None = None,
        event_publisher: EventPublisher | None = None,
    ) -> None:
        self._provider = provider
        self._policy = policy or ProviderCallPolicy()
        self._event_publisher = event_publisher

    async def rollback(
        self,
        result: DeploymentResult,
        descriptors: Mapping[str, ResourceDescriptor] | None = None,
    ) -> None:
        targets = [
            descriptor_id
            for descriptor_id in reversed(result.execution_order)
            if result.states[descriptor_id].needs_teardown
        ]
        logger.warning("rollback_started", plan_id=result.plan_id, targets=targets)
        await self._publish(RollbackStarted(
            plan_id=result.plan_id,
            resource_count=len(targets),
            correlation_id=result.plan_id,
        ))

        deleted = failed = 0
        for descriptor_id in targets:
            state = result.states[descriptor_id]
            descriptor = descriptors.get(descriptor_id) if descriptors else None
            if await self._teardown(state, descriptor):
                deleted += 1
                result.memberships = [
                    m for m in result.memberships if m.instance_id != descriptor_id
                ]
            else:
                failed += 1

        result.rolled_back = True
        result.finish(DeploymentOutcome.FAILED)

        logger.warning(
            "rollback_completed",
            plan_id=result.plan_id,
            deleted=deleted,
            failed=failed,
        )
        await self._publish(RollbackCompleted(
            plan_id=result.plan_id,
            deleted=deleted,
            failed=failed,
            correlation_id=result.plan_id,
        ))

    async def _teardown(
        self, state: ResourceState, descriptor: ResourceDescriptor | None
    ) -> bool:
        try:
            handle = state.provider_handle
            if handle is None and state.create_issued:
                handle = await self._lookup(descriptor)
            if handle is None:
                # Nothing this run created, nothing to delete.
                state.roll_back()
                ROLLBACK_DELETES_TOTAL.labels(result="skipped").inc()
                logger.info("rollback_nothing_to_delete", descriptor_id=state.descriptor_id)
                return True

            await self._policy.run("delete", lambda: self._provider.delete(handle))
            state.roll_back()
            ROLLBACK_DELETES_TOTAL.labels(result="deleted").inc()
            logger.info(
                "rollback_deleted",
                descriptor_id=state.descriptor_id,
                resource_id=handle.resource_id,
            )
            return True
        except Exception as e:
            state.last_error = f"rollback delete failed: {e}"
            ROLLBACK_DELETES_TOTAL.labels(result="failed").inc()
            logger.exception(
                "rollback_delete_failed",
                descriptor_id=state.descriptor_id,
                error=str(e),
            )
            return False

    async def _lookup(self, descriptor: ResourceDescriptor | None) -> ProviderHandle | None:
        if descriptor is None:
            return None
        existing = await self._policy.run(
            "describe", lambda: self._provider.describe(descriptor)
        )
        return existing.handle if existing else None

    async def _publish(self, event: RollbackStarted | RollbackCompleted) -> None:
        if self._event_publisher:
            await self._event_publisher.publish(event.event_type, event.model_dump())
