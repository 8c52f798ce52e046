"""Dependency planner: tiers descriptors into a deterministic execution plan."""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from provisioner.domain.models.plan import DeploymentPlan
from provisioner.domain.models.resource import ResourceDescriptor


logger = structlog.get_logger(__name__)


class DependencyPlanner:
    """Orders descriptors with Kahn's algorithm, one tier per round.

    Every descriptor whose dependencies are all satisfied joins the
    current tier. Tiers are sorted by descriptor id so the same
    descriptor set always yields the same plan.
    """

    def plan(self, descriptors: Iterable[ResourceDescriptor]) -> DeploymentPlan:
        by_id = self._index(descriptors)
        self._check_references(by_id)

        remaining: dict[str, set[str]] = {
            descriptor_id: set(descriptor.depends_on)
            for descriptor_id, descriptor in by_id.items()
        }
        dependents: dict[str, set[str]] = {descriptor_id: set() for descriptor_id in by_id}
        for descriptor_id, deps in remaining.items():
            for dep in deps:
                dependents[dep].add(descriptor_id)

        tiers: list[tuple[ResourceDescriptor, ...]] = []
        ready = sorted(d for d, deps in remaining.items() if not deps)
        while ready:
            tiers.append(tuple(by_id[d] for d in ready))
            for descriptor_id in ready:
                del remaining[descriptor_id]
            next_ready: set[str] = set()
            for descriptor_id in ready:
                for dependent in dependents[descriptor_id]:
                    deps = remaining[dependent]
                    deps.discard(descriptor_id)
                    if not deps:
                        next_ready.add(dependent)
            ready = sorted(next_ready)

        if remaining:
            cycle = self._find_cycle(remaining)
            logger.error("plan_cycle_detected", cycle=cycle)
            raise CycleDetectedError(cycle)

        plan = DeploymentPlan(tiers=tuple(tiers))
        logger.info(
            "plan_generated",
            plan_id=plan.plan_id,
            tier_count=plan.tier_count,
            resource_count=len(by_id),
        )
        return plan

    @staticmethod
    def _index(descriptors: Iterable[ResourceDescriptor]) -> dict[str, ResourceDescriptor]:
        by_id: dict[str, ResourceDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.id in by_id:
                raise DuplicateDescriptorError(
                    f"Descriptor id {descriptor.id!r} is declared more than once"
                )
            by_id[descriptor.id] = descriptor
        return by_id

    @staticmethod
    def _check_references(by_id: dict[str, ResourceDescriptor]) -> None:
        for descriptor in by_id.values():
            missing = sorted(dep for dep in descriptor.depends_on if dep not in by_id)
            if missing:
                raise UnknownDependencyError(
                    f"Descriptor {descriptor.id!r} depends on unknown descriptors: {missing}"
                )

    @staticmethod
    def _find_cycle(remaining: dict[str, set[str]]) -> list[str]:
        """Walk unmet dependencies from the smallest leftover id until one repeats.

        Every leftover descriptor still has an unmet dependency that is
        itself left over, so the walk cannot dead-end.
        """
        path: list[str] = []
        seen: dict[str, int] = {}
        current = min(remaining)
        while current not in seen:
            seen[current] = len(path)
            path.append(current)
            current = min(remaining[current])
        return path[seen[current]:]


class PlanningError(Exception):
    """Raised when a descriptor set cannot be planned. No resource is touched."""


class CycleDetectedError(PlanningError):
    """Raised when the dependency graph has a cycle."""

    def __init__(self, ids: list[str]) -> None:
        self.ids = list(ids)
        super().__init__(f"Dependency cycle detected: {' -> '.join([*self.ids, self.ids[0]])}")


class DuplicateDescriptorError(PlanningError):
    """Raised when two descriptors share an id."""


class UnknownDependencyError(PlanningError):
    """Raised when a descriptor depends on an id outside the deployment."""
