"""Deployment plan model."""

from __future__ import annotations

from typing import Any

from pydantic import Field

from provisioner.domain.models.base import generate_id, ValueObject
from provisioner.domain.models.resource import ResourceDescriptor


class DeploymentPlan(ValueObject):
    """Tiered execution plan derived from a descriptor set.

    Every descriptor in a tier has all of its dependencies in earlier
    tiers, so a tier can be realized concurrently.
    """

    plan_id: str = Field(default_factory=generate_id)
    tiers: tuple[tuple[ResourceDescriptor, ...], ...] = ()

    @property
    def tier_count(self) -> int:
        return len(self.tiers)

    @property
    def order(self) -> list[ResourceDescriptor]:
        return [descriptor for tier in self.tiers for descriptor in tier]

    @property
    def descriptor_ids(self) -> list[str]:
        return [descriptor.id for descriptor in self.order]

    def descriptor(self, descriptor_id: str) -> ResourceDescriptor | None:
        for candidate in self.order:
            if candidate.id == descriptor_id:
                return candidate
        return None

    def tier_of(self, descriptor_id: str) -> int | None:
        for index, tier in enumerate(self.tiers):
            if any(d.id == descriptor_id for d in tier):
                return index
        return None

    def describe(self) -> list[dict[str, Any]]:
        """Render the plan for a dry run."""
        return [
            {
                "tier": index,
                "resources": [
                    {
                        "id": d.id,
                        "kind": d.kind.value,
                        "depends_on": sorted(d.depends_on),
                    }
                    for d in tier
                ],
            }
            for index, tier in enumerate(self.tiers)
        ]
