"""Deployment domain events."""

from __future__ import annotations

from provisioner.domain.models.base import DomainEvent


class DeploymentPlanned(DomainEvent):
    """Emitted when a descriptor set has been tiered."""

    plan_id: str
    tier_count: int
    resource_count: int
    event_type: str = "deployment.planned"


class ResourceCreated(DomainEvent):
    """Emitted when a resource reaches created, by creation or adoption."""

    plan_id: str
    descriptor_id: str
    kind: str
    adopted: bool = False
    event_type: str = "resource.created"


class ResourceFailed(DomainEvent):
    """Emitted when a resource fails permanently."""

    plan_id: str
    descriptor_id: str
    error_message: str
    event_type: str = "resource.failed"


class RollbackStarted(DomainEvent):
    plan_id: str
    resource_count: int
    event_type: str = "deployment.rollback_started"


class RollbackCompleted(DomainEvent):
    plan_id: str
    deleted: int
    failed: int
    event_type: str = "deployment.rollback_completed"


class MemberRegistered(DomainEvent):
    """Emitted when a healthy instance joins a backend pool."""

    pool_id: str
    member_address: str
    instance_id: str
    event_type: str = "member.registered"


class MemberUnhealthy(DomainEvent):
    pool_id: str
    member_address: str
    instance_id: str
    reason: str
    event_type: str = "member.unhealthy"


class DeploymentFinished(DomainEvent):
    """Emitted once per run with the overall verdict."""

    plan_id: str
    outcome: str
    rolled_back: bool
    event_type: str = "deployment.finished"
