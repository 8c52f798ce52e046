"""Domain events package."""

from provisioner.domain.events.deployment_events import (
    DeploymentFinished,
    DeploymentPlanned,
    MemberRegistered,
    MemberUnhealthy,
    ResourceCreated,
    ResourceFailed,
    RollbackCompleted,
    RollbackStarted,
)


__all__ = [
    "DeploymentFinished",
    "DeploymentPlanned",
    "MemberRegistered",
    "MemberUnhealthy",
    "ResourceCreated",
    "ResourceFailed",
    "RollbackCompleted",
    "RollbackStarted",
]
