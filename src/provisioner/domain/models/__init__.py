"""Domain models package."""

from provisioner.domain.models.artifact import (
    ARTIFACT_REFERENCE,
    artifact_references,
    ArtifactGrant,
    ArtifactSpec,
    GrantPermission,
    PublishedArtifact,
)
from provisioner.domain.models.base import (
    DomainEntity,
    DomainEvent,
    generate_id,
    utc_now,
    ValueObject,
)
from provisioner.domain.models.membership import (
    BackendPoolMembership,
    HealthState,
    InvalidMemberTransitionError,
    MEMBER_TRANSITIONS,
    MemberPhase,
    ProbeConfig,
    ProbeProtocol,
)
from provisioner.domain.models.plan import DeploymentPlan
from provisioner.domain.models.resource import (
    ExistingResource,
    InvalidStateTransitionError,
    ProviderHandle,
    ResourceDescriptor,
    ResourceKind,
    ResourceState,
    ResourceStatus,
    VALID_TRANSITIONS,
)
from provisioner.domain.models.result import DeploymentOutcome, DeploymentResult


__all__ = [
    "ARTIFACT_REFERENCE",
    "ArtifactGrant",
    "ArtifactSpec",
    "BackendPoolMembership",
    "DeploymentOutcome",
    "DeploymentPlan",
    "DeploymentResult",
    "DomainEntity",
    "DomainEvent",
    "ExistingResource",
    "GrantPermission",
    "HealthState",
    "InvalidMemberTransitionError",
    "InvalidStateTransitionError",
    "MEMBER_TRANSITIONS",
    "MemberPhase",
    "ProbeConfig",
    "ProbeProtocol",
    "ProviderHandle",
    "PublishedArtifact",
    "ResourceDescriptor",
    "ResourceKind",
    "ResourceState",
    "ResourceStatus",
    "VALID_TRANSITIONS",
    "ValueObject",
    "artifact_references",
    "generate_id",
    "utc_now",
]
