"""Resource descriptor and per-resource execution state."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import Field, field_validator, model_validator

from provisioner.domain.models.artifact import artifact_references
from provisioner.domain.models.base import DomainEntity, ValueObject


class ResourceKind(str, Enum):
    """Kinds of infrastructure resources a deployment may declare."""

    NETWORK = "network"
    SUBNET = "subnet"
    SECURITY_GROUP = "security-group"
    SECURITY_RULE = "security-rule"
    STORAGE_ACCOUNT = "storage-account"
    BLOB_CONTAINER = "blob-container"
    BLOB = "blob"
    COMPUTE_INSTANCE = "compute-instance"
    INSTANCE_SET = "instance-set"
    LOAD_BALANCER = "load-balancer"
    BACKEND_POOL = "backend-pool"
    HEALTH_PROBE = "health-probe"
    LB_RULE = "lb-rule"

    @property
    def is_compute(self) -> bool:
        return self in {ResourceKind.COMPUTE_INSTANCE, ResourceKind.INSTANCE_SET}


class ResourceDescriptor(ValueObject):
    """Declarative description of one resource and what it depends on."""

    id: str = Field(min_length=1)
    kind: ResourceKind
    config: dict[str, Any] = Field(default_factory=dict)
    depends_on: frozenset[str] = Field(default_factory=frozenset)

    @field_validator("depends_on", mode="before")
    @classmethod
    def _coerce_depends_on(cls, value: Any) -> Any:
        if value is None:
            return frozenset()
        if isinstance(value, (list, tuple, set)):
            return frozenset(value)
        return value

    @model_validator(mode="after")
    def _no_self_dependency(self) -> ResourceDescriptor:
        if self.id in self.depends_on:
            raise ValueError(f"Descriptor {self.id} depends on itself")
        return self

    @property
    def backend_pool(self) -> str | None:
        pool = self.config.get("backend_pool")
        return str(pool) if pool else None

    @property
    def artifact_references(self) -> set[str]:
        return artifact_references(self.config)

    def with_config(self, config: dict[str, Any]) -> ResourceDescriptor:
        """Return a copy carrying a different config."""
        return self.model_copy(update={"config": config})

    def matches(self, existing_config: dict[str, Any]) -> bool:
        """Check whether an existing resource satisfies this declaration.

        Keys whose declared value references a bootstrap artifact are
        skipped: every run mints a fresh grant URI for them.
        """
        for key, value in self.config.items():
            if artifact_references(value):
                continue
            if key not in existing_config or existing_config[key] != value:
                return False
        return True


class ProviderHandle(ValueObject):
    """Opaque reference to a resource created by the provider."""

    resource_id: str
    addresses: tuple[str, ...] = ()


class ExistingResource(ValueObject):
    """What the provider reports about a resource that already exists."""

    handle: ProviderHandle
    config: dict[str, Any] = Field(default_factory=dict)


class ResourceStatus(str, Enum):
    """Execution states of a single descriptor."""

    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    CREATED = "created"
    FAILED = "failed"
    ROLLED_BACK = "rolled-back"


VALID_TRANSITIONS: dict[ResourceStatus, set[ResourceStatus]] = {
    ResourceStatus.PENDING: {ResourceStatus.IN_PROGRESS, ResourceStatus.FAILED},
    ResourceStatus.IN_PROGRESS: {
        ResourceStatus.CREATED, ResourceStatus.FAILED, ResourceStatus.ROLLED_BACK,
    },
    ResourceStatus.CREATED: {ResourceStatus.ROLLED_BACK},
    ResourceStatus.FAILED: {ResourceStatus.ROLLED_BACK},
    ResourceStatus.ROLLED_BACK: set(),
}


class ResourceState(DomainEntity):
    """Mutable execution state for one descriptor during a run."""

    descriptor_id: str
    kind: ResourceKind
    status: ResourceStatus = ResourceStatus.PENDING
    provider_handle: ProviderHandle | None = None
    last_error: str | None = None
    adopted: bool = False
    create_issued: bool = False
    attempts: int = 0

    def _transition_to(self, new_status: ResourceStatus) -> None:
        valid = VALID_TRANSITIONS.get(self.status, set())
        if new_status not in valid:
            raise InvalidStateTransitionError(
                f"Resource {self.descriptor_id} cannot transition from "
                f"{self.status.value} to {new_status.value}"
            )
        self.status = new_status
        self.touch()

    def start(self) -> None:
        self._transition_to(ResourceStatus.IN_PROGRESS)

    def mark_created(self, handle: ProviderHandle, *, adopted: bool = False) -> None:
        self.provider_handle = handle
        self.adopted = adopted
        self._transition_to(ResourceStatus.CREATED)

    def fail(self, error_message: str) -> None:
        self.last_error = error_message
        self._transition_to(ResourceStatus.FAILED)

    def roll_back(self) -> None:
        self._transition_to(ResourceStatus.ROLLED_BACK)

    @property
    def needs_teardown(self) -> bool:
        """Whether rollback should delete this resource."""
        return (
            self.status in {ResourceStatus.CREATED, ResourceStatus.IN_PROGRESS}
            and not self.adopted
        )


class InvalidStateTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""
