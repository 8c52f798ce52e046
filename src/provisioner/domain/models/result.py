"""Deployment run result."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import Field

from provisioner.domain.models.artifact import ArtifactGrant
from provisioner.domain.models.base import DomainEntity
from provisioner.domain.models.membership import BackendPoolMembership, MemberPhase
from provisioner.domain.models.resource import ResourceState, ResourceStatus


class DeploymentOutcome(str, Enum):
    """Overall verdict of a deployment run."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    DEGRADED = "degraded"
    FAILED = "failed"


class DeploymentResult(DomainEntity):
    """Final state of every descriptor plus the overall verdict."""

    plan_id: str
    states: dict[str, ResourceState] = Field(default_factory=dict)
    execution_order: list[str] = Field(default_factory=list)
    memberships: list[BackendPoolMembership] = Field(default_factory=list)
    grants: dict[str, ArtifactGrant] = Field(default_factory=dict)
    outcome: DeploymentOutcome = DeploymentOutcome.PENDING
    rolled_back: bool = False
    cancelled: bool = False

    @property
    def success(self) -> bool:
        return self.outcome == DeploymentOutcome.SUCCEEDED

    @property
    def exit_code(self) -> int:
        return 0 if self.success else 1

    def state(self, descriptor_id: str) -> ResourceState:
        return self.states[descriptor_id]

    def statuses(self) -> dict[str, ResourceStatus]:
        return {key: value.status for key, value in self.states.items()}

    @property
    def failures(self) -> dict[str, str]:
        """First non-retryable reason per failed descriptor or member."""
        failed = {
            key: state.last_error or "unknown error"
            for key, state in self.states.items()
            if state.status == ResourceStatus.FAILED
        }
        for member in self.memberships:
            if member.last_error and member.phase != MemberPhase.REGISTERED:
                failed[f"{member.instance_id}@{member.member_address}"] = member.last_error
        return failed

    def finish(self, outcome: DeploymentOutcome) -> None:
        self.outcome = outcome
        self.touch()

    def failure_report(self) -> dict[str, Any]:
        """Structured summary for operators and the CLI."""
        return {
            "plan_id": self.plan_id,
            "outcome": self.outcome.value,
            "rolled_back": self.rolled_back,
            "cancelled": self.cancelled,
            "resources": {
                key: {
                    "status": state.status.value,
                    "adopted": state.adopted,
                    "error": state.last_error,
                }
                for key, state in self.states.items()
            },
            "members": [
                {
                    "pool": member.pool_id,
                    "address": member.member_address,
                    "instance": member.instance_id,
                    "phase": member.phase.value,
                    "health": member.health_state.value,
                }
                for member in self.memberships
            ],
            "failures": [
                {"id": key, "reason": reason}
                for key, reason in sorted(self.failures.items())
            ],
        }
