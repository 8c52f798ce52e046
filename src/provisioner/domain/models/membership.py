"""Backend pool membership and health probe models."""

from __future__ import annotations

from enum import Enum

from pydantic import Field

from provisioner.domain.models.base import DomainEntity, ValueObject


class HealthState(str, Enum):
    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class MemberPhase(str, Enum):
    """Lifecycle of a compute member on its way into a backend pool."""

    PROVISIONING = "provisioning"
    AWAITING_HEALTH = "awaiting-health"
    HEALTHY = "healthy"
    REGISTERED = "registered"
    UNHEALTHY = "unhealthy"


MEMBER_TRANSITIONS: dict[MemberPhase, set[MemberPhase]] = {
    MemberPhase.PROVISIONING: {MemberPhase.AWAITING_HEALTH},
    MemberPhase.AWAITING_HEALTH: {MemberPhase.HEALTHY, MemberPhase.UNHEALTHY},
    MemberPhase.HEALTHY: {MemberPhase.REGISTERED},
    MemberPhase.REGISTERED: set(),
    MemberPhase.UNHEALTHY: set(),
}


class ProbeProtocol(str, Enum):
    HTTP = "http"
    HTTPS = "https"
    TCP = "tcp"


class ProbeConfig(ValueObject):
    """Health probe parameters, mirroring the load balancer's own probe."""

    protocol: ProbeProtocol = ProbeProtocol.HTTP
    port: int = Field(default=80, ge=1, le=65535)
    path: str = "/"
    interval_seconds: float = Field(default=5.0, ge=0)
    healthy_threshold: int = Field(default=2, ge=1)
    unhealthy_threshold: int = Field(default=3, ge=1)
    max_probes: int = Field(default=60, ge=1)


class BackendPoolMembership(DomainEntity):
    """One compute address tracked for registration into a backend pool."""

    pool_id: str
    member_address: str
    instance_id: str
    health_state: HealthState = HealthState.UNKNOWN
    phase: MemberPhase = MemberPhase.PROVISIONING
    consecutive_successes: int = 0
    consecutive_failures: int = 0
    probes_sent: int = 0
    last_error: str | None = None

    def _transition_to(self, new_phase: MemberPhase) -> None:
        valid = MEMBER_TRANSITIONS.get(self.phase, set())
        if new_phase not in valid:
            raise InvalidMemberTransitionError(
                f"Member {self.member_address} cannot transition from "
                f"{self.phase.value} to {new_phase.value}"
            )
        self.phase = new_phase
        self.touch()

    def await_health(self) -> None:
        self._transition_to(MemberPhase.AWAITING_HEALTH)

    def record_probe(self, success: bool) -> None:
        self.probes_sent += 1
        if success:
            self.consecutive_successes += 1
            self.consecutive_failures = 0
        else:
            self.consecutive_failures += 1
            self.consecutive_successes = 0

    def mark_healthy(self) -> None:
        self.health_state = HealthState.HEALTHY
        self._transition_to(MemberPhase.HEALTHY)

    def mark_unhealthy(self, reason: str) -> None:
        self.health_state = HealthState.UNHEALTHY
        self.last_error = reason
        self._transition_to(MemberPhase.UNHEALTHY)

    def mark_registered(self) -> None:
        self._transition_to(MemberPhase.REGISTERED)

    @property
    def key(self) -> tuple[str, str]:
        return (self.pool_id, self.member_address)


class InvalidMemberTransitionError(Exception):
    """Raised when a member phase transition is not allowed."""
