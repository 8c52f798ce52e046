"""Bootstrap artifact and access grant models."""

from __future__ import annotations

import re
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import Field, model_validator

from provisioner.domain.models.base import ValueObject


# ${artifact:<container>/<name>} inside any string config value
ARTIFACT_REFERENCE = re.compile(r"\$\{artifact:([^}]+)\}")


class GrantPermission(str, Enum):
    """Permissions a grant may carry. Only read is ever minted."""

    READ = "read"


class ArtifactGrant(ValueObject):
    """Time-scoped, read-only credential for one published payload."""

    payload_id: str
    issued_at: datetime
    expires_at: datetime
    permissions: frozenset[GrantPermission] = frozenset({GrantPermission.READ})
    resource_uri: str

    @model_validator(mode="after")
    def _check_lifetime(self) -> ArtifactGrant:
        if self.expires_at <= self.issued_at:
            raise ValueError(
                f"Grant for {self.payload_id} expires at {self.expires_at.isoformat()}, "
                f"not after issuance at {self.issued_at.isoformat()}"
            )
        if self.permissions != frozenset({GrantPermission.READ}):
            raise ValueError("Grants are read-only")
        return self

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    @property
    def ttl_seconds(self) -> float:
        return (self.expires_at - self.issued_at).total_seconds()


class ArtifactSpec(ValueObject):
    """A bootstrap payload declared by a deployment."""

    name: str
    container: str
    content: bytes
    overwrite: bool = False

    @property
    def payload_id(self) -> str:
        return f"{self.container}/{self.name}"


def artifact_references(value: Any) -> set[str]:
    """Collect every payload id referenced anywhere inside a config value."""
    if isinstance(value, str):
        return set(ARTIFACT_REFERENCE.findall(value))
    if isinstance(value, dict):
        found: set[str] = set()
        for item in value.values():
            found |= artifact_references(item)
        return found
    if isinstance(value, (list, tuple)):
        found = set()
        for item in value:
            found |= artifact_references(item)
        return found
    return set()


class PublishedArtifact(ValueObject):
    """Record of a payload written to the content store."""

    payload_id: str
    container: str
    name: str
    locator: str
    size_bytes: int = Field(ge=0)
    digest: str
