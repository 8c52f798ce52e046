"""Artifact distributor: publishes bootstrap payloads and mints grants for them."""

from __future__ import annotations

import hashlib
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

import structlog

from provisioner.domain.models.artifact import (
    ARTIFACT_REFERENCE,
    artifact_references,
    ArtifactGrant,
    ArtifactSpec,
    GrantPermission,
    PublishedArtifact,
)
from provisioner.domain.models.base import utc_now
from provisioner.domain.ports.services import (
    ArtifactAlreadyExistsError,
    ContentStore,
    GrantExpiredError,
    UnknownArtifactError,
)
from provisioner.infrastructure.observability.metrics import (
    ARTIFACTS_PUBLISHED_TOTAL,
    GRANTS_ISSUED_TOTAL,
)


logger = structlog.get_logger(__name__)

READ_ONLY = frozenset({GrantPermission.READ})


class ArtifactDistributor:
    """Hands bootstrap payloads to instances through short-lived signed URLs.

    Each payload gets its own grant with its own lifetime; grants are
    never shared between payloads. Grants are read-only once minted.
    """

    def __init__(
        self,
        content_store: ContentStore,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = content_store
        self._clock = clock
        self._published: dict[str, PublishedArtifact] = {}
        self._grants: dict[str, ArtifactGrant] = {}

    @property
    def grants(self) -> dict[str, ArtifactGrant]:
        return dict(self._grants)

    def published(self, payload_id: str) -> PublishedArtifact | None:
        return self._published.get(payload_id)

    async def publish(
        self,
        payload: bytes,
        container_id: str,
        name: str | None = None,
        overwrite: bool = False,
    ) -> str:
        """Write a payload and return its payload id (``<container>/<name>``).

        The name defaults to the payload's content digest. Publishing the
        same bytes under the same id again is a no-op.
        """
        digest = hashlib.sha256(payload).hexdigest()
        name = name or digest[:16]
        payload_id = f"{container_id}/{name}"

        known = self._published.get(payload_id)
        if known is not None and not overwrite:
            if known.digest == digest:
                return payload_id
            raise ArtifactAlreadyExistsError(f"Artifact {payload_id} is already published")

        locator = await self._store.put(container_id, name, payload, overwrite=overwrite)
        self._published[payload_id] = PublishedArtifact(
            payload_id=payload_id,
            container=container_id,
            name=name,
            locator=locator,
            size_bytes=len(payload),
            digest=digest,
        )
        # A republished payload needs a fresh grant.
        self._grants.pop(payload_id, None)
        ARTIFACTS_PUBLISHED_TOTAL.inc()

        logger.info(
            "artifact_published",
            payload_id=payload_id,
            size_bytes=len(payload),
            overwrite=overwrite,
        )
        return payload_id

    async def publish_spec(self, spec: ArtifactSpec) -> str:
        return await self.publish(
            spec.content, spec.container, name=spec.name, overwrite=spec.overwrite
        )

    async def grant(self, payload_id: str, ttl: timedelta) -> ArtifactGrant:
        """Mint a read-only signed URL grant valid for ``ttl``."""
        if ttl <= timedelta(0):
            raise ValueError(f"Grant ttl must be positive, got {ttl}")

        artifact = self._published.get(payload_id)
        if artifact is None:
            raise UnknownArtifactError(f"Artifact {payload_id} has not been published")

        issued_at = self._clock()
        expires_at = issued_at + ttl
        uri = await self._store.signed_url(artifact.locator, READ_ONLY, expires_at)

        grant = ArtifactGrant(
            payload_id=payload_id,
            issued_at=issued_at,
            expires_at=expires_at,
            permissions=READ_ONLY,
            resource_uri=uri,
        )
        self._grants[payload_id] = grant
        GRANTS_ISSUED_TOTAL.inc()

        logger.info(
            "artifact_granted",
            payload_id=payload_id,
            expires_at=expires_at.isoformat(),
            ttl_seconds=ttl.total_seconds(),
        )
        return grant

    def references(self, config: dict[str, Any]) -> set[str]:
        return artifact_references(config)

    def resolve(self, config: dict[str, Any]) -> dict[str, Any]:
        """Return a copy of ``config`` with every artifact reference replaced
        verbatim by its grant URI.

        Raises UnknownArtifactError for a payload without a grant and
        GrantExpiredError for a grant that can no longer be handed out.
        """
        now = self._clock()
        for payload_id in artifact_references(config):
            grant = self._grants.get(payload_id)
            if grant is None:
                raise UnknownArtifactError(f"No grant has been issued for artifact {payload_id}")
            if grant.is_expired(now):
                raise GrantExpiredError(
                    f"Grant for artifact {payload_id} expired at {grant.expires_at.isoformat()}"
                )
        return self._substitute(config)

    def _substitute(self, value: Any) -> Any:
        if isinstance(value, str):
            return ARTIFACT_REFERENCE.sub(
                lambda match: self._grants[match.group(1)].resource_uri, value
            )
        if isinstance(value, dict):
            return {key: self._substitute(item) for key, item in value.items()}
        if isinstance(value, list):
            return [self._substitute(item) for item in value]
        if isinstance(value, tuple):
            return tuple(self._substitute(item) for item in value)
        return value
