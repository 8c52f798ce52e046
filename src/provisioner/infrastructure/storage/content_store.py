"""In-memory content store with HMAC-signed, expiring URLs."""

from __future__ import annotations

import hashlib
import hmac
import secrets
from collections.abc import Callable
from datetime import datetime
from urllib.parse import parse_qs, urlencode, urlsplit

import structlog

from provisioner.domain.models.artifact import GrantPermission
from provisioner.domain.models.base import utc_now
from provisioner.domain.ports.services import (
    ArtifactAlreadyExistsError,
    ContentStore,
    GrantExpiredError,
    UnknownArtifactError,
)


logger = structlog.get_logger(__name__)

PERMISSION_CODES: dict[GrantPermission, str] = {GrantPermission.READ: "r"}


class InMemoryContentStore(ContentStore):
    """Blob store simulation for development and tests.

    Signed URLs carry the permissions and expiry in the query string,
    signed with a per-store key, the way storage SAS tokens do. The
    clock is injectable so expiry can be exercised without waiting.
    """

    def __init__(
        self,
        base_url: str = "https://artifacts.blob.local",
        clock: Callable[[], datetime] = utc_now,
        signing_key: bytes | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._clock = clock
        self._key = signing_key or secrets.token_bytes(32)
        self._blobs: dict[str, bytes] = {}

    @property
    def locators(self) -> list[str]:
        return sorted(self._blobs)

    def owns(self, uri: str) -> bool:
        return uri.startswith(self._base_url + "/")

    async def put(
        self, container_id: str, name: str, data: bytes, overwrite: bool = False
    ) -> str:
        locator = f"{container_id}/{name}"
        if locator in self._blobs and not overwrite:
            if self._blobs[locator] == data:
                return locator
            raise ArtifactAlreadyExistsError(f"Blob {locator} already exists")
        self._blobs[locator] = bytes(data)
        logger.debug("blob_stored", locator=locator, size_bytes=len(data))
        return locator

    async def signed_url(
        self,
        locator: str,
        permissions: frozenset[GrantPermission],
        expires_at: datetime,
    ) -> str:
        if locator not in self._blobs:
            raise UnknownArtifactError(f"Blob {locator} does not exist")
        codes = "".join(sorted(PERMISSION_CODES[p] for p in permissions))
        query = urlencode({
            "sp": codes,
            "se": expires_at.isoformat(),
            "sig": self._sign(locator, codes, expires_at.isoformat()),
        })
        return f"{self._base_url}/{locator}?{query}"

    async def fetch(self, uri: str) -> bytes:
        parts = urlsplit(uri)
        locator = parts.path.lstrip("/")
        params = {key: values[0] for key, values in parse_qs(parts.query).items()}
        codes, expiry, signature = params.get("sp", ""), params.get("se", ""), params.get("sig", "")

        if not self.owns(uri) or not hmac.compare_digest(
            signature, self._sign(locator, codes, expiry)
        ):
            raise UnknownArtifactError(f"Signature for {locator} is not valid")
        if PERMISSION_CODES[GrantPermission.READ] not in codes:
            raise UnknownArtifactError(f"Signature for {locator} does not allow reads")
        if self._clock() >= datetime.fromisoformat(expiry):
            raise GrantExpiredError(f"Signed URL for {locator} expired at {expiry}")
        if locator not in self._blobs:
            raise UnknownArtifactError(f"Blob {locator} does not exist")
        return self._blobs[locator]

    def _sign(self, locator: str, codes: str, expiry: str) -> str:
        message = f"{locator}\n{codes}\n{expiry}".encode()
        return hmac.new(self._key, message, hashlib.sha256).hexdigest()
