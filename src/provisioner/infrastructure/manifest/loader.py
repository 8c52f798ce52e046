"""JSON deployment manifest loading."""

from __future__ import annotations

import json
from pathlib import Path

from pydantic import BaseModel, Field, model_validator, ValidationError

from provisioner.domain.models.artifact import ArtifactSpec
from provisioner.domain.models.resource import ResourceDescriptor


class ManifestArtifact(BaseModel):
    """A bootstrap payload as written in a manifest: inline or from a file."""

    name: str
    container: str
    source: str | None = None
    content: str | None = None
    overwrite: bool = False

    @model_validator(mode="after")
    def _one_origin(self) -> ManifestArtifact:
        if (self.source is None) == (self.content is None):
            raise ValueError(f"Artifact {self.name} needs exactly one of 'source' or 'content'")
        return self

    def to_spec(self, base_dir: Path) -> ArtifactSpec:
        if self.source is not None:
            data = (base_dir / self.source).read_bytes()
        else:
            data = (self.content or "").encode("utf-8")
        return ArtifactSpec(
            name=self.name, container=self.container, content=data, overwrite=self.overwrite
        )


class DeploymentManifest(BaseModel):
    descriptors: list[ResourceDescriptor] = Field(default_factory=list)
    artifacts: list[ManifestArtifact] = Field(default_factory=list)

    model_config = {"extra": "forbid"}


def load_manifest(path: str | Path) -> tuple[list[ResourceDescriptor], list[ArtifactSpec]]:
    """Read a manifest file. Artifact sources resolve relative to it."""
    manifest_path = Path(path)
    try:
        raw = json.loads(manifest_path.read_text(encoding="utf-8"))
        manifest = DeploymentManifest.model_validate(raw)
        artifacts = [a.to_spec(manifest_path.parent) for a in manifest.artifacts]
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        raise ManifestError(f"Cannot load manifest {manifest_path}: {e}") from e
    return manifest.descriptors, artifacts


class ManifestError(Exception):
    """Raised when a manifest cannot be read or validated."""
