"""Shared data model: requests, per-request artifacts, outcomes and wire models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from shipyard.errors import ShipyardError


class Stage(str, Enum):
    RECEIVED = "received"
    INGESTING = "ingesting"
    EXTRACTING = "extracting"
    VALIDATING = "validating"
    BUILDING = "building"
    PUBLISHING = "publishing"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class DeploymentRequest:
    org: str
    env: str
    app: str
    revision: str
    max_upload_bytes: int

    def log_context(self) -> dict[str, str]:
        return {"org": self.org, "env": self.env, "app": self.app, "revision": self.revision}


@dataclass(frozen=True)
class WorkingArtifact:
    """Everything one request owns on disk and in the image store.

    Paths are derived up front; nothing exists until the stage that creates it
    runs. ``remote_*`` are only populated once the image has been tagged.
    """

    org: str
    env: str
    app: str
    revision: str
    working_dir: Path
    archive_path: Path
    tar_path: Path
    container_name: str
    container_tag: str
    image_id: str | None = None
    remote_container: str | None = None
    remote_tag: str | None = None

    def log_context(self, stage: Stage | None = None) -> dict[str, str]:
        ctx = {
            "org": self.org,
            "env": self.env,
            "app": self.app,
            "revision": self.revision,
            "working_dir": str(self.working_dir),
        }
        if stage is not None:
            ctx["stage"] = stage.value
        return ctx


@dataclass
class BuildOutcome:
    stage: Stage
    artifact: WorkingArtifact | None = None
    error: ShipyardError | None = field(default=None, repr=False)

    @property
    def ok(self) -> bool:
        return self.stage is Stage.DONE

    @property
    def failed_stage(self) -> Stage | None:
        return self.error.stage if self.error is not None else None

    @classmethod
    def success(cls, artifact: WorkingArtifact) -> BuildOutcome:
        return cls(stage=Stage.DONE, artifact=artifact)

    @classmethod
    def failure(cls, error: ShipyardError, artifact: WorkingArtifact | None) -> BuildOutcome:
        return cls(stage=Stage.FAILED, artifact=artifact, error=error)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"ok": self.ok, "stage": self.stage.value}
        if self.artifact is not None:
            out["containerTag"] = self.artifact.container_tag
            out["imageId"] = self.artifact.image_id
            out["remoteTag"] = self.artifact.remote_tag
        if self.error is not None:
            out["error"] = self.error.to_dict()
        return out


# --- package.json ------------------------------------------------------------


class ScriptsModel(BaseModel):
    model_config = ConfigDict(extra="allow")

    start: str


class PackageManifest(BaseModel):
    """The parts of ``package.json`` the build relies on."""

    model_config = ConfigDict(extra="allow")

    name: str | None = None
    version: str | None = None
    scripts: ScriptsModel
    engines: dict[str, str] = Field(default_factory=dict)


# --- HTTP responses -------------------------------------------------------------


class BuildResponse(BaseModel):
    endpoint: str
    containerId: str | None = None


class ErrorResponse(BaseModel):
    code: str
    stage: str
    message: str
