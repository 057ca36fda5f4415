"""Derive per-request paths and image names from org/env/app/revision."""

from __future__ import annotations

import uuid
from pathlib import Path

from shipyard.errors import InvalidIdentity
from shipyard.types import DeploymentRequest, WorkingArtifact

_FORBIDDEN = ("/", "\\", "\x00")

_MISSING = {
    "org": "You must specify an org name",
    "env": "You must specify an env name",
    "app": "You must specify an app name",
    "revision": "You must specify a revision",
}


def _check_component(field: str, value: str) -> str:
    if value is None or not str(value).strip():
        raise InvalidIdentity(_MISSING[field])
    value = str(value)
    if value in {".", ".."} or any(c in value for c in _FORBIDDEN):
        raise InvalidIdentity(f"Invalid {field}: {value!r}")
    return value


def container_name(org: str, env: str, app: str) -> str:
    return f"{org}_{env}/{app}".lower()


def derive_artifact(request: DeploymentRequest, tmp_dir: Path | str) -> WorkingArtifact:
    """Return the paths and names owned by *request*; no files are created.

    The working directory carries a time-ordered uuid so identical submissions
    never share files, even though they publish the same tag.
    """
    org = _check_component("org", request.org)
    env = _check_component("env", request.env)
    app = _check_component("app", request.app)
    revision = _check_component("revision", request.revision)

    name = container_name(org, env, app)
    working_dir = Path(tmp_dir) / f"{org}_{env}_{app}_{revision}_{uuid.uuid1()}"
    return WorkingArtifact(
        org=org,
        env=env,
        app=app,
        revision=revision,
        working_dir=working_dir,
        archive_path=working_dir.with_name(working_dir.name + ".zip"),
        tar_path=working_dir.with_name(working_dir.name + ".tar"),
        container_name=name,
        container_tag=f"{name}:{revision}",
    )


def remote_names(artifact: WorkingArtifact, registry_url: str) -> tuple[str, str]:
    """Return ``(remote_container, remote_tag)`` under *registry_url*."""
    remote_container = f"{registry_url.rstrip('/')}/{artifact.container_name}"
    return remote_container, f"{remote_container}:{artifact.revision}"
