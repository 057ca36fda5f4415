"""Node buildpack: the Dockerfile used to build an uploaded bundle.

Bundles that ship their own ``Dockerfile`` keep it. Otherwise one is rendered
that installs dependencies with npm and runs ``npm start``, labelled with the
deployment identity so images can be traced back to a request.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable
from pathlib import Path

from shipyard.errors import BuildContextError
from shipyard.types import PackageManifest, WorkingArtifact

DOCKERFILE = "Dockerfile"

LABEL_REPO = "com.github.30x.shipyard.repo"
LABEL_APPLICATION = "com.github.30x.shipyard.app"
LABEL_REVISION = "com.github.30x.shipyard.revision"

DEFAULT_NODE_BASE_IMAGE = "mhart/alpine-node:4"
NODE_IMAGE_REPO = "mhart/alpine-node"

_TEMPLATE = """\
FROM {base_image}

ADD . .
RUN apk add --no-cache git && \\
    npm install && \\
    apk del git

LABEL {label_repo}={repo}
LABEL {label_app}={app}
LABEL {label_revision}={revision}

CMD ["npm", "start"]
"""

_MAJOR = re.compile(r"(\d+)")


def determine_base_image(
    runtime: str,
    default_image: str = DEFAULT_NODE_BASE_IMAGE,
    image_repo: str = NODE_IMAGE_REPO,
) -> str:
    """Map a runtime selection (``node`` or ``node:<tag>``) to a base image."""
    name, _, tag = runtime.partition(":")
    if name != "node":
        raise BuildContextError(f"Unsupported runtime selection: {runtime}")
    return f"{image_repo}:{tag}" if tag else default_image


def runtime_for(manifest: PackageManifest | None) -> str:
    """Pick ``node:<major>`` from ``engines.node`` when it names a version."""
    if manifest is None:
        return "node"
    m = _MAJOR.search(manifest.engines.get("node", ""))
    return f"node:{m.group(1)}" if m else "node"


def _quote(value: str) -> str:
    return json.dumps(value)


def render_dockerfile(
    base_image: str,
    repo: str,
    app: str,
    revision: str,
    env_vars: Iterable[str] = (),
) -> str:
    text = _TEMPLATE.format(
        base_image=base_image,
        label_repo=LABEL_REPO,
        label_app=LABEL_APPLICATION,
        label_revision=LABEL_REVISION,
        repo=_quote(repo),
        app=_quote(app),
        revision=_quote(revision),
    )
    env_lines = []
    for kv in env_vars:
        if "=" not in kv:
            raise BuildContextError(f"Environment entries must be KEY=VAL, got {kv!r}")
        k, v = kv.split("=", 1)
        env_lines.append(f"ENV {k}={_quote(v)}")
    if env_lines:
        text += "\n" + "\n".join(env_lines) + "\n"
    return text


def ensure_dockerfile(
    artifact: WorkingArtifact,
    manifest: PackageManifest | None = None,
    *,
    default_image: str = DEFAULT_NODE_BASE_IMAGE,
    image_repo: str = NODE_IMAGE_REPO,
    env_vars: Iterable[str] = (),
) -> Path:
    """Write a Dockerfile into the working dir unless the bundle has one."""
    path = artifact.working_dir / DOCKERFILE
    if path.is_file():
        return path
    base_image = determine_base_image(runtime_for(manifest), default_image, image_repo)
    content = render_dockerfile(
        base_image,
        repo=f"{artifact.org}_{artifact.env}".lower(),
        app=artifact.app.lower(),
        revision=artifact.revision,
        env_vars=env_vars,
    )
    try:
        path.write_text(content, encoding="utf-8")
    except OSError as exc:
        raise BuildContextError(f"Unable to write {DOCKERFILE}: {exc}") from exc
    return path
