"""Docker packaging: build the image, then tag and push it to the registry.

All calls here block; the pipeline runs them in worker threads.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator
from dataclasses import replace
from typing import Any, BinaryIO, Protocol

import docker
import requests
from docker import errors as docker_errors
from docker.utils import kwargs_from_env

from shipyard.buildpacks.node import ensure_dockerfile
from shipyard.config import Settings
from shipyard.errors import (
    BuildContextError,
    ImageBuildError,
    ImageNotFound,
    PushError,
    TagError,
)
from shipyard.identity import remote_names
from shipyard.logging import get_logger
from shipyard.package.stream import (
    Observer,
    follow_stream,
    format_build_message,
    format_push_message,
)
from shipyard.package.tar import create_build_context
from shipyard.types import PackageManifest, WorkingArtifact

log = get_logger("shipyard.docker")

# docker-py lets transport failures (daemon gone, read timeout, broken stream) through unwrapped
BACKEND_ERRORS = (docker_errors.DockerException, requests.exceptions.RequestException)


class ImageBackend(Protocol):
    """The subset of the Docker Engine API the pipeline uses."""

    def build(self, context: BinaryIO, tag: str) -> Iterable[dict[str, Any]] | None: ...

    def inspect_image(self, image: str) -> dict[str, Any]: ...

    def tag(self, image: str, repository: str, tag: str) -> bool | None: ...

    def push(self, repository: str, tag: str) -> Iterable[dict[str, Any]] | None: ...


class DockerBackend:
    """:class:`ImageBackend` over ``docker.APIClient``.

    The client is created on first use from ``DOCKER_HOST``,
    ``DOCKER_TLS_VERIFY`` and ``DOCKER_CERT_PATH``, then shared by every
    request.
    """

    def __init__(self, client: docker.APIClient | None = None, timeout: float | None = None):
        self._client = client
        self._timeout = timeout
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> DockerBackend:
        return cls(timeout=max(settings.build_timeout, settings.push_timeout))

    @property
    def client(self) -> docker.APIClient:
        with self._lock:
            if self._client is None:
                kwargs = kwargs_from_env()
                if self._timeout is not None:
                    kwargs["timeout"] = int(self._timeout)
                self._client = docker.APIClient(**kwargs)
            return self._client

    def build(self, context: BinaryIO, tag: str) -> Iterator[dict[str, Any]]:
        return self.client.build(
            fileobj=context, custom_context=True, tag=tag, rm=True, decode=True
        )

    def inspect_image(self, image: str) -> dict[str, Any]:
        return self.client.inspect_image(image)

    def tag(self, image: str, repository: str, tag: str) -> bool:
        return self.client.tag(image, repository, tag=tag)

    def push(self, repository: str, tag: str) -> Iterator[dict[str, Any]]:
        return self.client.push(repository, tag=tag, stream=True, decode=True)


def log_observer(artifact: WorkingArtifact, stage: str) -> Observer:
    """Observer that forwards each backend line to the ``shipyard.docker`` log."""
    ctx = artifact.log_context()
    ctx["stage"] = stage

    def _observe(line: str) -> None:
        log.info("%s", line, extra=ctx)

    return _observe


class ImageBuilder:
    def __init__(self, backend: ImageBackend, settings: Settings) -> None:
        self.backend = backend
        self.settings = settings

    def prepare_context(
        self, artifact: WorkingArtifact, manifest: PackageManifest | None = None
    ) -> None:
        """Add the Dockerfile and write the build-context tar."""
        ensure_dockerfile(
            artifact,
            manifest,
            default_image=self.settings.node_base_image,
            image_repo=self.settings.node_image_repo,
        )
        create_build_context(artifact.working_dir, artifact.tar_path)

    def submit(
        self, artifact: WorkingArtifact, observer: Observer | None = None
    ) -> WorkingArtifact:
        """Build ``artifact.container_tag`` from the context written by
        :meth:`prepare_context`, following the build output as it arrives."""
        observer = observer or log_observer(artifact, "building")
        try:
            context = open(artifact.tar_path, "rb")
        except OSError as exc:
            raise BuildContextError(f"Unable to open build context: {exc}") from exc

        with context:
            try:
                stream = self.backend.build(context, artifact.container_tag)
                if stream is None:
                    raise ImageBuildError("Image build returned no output stream")
                aux = follow_stream(stream, observer, ImageBuildError, format_build_message)
            except BACKEND_ERRORS as exc:
                raise ImageBuildError(str(exc)) from exc

        image_id = aux.get("ID") or self._lookup_id(artifact.container_tag)
        log.info(
            "Built image %s (%s)",
            artifact.container_tag,
            image_id,
            extra=artifact.log_context(),
        )
        return replace(artifact, image_id=image_id)

    def _lookup_id(self, tag: str) -> str | None:
        try:
            return self.backend.inspect_image(tag).get("Id")
        except docker_errors.ImageNotFound as exc:
            raise ImageBuildError(f"Build finished but {tag} is missing: {exc}") from exc
        except BACKEND_ERRORS as exc:
            raise ImageBuildError(str(exc)) from exc


class RegistryPublisher:
    def __init__(self, backend: ImageBackend, registry_url: str) -> None:
        self.backend = backend
        self.registry_url = registry_url

    def publish(
        self, artifact: WorkingArtifact, observer: Observer | None = None
    ) -> WorkingArtifact:
        """Tag the local image under the registry and push it."""
        observer = observer or log_observer(artifact, "publishing")
        remote_container, remote_tag = remote_names(artifact, self.registry_url)
        local = artifact.image_id or artifact.container_tag

        try:
            self.backend.inspect_image(local)
        except docker_errors.ImageNotFound as exc:
            raise ImageNotFound(f"Unable to find image {local}: {exc}") from exc
        except BACKEND_ERRORS as exc:
            raise ImageNotFound(f"Unable to inspect image {local}: {exc}") from exc

        try:
            tagged = self.backend.tag(local, remote_container, artifact.revision)
        except BACKEND_ERRORS as exc:
            raise TagError(str(exc)) from exc
        if not tagged:
            raise TagError(f"Tagging {local} as {remote_tag} returned no result")
        artifact = replace(artifact, remote_container=remote_container, remote_tag=remote_tag)

        try:
            stream = self.backend.push(remote_container, artifact.revision)
            if stream is None:
                raise PushError(f"Push of {remote_tag} returned no output stream")
            aux = follow_stream(stream, observer, PushError, format_push_message)
        except BACKEND_ERRORS as exc:
            raise PushError(str(exc)) from exc

        log.info(
            "Pushed %s digest=%s",
            remote_tag,
            aux.get("Digest"),
            extra=artifact.log_context(),
        )
        return artifact
