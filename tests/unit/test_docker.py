from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import pytest
import requests
from docker import errors as docker_errors

from shipyard.errors import ImageBuildError, ImageNotFound, PushError, TagError
from shipyard.identity import derive_artifact
from shipyard.package.docker import ImageBuilder, RegistryPublisher
from shipyard.types import DeploymentRequest, PackageManifest
from tests.helpers import FakeBackend


@pytest.fixture
def artifact(tmp_path: Path):
    artifact = derive_artifact(DeploymentRequest("Org", "Env", "App", "5", 100), tmp_path)
    artifact.working_dir.mkdir()
    (artifact.working_dir / "index.js").write_text("1", encoding="utf-8")
    return artifact


@pytest.fixture
def manifest() -> PackageManifest:
    return PackageManifest.model_validate({"scripts": {"start": "node index.js"}})


def _build(backend, settings, artifact, manifest, observer):
    builder = ImageBuilder(backend, settings)
    builder.prepare_context(artifact, manifest)
    return builder.submit(artifact, observer)


def test_build_streams_output_and_records_image_id(settings, backend, artifact, manifest) -> None:
    seen: list[str] = []

    built = _build(backend, settings, artifact, manifest, seen.append)

    assert built.image_id == backend.images["org_env/app:5"]
    assert built.working_dir == artifact.working_dir
    assert seen[0].startswith("Step 1/4")
    assert backend.contexts == [["Dockerfile", "index.js"]]


def test_build_without_aux_falls_back_to_inspect(settings, backend, artifact, manifest) -> None:
    backend.build_lines = [{"stream": "Successfully built 123\n"}]

    built = _build(backend, settings, artifact, manifest, lambda _: None)

    assert built.image_id == backend.images["org_env/app:5"]


def test_build_without_stream_is_an_error(settings, backend, artifact, manifest) -> None:
    backend.build = lambda context, tag: None

    with pytest.raises(ImageBuildError) as err:
        _build(backend, settings, artifact, manifest, lambda _: None)
    assert "no output stream" in err.value.cause


def test_build_backend_error_is_embedded(settings, backend, artifact, manifest) -> None:
    backend.fail_build = docker_errors.APIError("daemon exploded")

    with pytest.raises(ImageBuildError) as err:
        _build(backend, settings, artifact, manifest, lambda _: None)
    assert "daemon exploded" in err.value.cause


def test_build_error_line_fails_build(settings, backend, artifact, manifest) -> None:
    backend.build_lines = [{"errorDetail": {"message": "returned a non-zero code: 1"}}]

    with pytest.raises(ImageBuildError) as err:
        _build(backend, settings, artifact, manifest, lambda _: None)
    assert "non-zero code" in err.value.cause


def test_publish_tags_and_pushes(settings, backend, artifact, manifest) -> None:
    built = _build(backend, settings, artifact, manifest, lambda _: None)
    seen: list[str] = []

    published = RegistryPublisher(backend, settings.registry_url).publish(built, seen.append)

    remote = "registry.example.com:5000/org_env/app"
    assert published.remote_container == remote
    assert published.remote_tag == f"{remote}:5"
    assert backend.tags == [(built.image_id, remote, "5")]
    assert backend.pushed == [f"{remote}:5"]
    assert "abc123: Pushed" in seen


def test_publish_missing_image(settings, backend, artifact) -> None:
    with pytest.raises(ImageNotFound):
        RegistryPublisher(backend, settings.registry_url).publish(artifact, lambda _: None)
    assert backend.tags == []


def test_publish_tag_without_result(settings, backend, artifact, manifest) -> None:
    built = _build(backend, settings, artifact, manifest, lambda _: None)
    backend.tag_result = None

    with pytest.raises(TagError):
        RegistryPublisher(backend, settings.registry_url).publish(built, lambda _: None)
    assert backend.pushed == []


def test_publish_push_without_stream(settings, backend, artifact, manifest) -> None:
    built = _build(backend, settings, artifact, manifest, lambda _: None)
    backend.push = lambda repository, tag: None

    with pytest.raises(PushError):
        RegistryPublisher(backend, settings.registry_url).publish(built, lambda _: None)


def test_publish_push_error_line(settings, backend, artifact, manifest) -> None:
    built = _build(backend, settings, artifact, manifest, lambda _: None)
    backend.push_lines = [{"status": "Preparing", "id": "l1"}, {"error": "unauthorized"}]

    with pytest.raises(PushError) as err:
        RegistryPublisher(backend, settings.registry_url).publish(built, lambda _: None)
    assert err.value.cause == "unauthorized"


def test_publish_by_tag_when_image_id_unknown(settings, backend, artifact, manifest) -> None:
    built = _build(backend, settings, artifact, manifest, lambda _: None)

    published = RegistryPublisher(backend, settings.registry_url).publish(
        replace(built, image_id=None), lambda _: None
    )

    assert backend.tags[0][0] == "org_env/app:5"
    assert published.remote_tag.endswith(":5")


def test_build_transport_failure_is_a_build_error(settings, backend, artifact, manifest) -> None:
    backend.fail_build = requests.exceptions.ConnectionError("Connection aborted: daemon gone")

    with pytest.raises(ImageBuildError) as err:
        _build(backend, settings, artifact, manifest, lambda _: None)
    assert "daemon gone" in err.value.cause


def test_build_stream_broken_midway(settings, backend, artifact, manifest) -> None:
    def lines():
        yield {"stream": "Step 1/4 : FROM mhart/alpine-node:4\n"}
        raise requests.exceptions.ChunkedEncodingError("Connection broken: IncompleteRead")

    backend.build = lambda context, tag: lines()
    seen: list[str] = []

    with pytest.raises(ImageBuildError) as err:
        _build(backend, settings, artifact, manifest, seen.append)
    assert "IncompleteRead" in err.value.cause
    assert seen == ["Step 1/4 : FROM mhart/alpine-node:4"]


def test_push_read_timeout_is_a_push_error(settings, backend, artifact, manifest) -> None:
    built = _build(backend, settings, artifact, manifest, lambda _: None)
    backend.fail_push = requests.exceptions.ReadTimeout("Read timed out. (read timeout=600)")

    with pytest.raises(PushError) as err:
        RegistryPublisher(backend, settings.registry_url).publish(built, lambda _: None)
    assert "Read timed out" in err.value.cause
