"""Shared test doubles and bundle builders."""

from __future__ import annotations

import io
import json
import tarfile
import threading
import time
import zipfile
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any, BinaryIO

from docker import errors as docker_errors

VALID_MANIFEST = {"name": "echo-test", "version": "1.0.0", "scripts": {"start": "node index.js"}}


class FakeBackend:
    """In-memory stand-in for the Docker Engine API."""

    def __init__(self) -> None:
        self.images: dict[str, str] = {}
        self.tags: list[tuple[str, str, str]] = []
        self.pushed: list[str] = []
        self.contexts: list[list[str]] = []
        self.build_lines: list[dict[str, Any]] | None = None
        self.push_lines: list[dict[str, Any]] | None = None
        self.build_delay = 0.0
        self.fail_build: Exception | None = None
        self.fail_push: Exception | None = None
        self.tag_result: bool | None = True
        self._lock = threading.Lock()

    def build(self, context: BinaryIO, tag: str):
        if self.fail_build is not None:
            raise self.fail_build
        with tarfile.open(fileobj=io.BytesIO(context.read())) as tar:
            names = sorted(tar.getnames())
        if self.build_delay:
            time.sleep(self.build_delay)
        with self._lock:
            self.contexts.append(names)
            image_id = f"sha256:{len(self.contexts):064x}"
            self.images[tag] = image_id
            self.images[image_id] = image_id
        if self.build_lines is not None:
            return iter(self.build_lines)
        return iter(
            [
                {"stream": "Step 1/4 : FROM mhart/alpine-node:4\n"},
                {"stream": " ---> 1234567890ab\n"},
                {"aux": {"ID": image_id}},
                {"stream": f"Successfully tagged {tag}\n"},
            ]
        )

    def inspect_image(self, image: str) -> dict[str, Any]:
        if image not in self.images:
            raise docker_errors.ImageNotFound(f"No such image: {image}")
        return {"Id": self.images[image]}

    def tag(self, image: str, repository: str, tag: str):
        with self._lock:
            self.tags.append((image, repository, tag))
        return self.tag_result

    def push(self, repository: str, tag: str):
        if self.fail_push is not None:
            raise self.fail_push
        self.pushed.append(f"{repository}:{tag}")
        if self.push_lines is not None:
            return iter(self.push_lines)
        return iter(
            [
                {"status": f"The push refers to repository [{repository}]"},
                {"status": "Pushed", "id": "abc123", "progressDetail": {}},
                {"aux": {"Tag": tag, "Digest": "sha256:feed", "Size": 1024}},
            ]
        )


def make_zip(path: Path, files: dict[str, str | bytes]) -> Path:
    with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as z:
        for name, content in files.items():
            z.writestr(name, content)
    return path


def app_files(manifest: dict | None = VALID_MANIFEST) -> dict[str, str]:
    files = {"index.js": "console.log('hello')\n", "lib/util.js": "module.exports = {}\n"}
    if manifest is not None:
        files["package.json"] = json.dumps(manifest)
    return files


async def chunked(data: bytes, size: int = 1024) -> AsyncIterator[bytes]:
    for i in range(0, len(data), size):
        yield data[i : i + size]
