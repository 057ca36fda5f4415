from __future__ import annotations

from pathlib import Path

import pytest

from shipyard.config import Settings
from tests.helpers import FakeBackend, app_files, make_zip


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def work_dir(tmp_path: Path) -> Path:
    d = tmp_path / "work"
    d.mkdir()
    return d


@pytest.fixture
def settings(work_dir: Path) -> Settings:
    return Settings(
        _env_file=None,
        tmp_dir=work_dir,
        registry_url="registry.example.com:5000",
        max_upload_size=1024 * 1024,
        build_timeout=30,
        push_timeout=30,
    )


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def valid_zip(tmp_path: Path) -> Path:
    return make_zip(tmp_path / "echo-test.zip", app_files())
