from __future__ import annotations

import logging
import shutil
from pathlib import Path

from shipyard.cleanup import cleanup
from shipyard.identity import derive_artifact
from shipyard.types import DeploymentRequest


def _populated(tmp_path: Path):
    artifact = derive_artifact(DeploymentRequest("o", "e", "a", "1", 100), tmp_path)
    artifact.archive_path.write_bytes(b"zip")
    artifact.tar_path.write_bytes(b"tar")
    (artifact.working_dir / "nested").mkdir(parents=True)
    (artifact.working_dir / "nested" / "f.js").write_text("x", encoding="utf-8")
    return artifact


def test_cleanup_removes_everything(tmp_path: Path) -> None:
    artifact = _populated(tmp_path)

    assert cleanup(artifact) is True

    assert list(tmp_path.iterdir()) == []


def test_cleanup_is_idempotent(tmp_path: Path) -> None:
    artifact = _populated(tmp_path)

    assert cleanup(artifact) is True
    assert cleanup(artifact) is True
    assert list(tmp_path.iterdir()) == []


def test_cleanup_of_never_created_artifact(tmp_path: Path) -> None:
    artifact = derive_artifact(DeploymentRequest("o", "e", "a", "1", 100), tmp_path)

    assert cleanup(artifact) is True


def test_failed_removal_is_logged_and_others_still_removed(
    tmp_path: Path, monkeypatch, caplog
) -> None:
    artifact = _populated(tmp_path)

    def refuse(path, *args, **kwargs):
        raise PermissionError(f"refusing to remove {path}")

    monkeypatch.setattr(shutil, "rmtree", refuse)

    with caplog.at_level(logging.ERROR, logger="shipyard.cleanup"):
        assert cleanup(artifact) is False

    assert not artifact.archive_path.exists()
    assert not artifact.tar_path.exists()
    assert artifact.working_dir.exists()
    assert "Unable to remove directory" in caplog.text
