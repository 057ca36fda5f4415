"""Removal of everything a request left on disk.

Each removal stands alone: a failure is logged and the remaining paths are
still removed. Nothing here raises, and missing paths are not errors, so
calling :func:`cleanup` twice is harmless.
"""

from __future__ import annotations

import shutil
from pathlib import Path

from shipyard.logging import get_logger
from shipyard.types import WorkingArtifact

log = get_logger("shipyard.cleanup")


def _unlink(path: Path, ctx: dict[str, str]) -> bool:
    try:
        path.unlink(missing_ok=True)
        return True
    except OSError as exc:
        log.error("Unable to delete temp file at %s: %s", path, exc, extra=ctx)
        return False


def _rmtree(path: Path, ctx: dict[str, str]) -> bool:
    if not path.exists() and not path.is_symlink():
        return True
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
        return True
    except OSError as exc:
        log.error("Unable to remove directory at %s: %s", path, exc, extra=ctx)
        return False


def cleanup(artifact: WorkingArtifact) -> bool:
    """Remove the archive, tar and working directory of *artifact*.

    Returns True when every path is gone afterwards.
    """
    ctx = artifact.log_context()
    results = [
        _unlink(artifact.archive_path, ctx),
        _unlink(artifact.tar_path, ctx),
        _rmtree(artifact.working_dir, ctx),
    ]
    return all(results)
