"""Build-context packaging.

Creates an uncompressed tar of a working directory with member names relative
to its root, which is the layout the Docker build endpoint expects.

Design goals:
- Stable ordering (sorted entries) so identical bundles give identical tars.
- Only regular files and directories; links never leave the working dir.
"""

from __future__ import annotations

import tarfile
from pathlib import Path

from shipyard.errors import BuildContextError


def _as_rel_arcname(root: Path, path: Path) -> str:
    return path.relative_to(root).as_posix()


def create_build_context(working_dir: Path, tar_path: Path) -> Path:
    """Tar *working_dir* into *tar_path* and return *tar_path*."""
    if not working_dir.is_dir():
        raise BuildContextError(f"You cannot tar a file, you must tar a directory: {working_dir}")
    try:
        with tarfile.open(tar_path, "w") as tar:
            for path in sorted(working_dir.rglob("*")):
                if path.is_symlink():
                    continue
                tar.add(path, arcname=_as_rel_arcname(working_dir, path), recursive=False)
    except (OSError, tarfile.TarError) as exc:
        raise BuildContextError(f"Unable to create build context: {exc}") from exc
    return tar_path
