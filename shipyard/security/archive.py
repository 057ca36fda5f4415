"""Safe zip extraction for uploaded bundles.

Guards against common archive attacks:
- Zip Slip (../ traversal)
- Absolute paths
- Symlink members
- Oversized members and zip bombs (per-member, total size and member count caps)

Anything unreadable or unsafe is reported as :class:`CorruptArchive`.
"""

from __future__ import annotations

import os
import shutil
import stat
import zipfile
import zlib
from pathlib import Path, PurePosixPath

from shipyard.errors import CorruptArchive

MAX_MEMBER_BYTES = 128 * 1024 * 1024  # 128 MiB per member
MAX_TOTAL_BYTES = 512 * 1024 * 1024  # 512 MiB per bundle
MAX_MEMBERS = 20_000
_COPY_CHUNK = 1024 * 1024

_READ_ERRORS = (zipfile.BadZipFile, zlib.error, EOFError, NotImplementedError, ValueError)


def _is_within(base: Path, target: Path) -> bool:
    try:
        target.relative_to(base)
        return True
    except ValueError:
        return False


def _member_path(name: str) -> PurePosixPath:
    # Zip names use forward slashes; a backslash is a Windows separator in disguise
    return PurePosixPath(name.replace("\\", "/"))


def safe_extract_zip(
    zip_path: Path,
    dest: Path,
    max_total_bytes: int = MAX_TOTAL_BYTES,
    max_members: int = MAX_MEMBERS,
) -> list[Path]:
    """Extract *zip_path* into *dest* and return the files written.

    Sizes are the ones declared in the central directory; zipfile refuses to
    inflate a member past its declared size, so they bound what is written.
    """
    try:
        dest.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise CorruptArchive(f"Unable to create {dest}: {exc}") from exc
    base = dest.resolve()
    written: list[Path] = []
    total = 0
    try:
        with zipfile.ZipFile(zip_path) as z:
            members = z.infolist()
            if len(members) > max_members:
                raise CorruptArchive(f"Too many members: {len(members)} (limit {max_members})")
            for m in members:
                fn = _member_path(m.filename)
                if fn.is_absolute() or m.filename.startswith("/") or ".." in fn.parts:
                    raise CorruptArchive(f"Unsafe member path: {m.filename}")
                if fn.parts and ":" in fn.parts[0]:
                    raise CorruptArchive(f"Unsafe member path: {m.filename}")
                target = (base / fn).resolve()
                if not _is_within(base, target):
                    raise CorruptArchive(f"Member escapes destination: {m.filename}")
                if m.is_dir() or fn.name in {"", "."}:
                    target.mkdir(parents=True, exist_ok=True)
                    continue
                mode = stat.S_IMODE(m.external_attr >> 16)
                if stat.S_ISLNK(m.external_attr >> 16):
                    raise CorruptArchive(f"Symlink members are not allowed: {m.filename}")
                if m.file_size > MAX_MEMBER_BYTES:
                    raise CorruptArchive(f"Member too large: {m.filename} ({m.file_size} bytes)")
                total += m.file_size
                if total > max_total_bytes:
                    raise CorruptArchive(
                        f"Archive expands past the limit of {max_total_bytes} bytes"
                    )
                target.parent.mkdir(parents=True, exist_ok=True)
                with z.open(m) as src, open(target, "wb") as out:
                    shutil.copyfileobj(src, out, _COPY_CHUNK)
                if mode:
                    # strip setuid/setgid, keep the owner able to read the file back
                    os.chmod(target, (mode & ~stat.S_ISUID & ~stat.S_ISGID) | stat.S_IRUSR)
                written.append(target)
    except _READ_ERRORS as exc:
        raise CorruptArchive(f"Unable to read {zip_path.name}: {exc}") from exc
    except OSError as exc:
        raise CorruptArchive(f"Unable to extract {zip_path.name}: {exc}") from exc
    return written
