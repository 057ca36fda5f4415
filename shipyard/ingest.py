"""Bounded upload ingestion.

The upload is written chunk by chunk to the request's archive path. The next
chunk is only pulled once the previous one is on disk, so a slow disk slows the
sender down instead of growing a buffer. The byte limit applies to the whole
stream: the first chunk that would cross it is not written and the stream is
not read any further.
"""

from __future__ import annotations

from collections.abc import AsyncIterable
from pathlib import Path

import anyio

from shipyard.errors import IngestIOError, PayloadTooLarge
from shipyard.logging import get_logger
from shipyard.types import WorkingArtifact

log = get_logger("shipyard.ingest")


class BoundedWriter:
    """Async write handle over *path* that refuses to grow past *max_bytes*.

    Use as ``async with BoundedWriter(...) as writer: await writer.write(...)``.
    """

    def __init__(self, path: Path, max_bytes: int) -> None:
        if max_bytes <= 0:
            raise ValueError("max_bytes must be positive")
        self.path = path
        self.max_bytes = max_bytes
        self.written = 0
        self.exceeded = False
        self._file: anyio.AsyncFile[bytes] | None = None

    async def __aenter__(self) -> BoundedWriter:
        try:
            self._file = await anyio.open_file(self.path, "wb")
        except OSError as exc:
            raise IngestIOError(f"Unable to open {self.path} for writing: {exc}") from exc
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def write(self, chunk: bytes) -> int:
        if self._file is None:
            raise IngestIOError(f"Write to closed upload file {self.path}")
        if self.exceeded:
            raise PayloadTooLarge(self._too_large())
        if self.written + len(chunk) > self.max_bytes:
            self.exceeded = True
            raise PayloadTooLarge(self._too_large())
        try:
            await self._file.write(chunk)
        except OSError as exc:
            raise IngestIOError(f"Unable to write upload to {self.path}: {exc}") from exc
        self.written += len(chunk)
        return len(chunk)

    async def aclose(self) -> None:
        if self._file is None:
            return
        f, self._file = self._file, None
        try:
            await f.aclose()
        except OSError as exc:
            raise IngestIOError(f"Unable to flush upload to {self.path}: {exc}") from exc

    def _too_large(self) -> str:
        return f"Upload exceeds the maximum size of {self.max_bytes} bytes"


async def ingest_stream(
    chunks: AsyncIterable[bytes], artifact: WorkingArtifact, max_bytes: int
) -> int:
    """Persist *chunks* to ``artifact.archive_path``; return the byte count.

    On failure the partial file is left in place for cleanup.
    """
    async with BoundedWriter(artifact.archive_path, max_bytes) as writer:
        async for chunk in chunks:
            if chunk:
                await writer.write(chunk)
    log.info(
        "Wrote %d bytes to %s",
        writer.written,
        artifact.archive_path,
        extra=artifact.log_context(),
    )
    return writer.written
