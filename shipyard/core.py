"""Request-scoped orchestration: ingest → extract → validate → build → publish → cleanup.

One :class:`DeploymentPipeline` is shared by the whole process; every call to
:meth:`DeploymentPipeline.run` owns its own :class:`WorkingArtifact` and
removes it before returning, whatever the outcome.
"""

from __future__ import annotations

from collections.abc import AsyncIterable, Awaitable, Callable
from functools import partial
from typing import TypeVar

import anyio

from shipyard.cleanup import cleanup
from shipyard.config import Settings
from shipyard.errors import ImageBuildError, PushError, ShipyardError
from shipyard.identity import derive_artifact
from shipyard.ingest import ingest_stream
from shipyard.logging import get_logger
from shipyard.package.docker import ImageBackend, ImageBuilder, RegistryPublisher
from shipyard.package.stream import Observer
from shipyard.security.archive import safe_extract_zip
from shipyard.types import BuildOutcome, DeploymentRequest, Stage, WorkingArtifact
from shipyard.validator import validate_package_manifest

log = get_logger("shipyard.core")

T = TypeVar("T")

DISCONNECT_POLL_SECONDS = 1.0

Disconnected = Callable[[], Awaitable[bool]]


class DeploymentPipeline:
    def __init__(
        self,
        settings: Settings,
        backend: ImageBackend,
        limiter: anyio.CapacityLimiter | None = None,
    ) -> None:
        self.settings = settings
        self.builder = ImageBuilder(backend, settings)
        self.publisher = RegistryPublisher(backend, settings.registry_url)
        self._limiter = limiter

    @property
    def limiter(self) -> anyio.CapacityLimiter:
        """Slots for build + push; requests beyond ``max_concurrent_builds`` queue."""
        # created on first use so it belongs to the running event loop
        if self._limiter is None:
            self._limiter = anyio.CapacityLimiter(self.settings.max_concurrent_builds)
        return self._limiter

    def request(self, org: str, env: str, app: str, revision: str) -> DeploymentRequest:
        return DeploymentRequest(
            org=org,
            env=env,
            app=app,
            revision=revision,
            max_upload_bytes=self.settings.max_upload_size,
        )

    async def run(
        self,
        request: DeploymentRequest,
        chunks: AsyncIterable[bytes],
        *,
        observer: Observer | None = None,
        publish: bool = True,
        disconnected: Disconnected | None = None,
    ) -> BuildOutcome:
        """Run every stage for *request* and return the terminal outcome.

        Stage failures come back as a failed :class:`BuildOutcome`; anything
        else propagates. Cleanup runs exactly once in both cases, and also when
        the caller is cancelled.
        """
        artifact: WorkingArtifact | None = None
        try:
            artifact = derive_artifact(request, self.settings.tmp_dir)

            self._enter(Stage.INGESTING, artifact)
            await ingest_stream(chunks, artifact, request.max_upload_bytes)

            self._enter(Stage.EXTRACTING, artifact)
            await anyio.to_thread.run_sync(
                safe_extract_zip, artifact.archive_path, artifact.working_dir
            )

            self._enter(Stage.VALIDATING, artifact)
            manifest = await anyio.to_thread.run_sync(
                validate_package_manifest, artifact.working_dir
            )

            async with self.limiter:
                self._enter(Stage.BUILDING, artifact)
                await anyio.to_thread.run_sync(self.builder.prepare_context, artifact, manifest)
                artifact = await self._blocking(
                    partial(self.builder.submit, artifact, observer),
                    timeout=self.settings.build_timeout,
                    error_cls=ImageBuildError,
                    what="Image build",
                    disconnected=disconnected,
                )

                if publish:
                    self._enter(Stage.PUBLISHING, artifact)
                    artifact = await self._blocking(
                        partial(self.publisher.publish, artifact, observer),
                        timeout=self.settings.push_timeout,
                        error_cls=PushError,
                        what="Image push",
                        disconnected=disconnected,
                    )

            self._enter(Stage.DONE, artifact)
            return BuildOutcome.success(artifact)
        except ShipyardError as exc:
            ctx = artifact.log_context(exc.stage) if artifact else request.log_context()
            log.warning("Deployment failed: %s: %s", exc.code, exc.cause, extra=ctx)
            return BuildOutcome.failure(exc, artifact)
        finally:
            if artifact is not None:
                with anyio.CancelScope(shield=True):
                    await anyio.to_thread.run_sync(cleanup, artifact)

    async def _blocking(
        self,
        fn: Callable[[], T],
        *,
        timeout: float,
        error_cls: type[ShipyardError],
        what: str,
        disconnected: Disconnected | None,
    ) -> T:
        """Run *fn* in a worker thread, giving up on timeout or disconnect.

        A thread that is given up on is left to finish on its own; its result
        is discarded. Whatever *fn* raises is re-raised as is.
        """
        result: T | None = None
        error: Exception | None = None
        abandoned = False

        async def watch(check: Disconnected, scope: anyio.CancelScope) -> None:
            nonlocal abandoned
            while not await check():
                await anyio.sleep(DISCONNECT_POLL_SECONDS)
            abandoned = True
            scope.cancel()

        try:
            with anyio.fail_after(timeout):
                async with anyio.create_task_group() as tg:
                    if disconnected is not None:
                        tg.start_soon(watch, disconnected, tg.cancel_scope)
                    # held until the group exits so it is not wrapped in an ExceptionGroup
                    try:
                        result = await anyio.to_thread.run_sync(fn, abandon_on_cancel=True)
                    except Exception as exc:
                        error = exc
                    tg.cancel_scope.cancel()
        except TimeoutError as exc:
            raise error_cls(f"{what} did not finish within {timeout:g} seconds") from exc

        if abandoned:
            raise error_cls(f"{what} abandoned: client disconnected")
        if error is not None:
            raise error
        return result  # type: ignore[return-value]

    @staticmethod
    def _enter(stage: Stage, artifact: WorkingArtifact) -> None:
        log.info("Stage %s", stage.value, extra=artifact.log_context(stage))
