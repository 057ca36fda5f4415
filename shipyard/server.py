"""HTTP surface (Starlette).

Routes:
- ``GET /v1/heartbeat`` liveness
- ``PUT /v1/buildnodejs/{org}/{env}/{app}`` raw zip body, revision in the
  ``x-apigee-script-container-rev`` header
"""

from __future__ import annotations

from collections.abc import AsyncIterator

from starlette.applications import Starlette
from starlette.requests import ClientDisconnect, Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from shipyard.config import Settings, get_settings
from shipyard.core import DeploymentPipeline
from shipyard.errors import IngestIOError, PayloadTooLarge, ShipyardError
from shipyard.logging import configure_logging, get_logger
from shipyard.package.docker import DockerBackend, ImageBackend
from shipyard.types import BuildResponse, ErrorResponse, Stage

REVISION_HEADER = "x-apigee-script-container-rev"

log = get_logger("shipyard.server")

_STAGE_MESSAGES = {
    Stage.INGESTING: "Unable to accept zip file. {cause}",
    Stage.EXTRACTING: "Unable to extract zip file.  Ensure you have a valid zip file.",
    Stage.VALIDATING: "Unable to validate node application. {cause}",
    Stage.BUILDING: "Unable to create docker container. {cause}",
    Stage.PUBLISHING: "Unable to tag and push the docker container. {cause}",
}


def error_response(exc: ShipyardError) -> JSONResponse:
    template = _STAGE_MESSAGES.get(exc.stage, "{cause}")
    body = ErrorResponse(
        code=exc.code, stage=exc.stage.value, message=template.format(cause=exc.cause)
    )
    return JSONResponse(body.model_dump(), status_code=exc.status_code)


def bad_request(message: str) -> JSONResponse:
    body = ErrorResponse(code="BadRequest", stage=Stage.RECEIVED.value, message=message)
    return JSONResponse(body.model_dump(), status_code=400)


async def _body(request: Request) -> AsyncIterator[bytes]:
    try:
        async for chunk in request.stream():
            if chunk:
                yield chunk
    except ClientDisconnect as exc:
        raise IngestIOError("Client disconnected during upload") from exc


def _declared_length(request: Request) -> int | None:
    raw = request.headers.get("content-length")
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


async def heartbeat(request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok"})


async def build_nodejs(request: Request) -> JSONResponse:
    pipeline: DeploymentPipeline = request.app.state.pipeline
    settings: Settings = request.app.state.settings

    for label in ("org", "env", "app"):
        if not request.path_params.get(label, "").strip():
            return bad_request(f"You must specify an {label} name")
    revision = request.headers.get(REVISION_HEADER, "").strip()
    if not revision:
        return bad_request(f"You must specify a version in {REVISION_HEADER} header")

    deployment = pipeline.request(
        request.path_params["org"], request.path_params["env"], request.path_params["app"], revision
    )

    declared = _declared_length(request)
    if declared is not None and declared > deployment.max_upload_bytes:
        log.warning(
            "Rejected upload of %d bytes before reading it",
            declared,
            extra=deployment.log_context(),
        )
        return error_response(
            PayloadTooLarge(
                f"Upload exceeds the maximum size of {deployment.max_upload_bytes} bytes"
            )
        )

    outcome = await pipeline.run(
        deployment, _body(request), disconnected=request.is_disconnected
    )
    if outcome.error is not None:
        return error_response(outcome.error)

    container_id = outcome.artifact.remote_tag if outcome.artifact else None
    return JSONResponse(
        BuildResponse(endpoint=settings.endpoint, containerId=container_id).model_dump()
    )


def create_app(
    settings: Settings | None = None, backend: ImageBackend | None = None
) -> Starlette:
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    backend = backend or DockerBackend.from_settings(settings)

    app = Starlette(
        routes=[
            Route("/v1/heartbeat", heartbeat, methods=["GET"]),
            Route("/v1/buildnodejs/{org}/{env}/{app}", build_nodejs, methods=["PUT"]),
        ]
    )
    app.state.settings = settings
    app.state.pipeline = DeploymentPipeline(settings, backend)
    return app
