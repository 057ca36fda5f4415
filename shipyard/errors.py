"""Failure taxonomy for the build-and-publish pipeline.

Each error belongs to the stage that detects it. The pipeline stops at the
first one raised and reports it; none is retried.
"""

from __future__ import annotations

from typing import Any, ClassVar

from shipyard.types import Stage


class ShipyardError(Exception):
    stage: ClassVar[Stage] = Stage.RECEIVED
    status_code: ClassVar[int] = 500

    def __init__(self, cause: str) -> None:
        super().__init__(cause)
        self.cause = cause

    @property
    def code(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "stage": self.stage.value, "cause": self.cause}


class InvalidIdentity(ShipyardError):
    stage = Stage.RECEIVED
    status_code = 400


# --- ingest -------------------------------------------------------------------


class PayloadTooLarge(ShipyardError):
    stage = Stage.INGESTING
    status_code = 500


class IngestIOError(ShipyardError):
    stage = Stage.INGESTING
    status_code = 500


# --- extract / validate ----------------------------------------------------------


class CorruptArchive(ShipyardError):
    stage = Stage.EXTRACTING
    status_code = 400


class ManifestUnreadable(ShipyardError):
    stage = Stage.VALIDATING
    status_code = 400


class ManifestMissingRunCommand(ShipyardError):
    stage = Stage.VALIDATING
    status_code = 400


# --- build ----------------------------------------------------------------------


class BuildContextError(ShipyardError):
    stage = Stage.BUILDING
    status_code = 400


class ImageBuildError(ShipyardError):
    stage = Stage.BUILDING
    status_code = 400


# --- publish --------------------------------------------------------------------


class ImageNotFound(ShipyardError):
    stage = Stage.PUBLISHING
    status_code = 502


class TagError(ShipyardError):
    stage = Stage.PUBLISHING
    status_code = 502


class PushError(ShipyardError):
    stage = Stage.PUBLISHING
    status_code = 502
