"""package.json validation for extracted bundles.

This is a metadata check only: nothing from the upload is executed.
"""

from __future__ import annotations

import json
from functools import lru_cache
from importlib import resources
from pathlib import Path

from jsonschema import Draft202012Validator
from jsonschema.exceptions import ValidationError

from shipyard.errors import ManifestMissingRunCommand, ManifestUnreadable
from shipyard.logging import get_logger
from shipyard.types import PackageManifest

PACKAGE_JSON = "package.json"

UNREADABLE_MESSAGE = "package.json could not be read.  Ensure it is in your upload."
MISSING_START_MESSAGE = "scripts.start is required in package.json."

log = get_logger("shipyard.validator")

# --- Schema loaders ---------------------------------------------------------


def _load_schema(package: str, resource_name: str) -> dict:
    with resources.files(package).joinpath(resource_name).open("r", encoding="utf-8") as f:
        return json.load(f)


@lru_cache(maxsize=1)
def _package_validator() -> Draft202012Validator:
    return Draft202012Validator(_load_schema("shipyard.schema", "package.schema.json"))


# --- Public validators ------------------------------------------------------


def _is_run_command_error(error: ValidationError) -> bool:
    path = list(error.absolute_path)
    return path[:1] == ["scripts"] or (not path and error.validator == "required")


def _raise_for(error: ValidationError) -> None:
    path = list(error.absolute_path)
    if _is_run_command_error(error):
        raise ManifestMissingRunCommand(MISSING_START_MESSAGE)
    where = ".".join(str(p) for p in path) or "package.json"
    raise ManifestUnreadable(f"{where} is invalid: {error.message}")


def parse_package_manifest(data: object) -> PackageManifest:
    """Check decoded package.json *data* and return it as a typed model."""
    if not isinstance(data, dict):
        raise ManifestUnreadable("package.json must contain a JSON object.")
    # a missing start command wins over any other defect
    errors = sorted(
        _package_validator().iter_errors(data),
        key=lambda e: (not _is_run_command_error(e), len(e.absolute_path)),
    )
    if errors:
        _raise_for(errors[0])
    return PackageManifest.model_validate(data)


def validate_package_manifest(working_dir: Path) -> PackageManifest:
    """Read ``package.json`` from *working_dir* and check it can be started."""
    pj = working_dir / PACKAGE_JSON
    try:
        raw = pj.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        log.info("Unable to read package.json: %s", exc)
        raise ManifestUnreadable(UNREADABLE_MESSAGE) from exc
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        log.info("Unable to parse package.json: %s", exc)
        raise ManifestUnreadable(UNREADABLE_MESSAGE) from exc
    return parse_package_manifest(data)
