"""shipyard CLI: serve the build API or run its stages by hand.

Commands:
- serve       run the HTTP service under uvicorn
- validate    extract a bundle and check its package.json
- build       run the full pipeline on a local zip (--no-push to stop after build,
              --json for machine-readable output)
- dockerfile  print the Dockerfile generated for bundles without one
"""

from __future__ import annotations

import json
import shutil
import tempfile
from collections.abc import AsyncIterator
from pathlib import Path

import anyio
import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from shipyard.buildpacks.node import determine_base_image, render_dockerfile
from shipyard.config import get_settings
from shipyard.core import DeploymentPipeline
from shipyard.errors import ShipyardError
from shipyard.logging import configure_logging
from shipyard.package.docker import DockerBackend
from shipyard.security.archive import safe_extract_zip
from shipyard.validator import validate_package_manifest

app = typer.Typer(add_completion=False, help="Build Node.js bundles into container images")
console = Console()

_READ_CHUNK = 64 * 1024


@app.command()
def serve(
    host: str | None = typer.Option(None, "--host", help="Bind address (default from settings)"),
    port: int | None = typer.Option(None, "--port", help="Port (default from settings)"),
) -> None:
    import uvicorn

    from shipyard.server import create_app

    settings = get_settings()
    uvicorn.run(
        create_app(settings),
        host=host or settings.host,
        port=port or settings.port,
        log_level=settings.log_level.lower(),
    )


@app.command()
def validate(bundle: str = typer.Argument(..., help="Path to the zip bundle")) -> None:
    tmp_root = Path(tempfile.mkdtemp(prefix="shipyard-validate-"))
    try:
        safe_extract_zip(Path(bundle), tmp_root)
        manifest = validate_package_manifest(tmp_root)
    except ShipyardError as exc:
        rprint(f"[red]{exc.code}:[/red] {exc.cause}")
        raise typer.Exit(code=1) from exc
    finally:
        shutil.rmtree(tmp_root, ignore_errors=True)
    rprint(manifest.model_dump_json(indent=2))


async def _read_file(path: Path) -> AsyncIterator[bytes]:
    async with await anyio.open_file(path, "rb") as f:
        while chunk := await f.read(_READ_CHUNK):
            yield chunk


@app.command()
def build(
    bundle: str = typer.Argument(..., help="Path to the zip bundle"),
    org: str = typer.Option(..., "--org", help="Organization"),
    env: str = typer.Option(..., "--env", help="Environment"),
    app_name: str = typer.Option(..., "--app", help="Application"),
    revision: str = typer.Option(..., "--revision", help="Revision to tag the image with"),
    no_push: bool = typer.Option(False, "--no-push", help="Stop after the local build"),
    as_json: bool = typer.Option(
        False, "--json", help="Print the outcome as JSON instead of a table"
    ),
) -> None:
    if not Path(bundle).is_file():
        rprint(f"[red]No such bundle:[/red] {bundle}")
        raise typer.Exit(code=2)
    settings = get_settings()
    configure_logging(settings.log_level)
    pipeline = DeploymentPipeline(settings, DockerBackend.from_settings(settings))
    request = pipeline.request(org, env, app_name, revision)

    def echo(line: str) -> None:
        console.print(line, markup=False, highlight=False)

    async def _run():
        # in JSON mode build output goes to the log so stdout stays parseable
        return await pipeline.run(
            request,
            _read_file(Path(bundle)),
            observer=None if as_json else echo,
            publish=not no_push,
        )

    outcome = anyio.run(_run)

    if as_json:
        print(json.dumps(outcome.to_dict(), indent=2))
        if not outcome.ok:
            raise typer.Exit(code=1)
        return

    table = Table(title="Build Summary")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("stage", outcome.stage.value)
    if outcome.artifact is not None:
        table.add_row("container tag", outcome.artifact.container_tag)
        table.add_row("image id", outcome.artifact.image_id or "-")
        table.add_row("remote tag", outcome.artifact.remote_tag or "-")
    if outcome.error is not None:
        table.add_row("failed at", outcome.error.stage.value)
        table.add_row("error", f"{outcome.error.code}: {outcome.error.cause}")
    console.print(table)
    if not outcome.ok:
        raise typer.Exit(code=1)


@app.command()
def dockerfile(
    runtime: str = typer.Option("node", "--runtime", help='"node" or "node:<tag>"'),
    org: str = typer.Option("org", "--org"),
    env: str = typer.Option("env", "--env"),
    app_name: str = typer.Option("app", "--app"),
    revision: str = typer.Option("1", "--revision"),
    env_vars: list[str] | None = typer.Option(
        None, "--env-var", help="KEY=VAL baked into the image", show_default=False
    ),
) -> None:
    settings = get_settings()
    try:
        base_image = determine_base_image(
            runtime, settings.node_base_image, settings.node_image_repo
        )
        text = render_dockerfile(
            base_image,
            repo=f"{org}_{env}".lower(),
            app=app_name.lower(),
            revision=revision,
            env_vars=env_vars or [],
        )
    except ShipyardError as exc:
        rprint(f"[red]{exc.cause}[/red]")
        raise typer.Exit(code=1) from exc
    print(text, end="")


if __name__ == "__main__":
    app()
