"""Thin CLI wrapper for ci_server.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import asyncio
import json
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ci_server import __version__
from ci_server.config import get_settings, print_settings_json

app = typer.Typer(
    name="ci-server",
    help="CI Server - verify pull requests and report their status",
    no_args_is_help=True,
)
console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"ci-server version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """CI Server - verify pull requests and report their status."""


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(print_settings_json(settings), soft_wrap=True)
        return

    secret_display = "set" if settings.secret.get_secret_value() else "(not set)"
    token_display = "set" if settings.oauth_token.get_secret_value() else "(not set)"
    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Server:[/bold]")
    console.print(f"  Listen address:      {settings.bind_host}:{settings.bind_port}")
    console.print(f"  Public endpoint:     {settings.endpoint}")
    console.print(f"  Webhook secret:      {secret_display}")
    console.print(f"  OAuth token:         {token_display}")
    console.print(f"  Log level:           {settings.log_level}")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Build storage:       {settings.storage_path}")
    console.print(f"  Checkout:            {settings.checkout_dir}")
    console.print()
    console.print("[bold]Steps:[/bold]")
    console.print(f"  Enabled steps:       {', '.join(settings.steps) or '(none)'}")
    console.print()
    console.print("[bold]Timeouts (seconds):[/bold]")
    console.print(f"  Command timeout:     {settings.command_timeout}")
    console.print(f"  Diff timeout:        {settings.diff_timeout}")
    console.print(f"  Status timeout:      {settings.status_timeout}")
    console.print(f"  Compile timeout:     {settings.compile_timeout}")
    console.print(f"  Test timeout:        {settings.test_timeout}")


@app.command()
def serve(
    host: Annotated[
        str | None,
        typer.Option("--host", help="Interface to listen on"),
    ] = None,
    port: Annotated[
        int | None,
        typer.Option("--port", "-p", help="Port to listen on"),
    ] = None,
) -> None:
    """Run the webhook and build log server."""
    import uvicorn

    from ci_server.logging_setup import configure_logging
    from ci_server.steps import UnknownStepError, resolve_steps
    from web.app import create_app

    settings = get_settings()
    configure_logging(settings.log_level)

    try:
        resolve_steps(settings.steps)
    except UnknownStepError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1) from None

    if not settings.secret.get_secret_value():
        console.print("[yellow]Warning:[/yellow] no webhook secret configured")

    uvicorn.run(
        create_app(settings),
        host=host or settings.bind_host,
        port=port or settings.bind_port,
        log_config=None,
    )


@app.command()
def sign(
    path: Annotated[Path, typer.Argument(help="Payload file to sign")],
) -> None:
    """Print the X-Hub-Signature header value for a payload."""
    from ci_server.authentication import compute_signature

    settings = get_settings()
    try:
        body = path.read_bytes()
    except OSError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1) from None

    console.print(compute_signature(settings.secret.get_secret_value(), body), soft_wrap=True)


builds_app = typer.Typer(help="Inspect build records")
app.add_typer(builds_app, name="builds")


@builds_app.command("list")
def builds_list(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List the most recent builds."""
    from ci_server.builds.storage import BuildStorage

    storage = BuildStorage(get_settings().storage_path)
    builds = storage.scan_latest_builds()

    if json_output:
        console.print(json.dumps([b.to_dict() for b in builds], indent=2), soft_wrap=True)
        return

    if not builds:
        console.print("No builds found.")
        return

    table = Table(title="Most recent builds")
    table.add_column("Date")
    table.add_column("SHA")
    table.add_column("Author")
    table.add_column("Title")
    for build in builds:
        table.add_row(build.date, build.sha[:12], build.author, build.title)
    console.print(table)


@builds_app.command("show")
def builds_show(
    sha: Annotated[str, typer.Argument(help="Commit sha of the build")],
    step: Annotated[
        str | None,
        typer.Option("--step", "-s", help="Show the log of this step"),
    ] = None,
) -> None:
    """Show the log of a build, or of one of its steps."""
    from ci_server.builds.storage import BuildStorage, step_slots

    storage = BuildStorage(get_settings().storage_path)
    record = asyncio.run(storage.get_build(sha))
    if record is None:
        console.print(f"[red]Error:[/red] Build not found: {sha}")
        raise typer.Exit(code=1)

    slot = step or "log"
    if slot not in record:
        console.print(f"[red]Error:[/red] No log '{slot}' for build {sha}")
        console.print(f"Available: {', '.join(step_slots(record))}")
        raise typer.Exit(code=1)

    title = escape(str(record.get("title", "")))
    author = escape(str(record.get("author", "")))
    console.print(f"[bold]{title}[/bold] by {author}")
    console.print(f"Slots: {', '.join(['log', *step_slots(record)])}")
    console.print()
    console.print(record[slot], markup=False, highlight=False)


if __name__ == "__main__":
    app()
