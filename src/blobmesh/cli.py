"""CLI for blobmesh."""

import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

import typer
from rich.console import Console
from rich.logging import RichHandler

from .config import Settings, default_config_path, load_settings
from .constants import BLOBMESH_VERSION
from .display import (
    display_availability,
    display_delete,
    display_endpoints,
    display_failure,
    display_listing,
    display_mirror,
    display_outcomes,
)
from .endpoints import normalize
from .engine import BlobTransferEngine
from .errors import AllEndpointsFailedError, BlobMeshError, ConfigError
from .models import NoEndpoints
from .utils import guess_content_type, humanize_size, short_hash

T = TypeVar("T")

app = typer.Typer(help="""\
Store and retrieve content-addressed blobs redundantly across several
independent blob servers. Upload everywhere, list across servers, repair
missing copies by mirroring.""")

console = Console()


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, console=console, show_path=False)],
        force=True,
    )


def build_engine(settings: Settings) -> BlobTransferEngine:
    """Create the engine for one command."""
    return BlobTransferEngine.from_settings(settings)


def _no_endpoints_hint(reason: str) -> None:
    console.print(f"[yellow]{reason}[/yellow]")
    console.print()
    console.print("Add blob servers to your settings file:")
    console.print(f"  [cyan]{default_config_path()}[/cyan]")
    console.print("[dim]  endpoints:\n    - https://blossom.example.com[/dim]")
    console.print()
    console.print("or pass them per command:")
    console.print("  [cyan]blobmesh -s https://blossom.example.com list[/cyan]")


def require_settings(ctx: typer.Context) -> Settings:
    """Load settings and apply ``--endpoint`` overrides.

    Raises:
        typer.Exit: If the settings file is invalid
    """
    try:
        settings = load_settings()
    except ConfigError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(1)

    overrides: List[str] = (ctx.obj or {}).get("endpoints") or []
    if overrides:
        settings = settings.model_copy(update={"endpoints": overrides})
    return settings


def run_operation(
    ctx: typer.Context,
    operation: Callable[[BlobTransferEngine, Settings], Awaitable[T]],
) -> T:
    """Run one engine operation and turn failures into exit codes."""
    settings = require_settings(ctx)

    async def main() -> T:
        async with build_engine(settings) as engine:
            return await operation(engine, settings)

    try:
        result = asyncio.run(main())
    except AllEndpointsFailedError as e:
        display_failure(e, console)
        raise typer.Exit(1)
    except BlobMeshError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(1)

    if isinstance(result, NoEndpoints):
        _no_endpoints_hint(result.reason)
        raise typer.Exit(1)
    return result


def require_identity(settings: Settings, identity: Optional[str]) -> str:
    identity = identity or settings.identity
    if not identity:
        console.print("[red]✗[/red] No identity given")
        console.print("[dim]Hint: pass one, or set identity in the settings file (or BLOBMESH_IDENTITY)[/dim]")
        raise typer.Exit(1)
    return identity


def version_callback(value: bool):
    if value:
        console.print(f"blobmesh {BLOBMESH_VERSION}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    endpoint: Optional[List[str]] = typer.Option(
        None, "--endpoint", "-s", help="Blob server URL (repeatable, in rank order); overrides settings"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
    version: Optional[bool] = typer.Option(
        None, "--version", callback=version_callback, is_eager=True, help="Show version and exit"
    ),
):
    setup_logging(verbose)
    ctx.obj = {"endpoints": endpoint or []}


@app.command()
def endpoints(ctx: typer.Context):
    """Show the normalized endpoint list in rank order."""
    settings = require_settings(ctx)
    try:
        snapshot = normalize(settings.endpoints)
    except BlobMeshError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(1)

    if isinstance(snapshot, NoEndpoints):
        _no_endpoints_hint(snapshot.reason)
        raise typer.Exit(1)
    display_endpoints(snapshot, console)


@app.command()
def upload(
    ctx: typer.Context,
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="File to upload"),
    mode: str = typer.Option("all", "--mode", "-m", help="'all' (every server) or 'fallback' (first that accepts)"),
):
    """Upload a file.

    Examples:
        blobmesh upload photo.jpg                  # Store on every server
        blobmesh upload photo.jpg --mode fallback  # Primary first, then the next
    """
    if mode not in ("all", "fallback"):
        console.print(f"[red]✗[/red] Unknown mode '{mode}' (expected 'all' or 'fallback')")
        raise typer.Exit(1)

    data = file.read_bytes()
    content_type = guess_content_type(file)
    console.print(f"[bold]Uploading {file.name}[/bold] ({humanize_size(len(data))})")

    if mode == "fallback":
        result = run_operation(
            ctx,
            lambda engine, s: engine.upload_with_fallback(
                data, s.endpoints, s.identity_method, content_type=content_type
            ),
        )
        console.print(f"[green]✓[/green] Stored on {result.endpoint}")
        if len(result.attempts) > 1:
            display_outcomes(result.attempts, console, title="Attempts")
        console.print(f"[dim]URL: {result.result.url}[/dim]")
        return

    result = run_operation(
        ctx,
        lambda engine, s: engine.upload_to_all(
            data, s.endpoints, s.identity_method, content_type=content_type, filename=file.name
        ),
    )
    total = len(result.outcomes)
    if result.fully_replicated:
        console.print(f"[green]✓[/green] Stored on all {total} servers")
    else:
        console.print(f"[yellow]⚠[/yellow] Stored on {len(result.succeeded)}/{total} servers")
        display_outcomes(result.failed, console, title="Failed uploads")
    console.print(f"[dim]Hash: {result.content_hash}[/dim]")
    console.print(f"[dim]URL:  {result.primary.url}[/dim]")


@app.command("list")
def list_cmd(
    ctx: typer.Context,
    identity: Optional[str] = typer.Argument(None, help="Identity whose blobs to list (default: from settings)"),
    fallback: bool = typer.Option(False, "--fallback", help="Ask servers in rank order, stop at the first answer"),
):
    """List blobs across servers."""

    async def op(engine: BlobTransferEngine, s: Settings) -> Any:
        who = require_identity(s, identity)
        if fallback:
            return await engine.list_with_fallback(who, s.endpoints, s.identity_method)
        return await engine.list_from_all(who, s.endpoints, s.identity_method)

    result = run_operation(ctx, op)
    display_listing(result, console)


@app.command()
def delete(
    ctx: typer.Context,
    content_hash: str = typer.Argument(..., metavar="HASH", help="sha256 of the blob to delete"),
):
    """Delete a blob from every server."""
    result = run_operation(
        ctx, lambda engine, s: engine.delete_everywhere(content_hash, s.endpoints, s.identity_method)
    )
    display_delete(result, console)


@app.command()
def mirror(
    ctx: typer.Context,
    url: str = typer.Argument(..., help="URL of the blob to copy"),
    target: Optional[str] = typer.Option(None, "--target", "-t", help="Copy to this server only"),
):
    """Copy a blob from one server to the others.

    Servers on the same origin as URL are skipped.
    """
    if target:
        response = run_operation(ctx, lambda engine, s: engine.mirror_to_endpoint(url, target, s.identity_method))
        console.print(f"[green]✓[/green] Mirrored {short_hash(response.content_hash)} to {target}")
        console.print(f"[dim]URL: {response.url}[/dim]")
        return

    result = run_operation(ctx, lambda engine, s: engine.mirror_to_all(url, s.endpoints, s.identity_method))
    display_mirror(result, console)


@app.command()
def probe(
    ctx: typer.Context,
    content_hash: str = typer.Argument(..., metavar="HASH", help="sha256 of the blob to look for"),
):
    """Check which servers hold a blob."""
    report = run_operation(ctx, lambda engine, s: engine.probe_availability(content_hash, s.endpoints))
    display_availability(report, console)


@app.command()
def fetch(
    ctx: typer.Context,
    url: str = typer.Argument(..., help="Blob URL"),
    out: Path = typer.Option(..., "--out", "-o", help="Where to write the blob"),
):
    """Download a blob, trying the other servers if URL fails."""
    blob = run_operation(ctx, lambda engine, s: engine.fetch_with_fallback(url, s.endpoints))
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(blob.data)
    console.print(f"[green]✓[/green] Wrote {humanize_size(len(blob.data))} to {out}")
    if blob.url != url:
        console.print(f"[dim]Served by fallback {blob.url}[/dim]")


if __name__ == "__main__":
    app()
