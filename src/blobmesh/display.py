"""Rich tables for operation results."""

from typing import List, Optional, Union

from rich.console import Console
from rich.table import Table

from .errors import AllEndpointsFailedError
from .models import EndpointList, EndpointOutcome
from .service_types import (
    AvailabilityReport,
    DeleteResult,
    FallbackListResult,
    ListingResult,
    MirrorResult,
)
from .utils import humanize_size, humanize_timestamp, short_hash


def _status_text(outcome: EndpointOutcome) -> str:
    if outcome.succeeded:
        return "[green]✓ OK[/green]"
    return "[red]✗ Failed[/red]"


def display_outcomes(outcomes: List[EndpointOutcome], console: Console, title: str = "Endpoints"):
    """Show one row per endpoint with its status and failure reason."""
    table = Table(title=title)
    table.add_column("Endpoint", style="cyan")
    table.add_column("Status")
    table.add_column("Category", style="dim")
    table.add_column("Reason")

    for outcome in outcomes:
        category = outcome.category.value if outcome.category else ""
        table.add_row(outcome.endpoint, _status_text(outcome), category, outcome.error or "")
    console.print(table)


def display_failure(error: AllEndpointsFailedError, console: Console):
    """Explain an operation that failed on every endpoint."""
    console.print(f"[red]✗[/red] {error.operation} failed on all {len(error.outcomes)} endpoints")
    display_outcomes(error.outcomes, console, title="Attempts")


def display_endpoints(endpoints: EndpointList, console: Console):
    table = Table(title=f"Endpoints ({len(endpoints)})")
    table.add_column("Rank", justify="right")
    table.add_column("Name", style="cyan")
    table.add_column("URL")

    for rank, endpoint in enumerate(endpoints):
        name = endpoint.display_name
        if rank == 0:
            name += " [dim](primary)[/dim]"
        table.add_row(str(rank), name, endpoint.url)
    console.print(table)


def display_listing(
    result: Union[ListingResult, FallbackListResult],
    console: Console,
    now: Optional[float] = None,
):
    """Display a merged blob listing.

    Args:
        result: Listing from all endpoints, or from the first that answered
        console: Rich console for output
        now: Reference time for relative dates
    """
    if isinstance(result, FallbackListResult):
        total = 1
        source = f"from {result.endpoint}"
    else:
        total = len(result.queried)
        source = f"across {total - len(result.listing_failed)}/{total} endpoints"

    if not result.blobs:
        console.print(f"[dim]No blobs for {result.identity} {source}[/dim]")
    else:
        table = Table(title=f"Blobs ({len(result.blobs)}) {source}")
        table.add_column("Hash", style="cyan")
        table.add_column("Name")
        table.add_column("Type", style="dim")
        table.add_column("Size", justify="right")
        table.add_column("Uploaded")
        table.add_column("Copies", justify="right")

        for blob in result.blobs:
            copies = len(blob.available_on)
            copies_text = f"{copies}/{total}"
            if copies < total:
                copies_text = f"[yellow]{copies_text}[/yellow]"
            table.add_row(
                short_hash(blob.content_hash),
                blob.filename or "",
                blob.mime_type,
                humanize_size(blob.size),
                humanize_timestamp(blob.created_at, now),
                copies_text,
            )
        console.print(table)

    if isinstance(result, ListingResult) and result.listing_failed:
        console.print(f"\n[yellow]⚠ Listing failed on {len(result.listing_failed)} endpoints[/yellow]")
        for outcome in result.listing_failed:
            console.print(f"  {outcome.endpoint}: {outcome.error}")


def display_availability(report: AvailabilityReport, console: Console):
    table = Table(title=f"Availability of {short_hash(report.content_hash)}")
    table.add_column("Endpoint", style="cyan")
    table.add_column("Status")
    table.add_column("Detail", style="dim")

    for url in report.available:
        table.add_row(url, "[green]✓ Available[/green]", "")
    for url in report.unavailable:
        table.add_row(url, "[yellow]— Missing[/yellow]", "")
    for url, error in report.errors.items():
        table.add_row(url, "[red]? Unknown[/red]", error)
    console.print(table)

    targets = report.repair_targets()
    if report.available and targets:
        console.print(f"\n[dim]{len(targets)} endpoints are missing this blob; mirror it with:[/dim]")
        console.print(f"  [cyan]blobmesh mirror {report.available[0]}/{report.content_hash}[/cyan]")


def display_delete(result: DeleteResult, console: Console):
    if result.already_absent:
        console.print(f"[dim]Blob {short_hash(result.content_hash)} was not present on any endpoint[/dim]")
        return

    console.print(f"[green]✓[/green] Deleted {short_hash(result.content_hash)} from {len(result.deleted)} endpoints")
    if result.not_found:
        console.print(f"[dim]  Not present on: {', '.join(result.not_found)}[/dim]")
    failed = [o for o in result.outcomes if not o.succeeded]
    if failed:
        display_outcomes(failed, console, title="Failed deletions")


def display_mirror(result: MirrorResult, console: Console):
    if result.excluded:
        console.print(f"[dim]Skipped source server: {', '.join(result.excluded)}[/dim]")
    if not result.has_targets:
        console.print("[yellow]No other endpoints to mirror to[/yellow]")
        return

    console.print(
        f"[green]✓[/green] Mirrored {short_hash(result.content_hash)} to "
        f"{len(result.succeeded)}/{len(result.outcomes)} endpoints"
    )
    if result.relayed:
        console.print(f"[dim]  Relayed bytes to: {', '.join(result.relayed)}[/dim]")
    if result.failed:
        display_outcomes(result.failed, console, title="Failed mirrors")
