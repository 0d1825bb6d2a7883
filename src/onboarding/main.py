"""
Restaurant Onboarding - CLI Entry Point.

Usage:
    onboarding serve             Start the API server
    onboarding validate FILE     Check a draft document (JSON)
    onboarding check             Check configuration and storage
    onboarding --help            Show help
"""

import asyncio
import json
import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

app = typer.Typer(
    name="onboarding",
    help="Restaurant onboarding draft engine.",
    add_completion=False,
)
console = Console()


def setup_logging(level: str) -> None:
    """Route library logs through rich."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


@app.callback()
def main() -> None:
    from onboarding.config import settings

    setup_logging(settings.log_level)


@app.command()
def serve(
    port: int = typer.Option(8000, "--port", "-p", help="Port to run on"),
    reload: bool = typer.Option(False, "--reload", "-r", help="Enable auto-reload for development"),
) -> None:
    """Start the API server."""
    import os

    import uvicorn

    actual_port = int(os.environ.get("PORT", port))

    console.print("\n[bold green]Restaurant Onboarding API[/bold green]")
    console.print(f"Starting server on http://localhost:{actual_port}")
    console.print("[dim]Press Ctrl+C to stop[/dim]\n")

    uvicorn.run(
        "onboarding.app:app",
        host="0.0.0.0",
        port=actual_port,
        reload=reload,
    )


@app.command()
def validate(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Draft document (JSON)"),
    min_groups: int | None = typer.Option(None, "--min-groups", help="Override the minimum menu group count"),
) -> None:
    """Run the partition check and every step validation on a draft document."""
    from onboarding.config import settings
    from onboarding.consistency import check_partition
    from onboarding.models import Draft
    from onboarding.submission import SUBMITTED_STEPS
    from onboarding.sections import validate_step

    try:
        document = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        console.print(f"[red]Not valid JSON: {e}[/red]")
        raise typer.Exit(2)

    draft = Draft.from_document(document)
    groups_needed = min_groups if min_groups is not None else settings.min_menu_groups

    partition = check_partition(draft.locations, draft.groups, draft.same_menu_for_all, groups_needed)
    console.print(f"\n[bold]Draft[/bold] {draft.owner_id or '(no owner)'}")
    for group in partition.effective_groups:
        members = ", ".join(sorted(group.location_names)) or "-"
        console.print(f"  [cyan]{group.name}[/cyan]: {members}")

    table = Table(title="Step validation")
    table.add_column("Step")
    table.add_column("Status")
    table.add_column("Violations")

    failed = False
    for step in SUBMITTED_STEPS:
        ok, violations = validate_step(step, draft, groups_needed)
        failed = failed or not ok
        status = "[green]OK[/green]" if ok else "[red]FAIL[/red]"
        table.add_row(step.value, status, "\n".join(violations))

    console.print(table)
    if failed:
        raise typer.Exit(1)


@app.command()
def check() -> None:
    """Check configuration and storage connectivity."""
    from onboarding.config import get_settings
    from onboarding.db.client import get_adapter

    console.print("\n[bold]Onboarding Health Check[/bold]\n")

    try:
        settings = get_settings()
        console.print("[green]OK[/green] Configuration loaded")
        console.print(f"   Environment: {settings.onboarding_env}")
        console.print(f"   Storage backend: {settings.storage_backend}")
        console.print(f"   Notification service: {settings.notification_service_url}")

        adapter = get_adapter()
        asyncio.run(adapter.get_document(settings.forms_collection, "__healthcheck__"))
        console.print(f"[green]OK[/green] Read from '{settings.forms_collection}'")

        console.print("\n[green]All checks passed![/green]")

    except Exception as e:
        console.print(f"\n[red]FAIL {e}[/red]")
        console.print("[dim]Make sure you have a .env file with required variables.[/dim]")
        raise typer.Exit(1)


@app.command()
def version() -> None:
    """Show version information."""
    from onboarding import __version__

    console.print(f"Restaurant Onboarding version {__version__}")


if __name__ == "__main__":
    app()
