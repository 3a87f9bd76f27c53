"""Command-line interface for gyazobridge."""

import asyncio
import logging
import signal
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.prompt import Prompt
from rich.table import Table

from gyazobridge import __version__
from gyazobridge.core.config import AppConfig, load_config
from gyazobridge.core.deletion import DeletionDecision, ImageDeletionWorkflow
from gyazobridge.core.errors import ConfigurationError, ContentFormatError, GyazoBridgeError
from gyazobridge.core.scheduler import PeriodicSyncScheduler
from gyazobridge.core.sync import GyazoSyncEngine, SyncResult
from gyazobridge.sources.gyazo import GyazoClient
from gyazobridge.sources.notes import NoteStore
from gyazobridge.utils.credentials import CredentialStore
from gyazobridge.utils.db import SyncStateDB
from gyazobridge.utils.logging import setup_logging

# Create Typer app
app = typer.Typer(
    name="gyazobridge",
    help="Synchronize Gyazo images into a markdown notes vault",
    add_completion=False,
)

# Create console for rich output
console = Console()


def _notice(message: str) -> None:
    console.print(f"[cyan]{message}[/cyan]")


def _build_engine(cfg: AppConfig) -> GyazoSyncEngine:
    return GyazoSyncEngine(config=cfg.gyazo, db_path=cfg.state_db_path)


def _format_ms(value: float) -> str:
    if not value:
        return "Never"
    return datetime.fromtimestamp(value / 1000).strftime("%Y-%m-%d %H:%M:%S")


def _print_result(result: SyncResult) -> None:
    if result.status != "completed":
        console.print(f"[yellow]{result.summary}[/yellow]")
        return

    table = Table(title="Gyazo Sync Summary")
    table.add_column("Operation", style="cyan")
    table.add_column("Count", style="green", justify="right")
    table.add_row("Images fetched", str(result.fetched))
    table.add_row("Pages fetched", str(result.pages_fetched))
    table.add_row("Created", str(result.created))
    table.add_row("Updated", str(result.updated))
    table.add_row("Unchanged", str(result.unchanged))
    table.add_row("Skipped", str(result.skipped))
    if result.force_deleted:
        table.add_row("Deleted (force refetch)", str(result.force_deleted))
    if result.deletions:
        table.add_row("Deleted (removed on Gyazo)", str(len(result.deletions.deleted_notes)))
        table.add_row("Flagged (removed on Gyazo)", str(len(result.deletions.flagged_notes)))
    console.print(table)


@app.callback()
def main(
    ctx: typer.Context,
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file",
        exists=True,
        dir_okay=False,
    ),
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        "-l",
        help="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    ),
) -> None:
    """gyazobridge - Sync Gyazo images into markdown notes."""
    ctx.ensure_object(dict)
    cfg = load_config(config_file)
    ctx.obj["config"] = cfg
    setup_logging(cfg, level_name=log_level, console=console)


@app.command()
def version() -> None:
    """Show version information."""
    import platform

    table = Table(title="gyazobridge Version Information")
    table.add_column("Property", style="cyan", no_wrap=True)
    table.add_column("Value", style="green")

    table.add_row("Version", __version__)
    table.add_row("Python", platform.python_version())
    table.add_row("Platform", platform.platform())

    console.print(table)


@app.command()
def config(
    ctx: typer.Context,
    show: bool = typer.Option(False, "--show", "-s", help="Show current configuration"),
    init: bool = typer.Option(False, "--init", "-i", help="Create a default configuration file"),
) -> None:
    """Manage configuration."""
    cfg: AppConfig = ctx.obj["config"]

    if init:
        config_path = cfg.general.config_file or cfg.default_config_path

        if config_path.exists():
            console.print(f"[yellow]Config file already exists:[/yellow] {config_path}")
            if not typer.confirm("Overwrite existing config?"):
                console.print("[dim]Config creation cancelled[/dim]")
                raise typer.Exit(0)

        cfg.save_to_file(config_path)
        console.print(f"[green]✓ Config file created:[/green] {config_path}")
        console.print("[yellow]Edit this file to set your vault path, then run 'gyazobridge set-token'.[/yellow]")
        return

    if show:
        gyazo = cfg.gyazo
        table = Table(title="gyazobridge Configuration")
        table.add_column("Setting", style="cyan", no_wrap=True)
        table.add_column("Value", style="green")

        table.add_row("Data Directory", str(cfg.general.data_dir))
        table.add_row("Config File", str(cfg.general.config_file or "Not set"))
        table.add_row("Log Level", cfg.general.log_level)
        table.add_row("", "")
        table.add_row("[bold]Gyazo[/bold]", "")
        table.add_row("Access Token", "✓ configured" if gyazo.get_access_token() else "✗ not set")
        table.add_row("Vault", str(gyazo.vault_path))
        table.add_row("Save Directory", gyazo.save_directory)
        table.add_row(
            "Fetch Interval",
            f"every {gyazo.fetch_interval}h" if gyazo.fetch_interval else "disabled",
        )
        table.add_row("Max Images per Run", str(gyazo.max_images_to_fetch))
        table.add_row("Detect Deleted Images", "✓" if gyazo.detect_deleted_images else "✗")
        table.add_row("Delete Notes of Deleted Images", "✓" if gyazo.delete_notes_for_deleted_images else "✗")

        console.print(table)
    else:
        console.print(f"[yellow]Configuration file:[/yellow] {cfg.general.config_file or 'Not set'}")
        console.print(f"[yellow]Data directory:[/yellow] {cfg.general.data_dir}")
        console.print("\n[dim]Use --show to display full configuration[/dim]")
        console.print("[dim]Use --init to create a default config file[/dim]")


@app.command()
def sync(
    ctx: typer.Context,
    force: bool = typer.Option(
        False,
        "--force",
        help="Delete all Gyazo notes and fetch everything again",
    ),
) -> None:
    """Fetch new and updated Gyazo images into the vault."""
    cfg: AppConfig = ctx.obj["config"]

    # Nothing may touch the state database before the token is known
    if not cfg.gyazo.get_access_token():
        console.print("[red]Gyazo access token is not configured[/red]")
        console.print("[dim]Run 'gyazobridge set-token' first[/dim]")
        raise typer.Exit(1)

    if force:
        console.print("[yellow]⚠ Force refetch: all existing Gyazo notes will be deleted and recreated.[/yellow]")
        if not typer.confirm("Continue?"):
            console.print("[dim]Sync cancelled[/dim]")
            raise typer.Exit(0)

    async def run_sync() -> SyncResult:
        engine = _build_engine(cfg)
        try:
            await engine.initialize()
            if force:
                await engine.db.set_force_refetch(True)
            return await engine.run_sync(_notice)
        finally:
            await engine.close()

    try:
        result = asyncio.run(run_sync())
    except ConfigurationError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1) from e
    except Exception as e:
        console.print(f"[red]Sync failed: {e}[/red]")
        logging.exception("Sync operation failed")
        raise typer.Exit(1) from e

    _print_result(result)


@app.command()
def watch(ctx: typer.Context) -> None:
    """Run periodic syncs (every fetch_interval hours) until interrupted."""
    cfg: AppConfig = ctx.obj["config"]

    if cfg.gyazo.fetch_interval <= 0:
        console.print("[red]Periodic sync is disabled (fetch_interval = 0)[/red]")
        console.print("[dim]Set gyazo.fetch_interval in your config file[/dim]")
        raise typer.Exit(1)

    async def run_watch() -> None:
        scheduler = PeriodicSyncScheduler(_build_engine(cfg), notify=_notice)
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop.set)
            except NotImplementedError:  # pragma: no cover - Windows
                pass

        await scheduler.start()
        next_run = scheduler.next_run_time
        if next_run:
            console.print(f"[green]Next sync:[/green] {next_run.astimezone():%Y-%m-%d %H:%M:%S}")
        console.print("[dim]Press Ctrl+C to stop[/dim]")
        try:
            await stop.wait()
        finally:
            await scheduler.shutdown()

    asyncio.run(run_watch())
    console.print("[yellow]Periodic sync stopped[/yellow]")


@app.command()
def status(ctx: typer.Context) -> None:
    """Show synchronization status."""
    cfg: AppConfig = ctx.obj["config"]

    async def run_status() -> None:
        db = SyncStateDB(cfg.state_db_path)
        await db.initialize()
        checkpoint = await db.get_checkpoint()
        note_count = await db.count_notes()
        runs = await db.get_recent_runs(limit=5)

        table = Table(title="Gyazo Sync Status")
        table.add_column("Property", style="cyan", no_wrap=True)
        table.add_column("Value", style="green")
        table.add_row("Vault", str(cfg.gyazo.vault_path))
        table.add_row("Save Directory", cfg.gyazo.save_directory)
        table.add_row("Tracked Notes", str(note_count))
        table.add_row("Last Fetched Image", checkpoint.last_fetched_id or "None")
        table.add_row("Last Fetch", _format_ms(checkpoint.last_fetch_time))
        table.add_row("Force Refetch Pending", "yes" if checkpoint.force_refetch else "no")
        table.add_row("Database", str(cfg.state_db_path))
        console.print(table)

        if not runs:
            console.print("\n[yellow]No syncs have run yet[/yellow]")
            console.print("[dim]Run 'gyazobridge sync' to start syncing[/dim]")
            return

        history = Table(title="Recent Runs")
        history.add_column("Started", style="cyan")
        history.add_column("Status")
        history.add_column("Created", justify="right")
        history.add_column("Updated", justify="right")
        history.add_column("Skipped", justify="right")
        history.add_column("Deleted", justify="right")
        for run in runs:
            style = "green" if run["status"] in ("completed", "no_images") else "red"
            history.add_row(
                datetime.fromtimestamp(run["started_at"]).strftime("%Y-%m-%d %H:%M:%S"),
                f"[{style}]{run['status']}[/{style}]",
                str(run["created"]),
                str(run["updated"]),
                str(run["skipped"]),
                str(run["deleted"]),
            )
        console.print(history)

    try:
        asyncio.run(run_status())
    except Exception as e:
        console.print(f"[red]Failed to get status: {e}[/red]")
        logging.exception("Status operation failed")
        raise typer.Exit(1) from e


def _prompt_decision(image_id: str) -> DeletionDecision:
    console.print(f"[bold]Delete Gyazo image {image_id}?[/bold] This cannot be undone.")
    answer = Prompt.ask(
        "Delete [i]image[/i] only, image [i]and[/i] note, or [i]cancel[/i]",
        choices=["image", "and", "cancel"],
        default="cancel",
        console=console,
    )
    return {
        "image": DeletionDecision.DELETE_IMAGE_ONLY,
        "and": DeletionDecision.DELETE_IMAGE_AND_NOTE,
    }.get(answer, DeletionDecision.CANCEL)


@app.command()
def delete(
    ctx: typer.Context,
    note: Path = typer.Argument(..., help="Note file (absolute or relative to the vault)"),
    keep_note: Optional[bool] = typer.Option(
        None,
        "--keep-note/--with-note",
        help="Skip the prompt: delete the image and keep or also delete the note",
    ),
) -> None:
    """Delete the Gyazo image behind a note."""
    cfg: AppConfig = ctx.obj["config"]
    store = NoteStore(cfg.gyazo.vault_path)

    note_path = note.expanduser()
    relative = store.relative(note_path) if note_path.is_absolute() else note_path.as_posix()

    if keep_note is None:
        decide = _prompt_decision
    elif keep_note:
        decide = lambda _image_id: DeletionDecision.DELETE_IMAGE_ONLY  # noqa: E731
    else:
        decide = lambda _image_id: DeletionDecision.DELETE_IMAGE_AND_NOTE  # noqa: E731

    access_token = cfg.gyazo.get_access_token()
    if not access_token:
        console.print("[red]Gyazo access token is not configured[/red]")
        console.print("[dim]Run 'gyazobridge set-token' first[/dim]")
        raise typer.Exit(1)

    async def run_delete():
        db = SyncStateDB(cfg.state_db_path)
        await db.initialize()
        async with GyazoClient(
            access_token,
            base_url=cfg.gyazo.api_base_url,
            timeout=cfg.gyazo.request_timeout,
        ) as client:
            workflow = ImageDeletionWorkflow(client, store, db)
            return await workflow.delete_note_for_image(relative, decide)

    try:
        outcome = asyncio.run(run_delete())
    except FileNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1) from e
    except ContentFormatError as e:
        console.print(f"[red]This note is not a Gyazo note: {relative}[/red]")
        raise typer.Exit(1) from e
    except GyazoBridgeError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(1) from e

    if outcome.decision is DeletionDecision.CANCEL:
        console.print("[dim]Deletion cancelled[/dim]")
        return
    console.print(f"[green]✓ Deleted Gyazo image {outcome.image_id}[/green]")
    if outcome.note_deleted:
        console.print(f"[green]✓ Deleted note {relative}[/green]")


@app.command()
def reset(
    ctx: typer.Context,
    confirm: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
) -> None:
    """Reset the sync state (checkpoint and note index)."""
    cfg: AppConfig = ctx.obj["config"]

    if not confirm:
        console.print("[yellow]⚠ Warning: This will clear the sync checkpoint![/yellow]")
        console.print("[dim]Your notes will NOT be deleted, but the next sync will")
        console.print("look at the latest images again.[/dim]\n")
        if not typer.confirm("Are you sure you want to reset the sync state?"):
            console.print("[dim]Reset cancelled[/dim]")
            raise typer.Exit(0)

    async def run_reset() -> None:
        db = SyncStateDB(cfg.state_db_path)
        await db.initialize()
        await db.clear_all()

    try:
        asyncio.run(run_reset())
    except Exception as e:
        console.print(f"[red]Failed to reset sync state: {e}[/red]")
        logging.exception("Reset operation failed")
        raise typer.Exit(1) from e

    console.print("[green]✓ Sync state reset successfully[/green]")


@app.command("set-token")
def set_token(
    token: str = typer.Option(..., prompt="Gyazo access token", hide_input=True),
) -> None:
    """Store the Gyazo access token in the system keyring."""
    try:
        CredentialStore().set_access_token(token.strip())
    except Exception as e:
        console.print(f"[red]Failed to store token: {e}[/red]")
        raise typer.Exit(1) from e
    console.print("[green]✓ Access token stored in system keyring[/green]")


@app.command("delete-token")
def delete_token() -> None:
    """Remove the Gyazo access token from the system keyring."""
    if CredentialStore().delete_access_token():
        console.print("[green]✓ Access token removed[/green]")
    else:
        console.print("[yellow]No access token stored[/yellow]")


def main_entry() -> None:
    """Entry point for the CLI."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(130)
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        logging.exception("Unhandled exception")
        sys.exit(1)


if __name__ == "__main__":
    main_entry()
