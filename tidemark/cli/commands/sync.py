# tidemark CLI - Sync Commands
"""
tidemark CLI - sync コマンド群
同期パスの実行とウォーターマークの確認
"""

import asyncio
import json
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from tidemark.cli.main import OutputFormat, load_cli_config, print_error, print_success, print_warning

console = Console()
sync_app = typer.Typer(help="Sync commands")


async def _execute_pass(config, space_key: str, full_update: bool):
    """1回の同期パスを実行して結果を返す"""
    from tidemark.api import ComponentFactory
    from tidemark.observability import configure_observability

    configure_observability({
        "log_level": config.logging.level,
        "log_to_file": config.logging.file,
        "metrics_enabled": config.logging.metrics_enabled,
    })

    factory = ComponentFactory(config)
    try:
        indexer = factory.create_space_indexer(space_key, full_update=full_update)
        return await indexer.run()
    finally:
        await factory.close()


async def _read_watermark(config, space_key: str):
    from tidemark.api import ComponentFactory

    factory = ComponentFactory(config)
    try:
        return await factory.get_state_store().read_watermark(space_key)
    finally:
        await factory.close()


@sync_app.command("run")
def sync_run(
    space_key: str = typer.Argument(..., help="Space key to synchronize"),
    full: bool = typer.Option(
        False, "--full", help="Run a full update and remove stale records"
    ),
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Config file path"
    ),
    output: OutputFormat = typer.Option(
        OutputFormat.text, "--output", "-o", help="Output format"
    ),
):
    """Run one sync pass for a space

    Examples:
        tidemark sync run DOC
        tidemark sync run DOC --full --output json
    """
    try:
        cfg = load_cli_config(config)
    except Exception as e:
        print_error(f"Configuration error: {e}")
        raise typer.Exit(1)

    try:
        with console.status(f"[bold green]Syncing space {space_key}...", spinner="dots"):
            info = asyncio.run(_execute_pass(cfg, space_key, full))
    except Exception as e:
        print_error(f"Sync failed: {e}")
        raise typer.Exit(1)

    if output == OutputFormat.json:
        console.print_json(json.dumps(info.to_dict()))
    else:
        table = Table(title=f"Sync result: {info.space_key}")
        table.add_column("Metric", style="cyan")
        table.add_column("Value", justify="right")
        table.add_row("Mode", "full" if info.full_update else "incremental")
        table.add_row("Documents updated", str(info.documents_updated))
        table.add_row("Documents deleted", str(info.documents_deleted))
        table.add_row("Comments deleted", str(info.comments_deleted))
        table.add_row("Time", f"{info.time_elapsed:.2f}s")
        console.print(table)

    if info.finished_ok:
        if output == OutputFormat.text:
            print_success(f"Space {info.space_key} synchronized")
    else:
        print_error(f"Sync failed: {info.error_message}")
        raise typer.Exit(1)


@sync_app.command("watermark")
def sync_watermark(
    space_key: str = typer.Argument(..., help="Space key"),
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Config file path"
    ),
):
    """Show the stored watermark of a space"""
    from tidemark.utils.datetime_utils import format_iso_datetime

    try:
        cfg = load_cli_config(config)
        watermark = asyncio.run(_read_watermark(cfg, space_key))
    except Exception as e:
        print_error(f"Failed to read watermark: {e}")
        raise typer.Exit(1)

    if watermark is None:
        print_warning(f"No watermark stored for space {space_key}")
        console.print("The next pass will run as a full update")
        return

    console.print(f"[cyan]{space_key}[/cyan]: {format_iso_datetime(watermark)}")
