# tidemark CLI - Config Commands
"""
tidemark CLI - config コマンド群
設定ファイルの表示・検証
"""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.syntax import Syntax
from rich.panel import Panel
from rich.table import Table

from tidemark.cli.main import print_error, print_success, print_warning

console = Console()
config_app = typer.Typer(help="Configuration commands")


# デフォルト設定テンプレート
DEFAULT_CONFIG = """# tidemark Configuration File

# ======================================
# Remote System
# ======================================

remote:
  # Placeholders: {space}, {startAtIndex}, {updatedAfter}
  url_get_documents: https://example.org/api/documents?space={space}&from={startAtIndex}&updatedAfter={updatedAfter}
  # Empty: ISO 8601, {milisecondEpoch}, {unixEpoch} or a strftime pattern
  updated_after_format:
  get_docs_res_field_documents: items
  get_docs_res_field_totalcount: total
  # username: sync
  # password: ${TIDEMARK_REMOTE_PASSWORD}
  timeout: 30

# ======================================
# Index Structure
# ======================================

index:
  index_name: tidemark_{space}
  remote_field_document_id: id
  remote_field_updated: updated
  # remote_field_deleted: status
  # remote_field_deleted_value: deleted
  # none, embedded, child or standalone
  comment_mode: none
  fields:
    title:
      remote_field: title

# ======================================
# Index Store
# ======================================

store:
  # memory, local or azure
  backend: local
  local_path: ./output/index.json
  # azure:
  #   endpoint: https://your-search.search.windows.net/
  #   use_managed_identity: false

# ======================================
# Logging
# ======================================

logging:
  level: info
  # file: ./output/tidemark.log
"""


def _resolve_config_path(config: Optional[Path]) -> Optional[Path]:
    from tidemark.api import find_config_path

    return find_config_path(config)


@config_app.command("show")
def config_show(
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Config file path"
    ),
):
    """Show current configuration"""
    config_path = _resolve_config_path(config)

    if config_path is None:
        print_warning("No configuration file found")
        console.print("\nCreate one with:")
        console.print("  [cyan]tidemark init[/cyan]")
        raise typer.Exit(1)

    try:
        with open(config_path, encoding="utf-8") as f:
            content = f.read()

        syntax = Syntax(content, "yaml", theme="monokai", line_numbers=True)
        console.print(Panel(
            syntax,
            title=str(config_path),
            border_style="cyan",
        ))

    except OSError as e:
        print_error(f"Failed to read config file: {e}")
        raise typer.Exit(1)


@config_app.command("validate")
def config_validate(
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Config file path"
    ),
):
    """Validate configuration file"""
    from tidemark.api import ConfigManager
    from tidemark.errors import TidemarkError
    from tidemark.mapper import DocumentWithCommentsMapper
    from tidemark.remote import GetJSONClient

    config_path = _resolve_config_path(config)
    if config_path is None:
        print_error(f"Config file not found: {config or Path('./tidemark.yaml')}")
        raise typer.Exit(1)

    try:
        cfg = ConfigManager(config_path).load()
        DocumentWithCommentsMapper(cfg.index)
        GetJSONClient(cfg.remote)
    except TidemarkError as e:
        print_error(f"Configuration error: {e.message}")
        raise typer.Exit(1)

    table = Table(title="Configuration Validation")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    table.add_column("Status")

    checks = [
        ("Documents URL", cfg.remote.url_get_documents),
        ("Index Name", cfg.index.index_name),
        ("Document ID Field", cfg.index.remote_field_document_id or ""),
        ("Updated Field", cfg.index.remote_field_updated or ""),
        ("Comment Mode", cfg.index.comment_mode.value),
        ("Store Backend", cfg.store.backend.value),
    ]
    for name, value in checks:
        table.add_row(name, value, "[green]✓[/green]")

    console.print(table)
    print_success("Configuration is valid")
