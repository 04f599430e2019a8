# tidemark CLI - Main Application
"""
tidemark CLI
メインアプリケーション構造
"""

from pathlib import Path
from typing import Optional
from enum import Enum

import typer
from rich.console import Console
from rich.panel import Panel

# === アプリケーション初期化 ===

app = typer.Typer(
    name="tidemark",
    help="tidemark - Incremental sync of remote documents into a search index",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()


# === 出力フォーマット ===

class OutputFormat(str, Enum):
    """出力フォーマット"""
    text = "text"
    json = "json"


# === ユーティリティ関数 ===

def load_cli_config(config_path: Optional[Path] = None):
    """設定を読み込み

    Args:
        config_path: 設定ファイルパス（Noneの場合はカレントディレクトリから探索）

    Returns:
        TidemarkConfig: 読み込んだ設定（ファイルが無い場合はデフォルト）
    """
    from tidemark.api import ConfigManager, find_config_path

    if config_path is not None and not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    path = find_config_path(config_path)
    return ConfigManager(path).load()


def print_error(message: str):
    """エラーメッセージを表示"""
    console.print(f"[red]✗ Error:[/red] {message}")


def print_success(message: str):
    """成功メッセージを表示"""
    console.print(f"[green]✓[/green] {message}")


def print_warning(message: str):
    """警告メッセージを表示"""
    console.print(f"[yellow]⚠[/yellow] {message}")


# === バージョンコマンド ===

@app.command()
def version():
    """Show version information"""
    from tidemark import __version__

    console.print(Panel.fit(
        f"[bold cyan]tidemark[/bold cyan] v{__version__}\n"
        "[dim]Incremental search index sync[/dim]",
        border_style="cyan"
    ))


# === initコマンド ===

@app.command()
def init(
    path: Path = typer.Argument(
        Path("."),
        help="Project directory to initialize",
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite existing files"
    ),
):
    """Initialize a new tidemark project

    Creates the following structure:
    - tidemark.yaml (configuration file)
    - output/ (local index directory)
    """
    from tidemark.cli.commands.config_cmd import DEFAULT_CONFIG

    project_path = path.resolve()
    config_file = project_path / "tidemark.yaml"
    output_dir = project_path / "output"

    # 既存チェック
    if config_file.exists() and not force:
        print_warning(f"Project already initialized: {config_file}")
        console.print("Use --force to reinitialize")
        raise typer.Exit(1)

    try:
        project_path.mkdir(parents=True, exist_ok=True)
        output_dir.mkdir(exist_ok=True)

        with open(config_file, "w", encoding="utf-8") as f:
            f.write(DEFAULT_CONFIG)

        console.print(Panel.fit(
            f"[green]✓ tidemark project initialized![/green]\n\n"
            f"[bold]Created:[/bold]\n"
            f"  📄 {config_file.name}\n"
            f"  📁 {output_dir.name}/\n\n"
            f"[bold]Next steps:[/bold]\n"
            f"  1. Set [cyan]remote.url_get_documents[/cyan] in tidemark.yaml\n"
            f"  2. Run a full pass: [cyan]tidemark sync run SPACE --full[/cyan]",
            title="Project Initialized",
            border_style="green"
        ))

    except OSError as e:
        print_error(f"Failed to initialize project: {e}")
        raise typer.Exit(1)


# === サブコマンドのインポートとアタッチ ===

def attach_commands():
    """サブコマンドをアタッチ"""
    from tidemark.cli.commands import config_app, sync_app

    app.add_typer(sync_app, name="sync")
    app.add_typer(config_app, name="config")


attach_commands()
