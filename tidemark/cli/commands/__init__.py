# tidemark CLI Commands
"""
コマンドモジュールのエクスポート
"""

from tidemark.cli.commands.sync import sync_app
from tidemark.cli.commands.config_cmd import config_app

__all__ = [
    "sync_app",
    "config_app",
]
