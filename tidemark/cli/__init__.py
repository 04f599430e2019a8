# tidemark CLI
"""
tidemark CLI (Command Line Interface)
メインエントリーポイント
"""

from tidemark.cli.main import app, console

__all__ = ["app", "console", "main"]


def main():
    """CLI entry point for pyproject.toml"""
    app()


if __name__ == "__main__":
    main()
