# tidemark CLI Unit Tests
"""
CLI コマンドの単体テスト
"""

import asyncio
import json
from datetime import timezone
from unittest.mock import AsyncMock, patch

import yaml
from typer.testing import CliRunner

from tests.mock_remote import BASE_TIME, ts
from tidemark.cli.main import app
from tidemark.sync.types import IndexingInfoSnapshot

runner = CliRunner()


def write_config(path, **store):
    config = {
        "remote": {"url_get_documents": "https://example.org/api?space={space}"},
        "index": {
            "index_name": "docs_{space}",
            "remote_field_document_id": "id",
            "remote_field_updated": "updated",
        },
        "store": store or {"backend": "local", "local_path": str(path.parent / "index.json")},
    }
    path.write_text(yaml.safe_dump(config), encoding="utf-8")
    return path


def snapshot(**overrides):
    values = {
        "space_key": "DOC",
        "full_update": True,
        "start_date": BASE_TIME,
        "documents_updated": 5,
        "documents_deleted": 2,
        "comments_deleted": 1,
        "time_elapsed": 1.5,
        "finished_ok": True,
    }
    values.update(overrides)
    return IndexingInfoSnapshot(**values)


# ========== Main App Tests ==========


class TestMainApp:
    """メインアプリケーションのテスト"""

    def test_version_command(self):
        result = runner.invoke(app, ["version"])

        assert result.exit_code == 0
        assert "tidemark" in result.stdout

    def test_help_lists_subcommands(self):
        result = runner.invoke(app, ["--help"])

        assert result.exit_code == 0
        assert "sync" in result.stdout
        assert "config" in result.stdout


class TestInitCommand:
    """init コマンドのテスト"""

    def test_creates_project(self, tmp_path):
        result = runner.invoke(app, ["init", str(tmp_path / "project")])

        assert result.exit_code == 0
        config_file = tmp_path / "project" / "tidemark.yaml"
        assert config_file.exists()
        assert (tmp_path / "project" / "output").is_dir()
        data = yaml.safe_load(config_file.read_text(encoding="utf-8"))
        assert data["store"]["backend"] == "local"

    def test_existing_project(self, tmp_path):
        (tmp_path / "tidemark.yaml").write_text("{}", encoding="utf-8")

        result = runner.invoke(app, ["init", str(tmp_path)])

        assert result.exit_code == 1
        assert "already initialized" in result.stdout

    def test_force_overwrites(self, tmp_path):
        (tmp_path / "tidemark.yaml").write_text("{}", encoding="utf-8")

        result = runner.invoke(app, ["init", str(tmp_path), "--force"])

        assert result.exit_code == 0
        assert "remote:" in (tmp_path / "tidemark.yaml").read_text(encoding="utf-8")


# ========== Config Commands ==========


class TestConfigCommands:
    """config コマンドのテスト"""

    def test_show(self, tmp_path):
        path = write_config(tmp_path / "tidemark.yaml")

        result = runner.invoke(app, ["config", "show", "-c", str(path)])

        assert result.exit_code == 0
        assert "url_get_documents" in result.stdout

    def test_show_missing(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)

        result = runner.invoke(app, ["config", "show"])

        assert result.exit_code == 1
        assert "No configuration file found" in result.stdout

    def test_validate(self, tmp_path):
        path = write_config(tmp_path / "tidemark.yaml")

        result = runner.invoke(app, ["config", "validate", "-c", str(path)])

        assert result.exit_code == 0
        assert "Configuration is valid" in result.stdout

    def test_validate_missing_document_id(self, tmp_path):
        path = tmp_path / "tidemark.yaml"
        path.write_text(yaml.safe_dump({
            "remote": {"url_get_documents": "https://example.org/api"},
            "index": {"remote_field_updated": "updated"},
        }), encoding="utf-8")

        result = runner.invoke(app, ["config", "validate", "-c", str(path)])

        assert result.exit_code == 1
        assert "remote_field_document_id" in result.stdout


# ========== Sync Commands ==========


class TestSyncRun:
    """sync run コマンドのテスト"""

    def test_text_output(self, tmp_path):
        path = write_config(tmp_path / "tidemark.yaml")

        with patch(
            "tidemark.cli.commands.sync._execute_pass",
            new=AsyncMock(return_value=snapshot()),
        ) as execute:
            result = runner.invoke(app, ["sync", "run", "DOC", "--full", "-c", str(path)])

        assert result.exit_code == 0
        assert "Documents updated" in result.stdout
        assert "Space DOC synchronized" in result.stdout
        _, space_key, full_update = execute.await_args.args
        assert (space_key, full_update) == ("DOC", True)

    def test_json_output(self, tmp_path):
        path = write_config(tmp_path / "tidemark.yaml")

        with patch(
            "tidemark.cli.commands.sync._execute_pass",
            new=AsyncMock(return_value=snapshot()),
        ):
            result = runner.invoke(
                app, ["sync", "run", "DOC", "-c", str(path), "--output", "json"]
            )

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["documents_updated"] == 5
        assert data["finished_ok"] is True

    def test_failed_pass(self, tmp_path):
        path = write_config(tmp_path / "tidemark.yaml")
        failed = snapshot(finished_ok=False, error_message="remote system unavailable")

        with patch(
            "tidemark.cli.commands.sync._execute_pass",
            new=AsyncMock(return_value=failed),
        ):
            result = runner.invoke(app, ["sync", "run", "DOC", "-c", str(path)])

        assert result.exit_code == 1
        assert "remote system unavailable" in result.stdout

    def test_missing_config_file(self, tmp_path):
        result = runner.invoke(
            app, ["sync", "run", "DOC", "-c", str(tmp_path / "missing.yaml")]
        )

        assert result.exit_code == 1
        assert "Configuration error" in result.stdout

    def test_unexpected_error(self, tmp_path):
        path = write_config(tmp_path / "tidemark.yaml")

        with patch(
            "tidemark.cli.commands.sync._execute_pass",
            new=AsyncMock(side_effect=RuntimeError("boom")),
        ):
            result = runner.invoke(app, ["sync", "run", "DOC", "-c", str(path)])

        assert result.exit_code == 1
        assert "Sync failed: boom" in result.stdout


class TestSyncWatermark:
    """sync watermark コマンドのテスト"""

    def test_no_watermark(self, tmp_path):
        path = write_config(tmp_path / "tidemark.yaml")

        result = runner.invoke(app, ["sync", "watermark", "DOC", "-c", str(path)])

        assert result.exit_code == 0
        assert "No watermark stored for space DOC" in result.stdout

    def test_stored_watermark(self, tmp_path):
        from tidemark.index.memory import InMemoryIndexStore
        from tidemark.index.state import IndexStateStore

        index_file = tmp_path / "index.json"
        path = write_config(
            tmp_path / "tidemark.yaml", backend="local", local_path=str(index_file)
        )
        asyncio.run(
            IndexStateStore(InMemoryIndexStore(path=index_file)).store_watermark("DOC", ts(30))
        )

        result = runner.invoke(app, ["sync", "watermark", "DOC", "-c", str(path)])

        assert result.exit_code == 0
        expected = ts(30).astimezone(timezone.utc).isoformat(timespec="milliseconds")
        assert f"DOC: {expected}" in result.stdout
