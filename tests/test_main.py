"""Tests for the command line entry point."""

import asyncio

import pytest

import main
from vault_migration.core.settings import get_settings
from vault_migration.services.cancellation import CancellationToken

from conftest import add_logins


@pytest.fixture
def clean_settings(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for name in ("SOURCE_TOKEN", "DEST_TOKEN", "LOG_TO_FILES"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestParser:
    """Test argument parsing."""

    def test_migrate_arguments(self):
        args = main.build_parser().parse_args([
            "--source-token", "src",
            "migrate",
            "--dest-token", "dst",
            "--vault", "v1",
            "--vault", "v2",
            "--report", "report.txt",
        ])

        assert args.command == "migrate"
        assert args.source_token == "src"
        assert args.dest_token == "dst"
        assert args.vaults == ["v1", "v2"]
        assert args.report == "report.txt"
        assert args.custom_template_id is None

    def test_all_vaults_when_none_selected(self):
        args = main.build_parser().parse_args(["migrate"])
        assert args.vaults is None

    def test_command_required(self):
        with pytest.raises(SystemExit):
            main.build_parser().parse_args([])


class TestMain:
    """Test exit codes for configuration problems."""

    def test_missing_tokens_exit_code(self, clean_settings):
        assert main.main(["migrate"]) == 2

    def test_list_vaults_without_token(self, clean_settings):
        assert main.main(["list-vaults"]) == 2


class FailingOrchestrator:
    async def migrate_many(self, selection=None, cancel_token=None, progress=None):
        raise RuntimeError("source tenant unreachable")


class TestMigrateWithProgress:
    """Test the progress printer around a run."""

    @pytest.mark.asyncio
    async def test_run_result_returned(self, orchestrator, source_tenant):
        add_logins(source_tenant, "src-vault-1", 2)

        result = await main.migrate_with_progress(orchestrator, None, CancellationToken())

        assert result.success
        assert [v.success_count for v in result.vaults] == [2]

    @pytest.mark.asyncio
    async def test_printer_stopped_when_run_fails(self):
        with pytest.raises(RuntimeError, match="unreachable"):
            await main.migrate_with_progress(FailingOrchestrator(), None, CancellationToken())

        pending = [t for t in asyncio.all_tasks() if t is not asyncio.current_task()]
        assert pending == []
