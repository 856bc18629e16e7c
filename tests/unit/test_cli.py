"""
Unit tests for the command line entry point.

The database connection is replaced with in-memory runs; everything else
(settings, definition loading, exit codes, output) is exercised for real.
"""

from collections.abc import Callable, Coroutine
from pathlib import Path
from typing import Any

import pytest

from shadowmigrate import cli
from shadowmigrate.config import MigrationSettings
from shadowmigrate.migration import (
    MigrationConfig,
    MigrationDefinition,
    MigrationOrchestrator,
    MigrationOutcome,
)
from shadowmigrate.stores import InMemoryDatabase, StoreOperationError
from tests.fixtures import FaultyDatabase, make_products

DEFINITION = "tests.fixtures.products:simple_definition"

RunMigration = Callable[
    [MigrationSettings, MigrationDefinition, MigrationConfig],
    Coroutine[Any, Any, MigrationOutcome],
]


def in_memory_run(
    database: InMemoryDatabase, count: int = 20, broken_ids: range = range(0)
) -> RunMigration:
    async def run(
        settings: MigrationSettings,
        definition: MigrationDefinition,
        config: MigrationConfig,
    ) -> MigrationOutcome:
        await database.collection(config.source_collection).insert_many(
            make_products(count, broken_ids=broken_ids)
        )
        orchestrator = MigrationOrchestrator(database, definition, config, enable_tracing=False)
        return await orchestrator.run()

    return run


@pytest.fixture
def environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> pytest.MonkeyPatch:
    """Isolate the command from the process environment and any .env file."""
    for variable in MigrationSettings.variable_names():
        monkeypatch.delenv(variable, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("MONGODB_URI", "mongodb://localhost:27017/catalog")
    monkeypatch.setenv("MIGRATION_BACKUP_DIR", str(tmp_path / "backups"))
    monkeypatch.setenv("MIGRATION_REPORT_PATH", str(tmp_path / "report.json"))
    return monkeypatch


class TestUsageErrors:
    """Tests for exit code 64."""

    def test_unknown_flag(self, environment: pytest.MonkeyPatch) -> None:
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["--no-such-flag"])

        assert exc_info.value.code == cli.EXIT_USAGE

    def test_missing_uri(
        self, environment: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        environment.delenv("MONGODB_URI")

        assert cli.main(["--definition", DEFINITION]) == cli.EXIT_USAGE
        assert "MONGODB_URI is not set" in capsys.readouterr().err

    def test_missing_definition(
        self, environment: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        assert cli.main([]) == cli.EXIT_USAGE
        assert "MIGRATION_DEFINITION" in capsys.readouterr().err

    def test_unresolvable_definition(self, environment: pytest.MonkeyPatch) -> None:
        assert cli.main(["--definition", "tests.fixtures.products:nothing"]) == cli.EXIT_USAGE

    def test_invalid_flag_value(self, environment: pytest.MonkeyPatch) -> None:
        assert cli.main(["--definition", DEFINITION, "--batch-size", "0"]) == cli.EXIT_USAGE


class TestRuns:
    """Tests for exit codes of real runs."""

    def test_completed_run(
        self,
        environment: pytest.MonkeyPatch,
        database: InMemoryDatabase,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        environment.setattr(cli, "run_migration", in_memory_run(database))

        assert cli.main(["--definition", DEFINITION]) == 0

        out = capsys.readouterr().out
        assert ": completed" in out
        assert "20 migrated" in out

    def test_flags_override_environment(
        self, environment: pytest.MonkeyPatch, database: InMemoryDatabase
    ) -> None:
        environment.setenv("MIGRATION_SOURCE_COLLECTION", "catalog")
        environment.setattr(cli, "run_migration", in_memory_run(database))

        code = cli.main(
            ["--definition", DEFINITION, "--source", "items", "--shadow", "items_v2"]
        )

        assert code == 0

    def test_definition_from_env_file(
        self,
        environment: pytest.MonkeyPatch,
        database: InMemoryDatabase,
        tmp_path: Path,
    ) -> None:
        env_file = tmp_path / "migration.env"
        env_file.write_text(f"MIGRATION_DEFINITION={DEFINITION}\n", encoding="utf-8")
        environment.setattr(cli, "run_migration", in_memory_run(database))

        assert cli.main(["--env-file", str(env_file)]) == 0

    def test_dotenv_in_working_directory(
        self,
        environment: pytest.MonkeyPatch,
        database: InMemoryDatabase,
        tmp_path: Path,
    ) -> None:
        (tmp_path / ".env").write_text(f"MIGRATION_DEFINITION={DEFINITION}\n", encoding="utf-8")
        environment.setattr(cli, "run_migration", in_memory_run(database))

        assert cli.main([]) == 0

    def test_rolled_back_run(
        self, environment: pytest.MonkeyPatch, database: InMemoryDatabase
    ) -> None:
        environment.setattr(
            cli, "run_migration", in_memory_run(database, 20, broken_ids=range(1, 21, 2))
        )

        assert cli.main(["--definition", DEFINITION]) == 1

    def test_rollback_failure_prints_banner(
        self,
        environment: pytest.MonkeyPatch,
        faulty_database: FaultyDatabase,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        faulty_database.fail("drop", "products_v2")
        environment.setattr(
            cli, "run_migration", in_memory_run(faulty_database, 20, broken_ids=range(1, 21, 2))
        )

        assert cli.main(["--definition", DEFINITION]) == 2

        err = capsys.readouterr().err
        assert "ROLLBACK FAILED - MANUAL RECOVERY REQUIRED" in err
        assert "Backup location: " in err

    def test_unreachable_database(self, environment: pytest.MonkeyPatch) -> None:
        async def unreachable(*args: Any) -> MigrationOutcome:
            raise StoreOperationError("No servers found yet")

        environment.setattr(cli, "run_migration", unreachable)

        assert cli.main(["--definition", DEFINITION]) == 1


class TestParser:
    """Tests for argument parsing."""

    def test_policy_choices(self) -> None:
        args = cli.build_parser().parse_args(["--performance-policy", "strict"])
        assert args.performance_policy == "strict"

    def test_no_tracing(self) -> None:
        assert cli.build_parser().parse_args(["--no-tracing"]).no_tracing is True

    def test_help_lists_environment_variables(self) -> None:
        help_text = cli.build_parser().format_help()

        assert "MONGODB_URI" in help_text
        assert "MIGRATION_REPORT_PATH" in help_text
